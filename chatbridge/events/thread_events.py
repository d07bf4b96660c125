from uuid import uuid4

from chatbridge.events.message_events import message_payload
from chatbridge.events.thread_event import ThreadEvent
from chatbridge.models.chat.models import Message


thread_loaded_event_type = "thread.loaded"
session_ended_event_type = "session.ended"
connection_established_event_type = "connection.established"


def thread_loaded(instance_id: str, messages: list[Message]) -> ThreadEvent:
    """Thread seeded from the backend's stored history"""
    return ThreadEvent(
        event_type=thread_loaded_event_type,
        content={
            "messages": [message_payload(message) for message in messages],
        },
        metadata={"instance_id": instance_id},
        event_id=str(uuid4()),
    )


def session_ended(instance_id: str, session_id: str | None, message_count: int) -> ThreadEvent:
    return ThreadEvent(
        event_type=session_ended_event_type,
        content={
            "session_id": session_id,
            "message_count": message_count,
        },
        metadata={"instance_id": instance_id},
        event_id=str(uuid4()),
    )


def connection_established(instance_id: str, connection_id: str) -> ThreadEvent:
    return ThreadEvent(
        event_type=connection_established_event_type,
        content={"connection_id": connection_id},
        metadata={"instance_id": instance_id},
        event_id=str(uuid4()),
    )

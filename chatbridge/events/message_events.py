from typing import Any
from uuid import uuid4

from chatbridge.events.thread_event import ThreadEvent
from chatbridge.models.chat.models import Message


message_sent_event_type = "message.sent"
message_updated_event_type = "message.updated"
message_completed_event_type = "message.completed"
message_cancelled_event_type = "message.cancelled"
message_failed_event_type = "message.failed"
message_queued_event_type = "message.queued"
message_regenerating_event_type = "message.regenerating"


def message_payload(message: Message) -> dict[str, Any]:
    return {
        "message_id": message.id,
        "role": message.role.value,
        "status": message.status.value,
        "text": message.text,
        "created_at": message.created_at.isoformat(),
    }


def _message_event(event_type: str, instance_id: str, message: Message, **content: Any) -> ThreadEvent:
    return ThreadEvent(
        event_type=event_type,
        content={**message_payload(message), **content},
        metadata={
            "instance_id": instance_id,
            "message_id": message.id,
        },
        event_id=str(uuid4()),
    )


def message_sent(instance_id: str, user_message: Message, assistant_message: Message) -> ThreadEvent:
    """User message and its running assistant placeholder, appended together"""
    return ThreadEvent(
        event_type=message_sent_event_type,
        content={
            "user_message": message_payload(user_message),
            "assistant_message": message_payload(assistant_message),
        },
        metadata={
            "instance_id": instance_id,
            "message_id": assistant_message.id,
        },
        event_id=str(uuid4()),
    )


def message_updated(instance_id: str, message: Message) -> ThreadEvent:
    return _message_event(message_updated_event_type, instance_id, message)


def message_completed(instance_id: str, message: Message) -> ThreadEvent:
    return _message_event(message_completed_event_type, instance_id, message)


def message_cancelled(instance_id: str, message: Message) -> ThreadEvent:
    return _message_event(message_cancelled_event_type, instance_id, message)


def message_failed(instance_id: str, message: Message) -> ThreadEvent:
    error = message.error
    return _message_event(
        message_failed_event_type,
        instance_id,
        message,
        error_kind=error.kind.value if error else None,
        error_message=error.user_message if error else None,
    )


def message_queued(
    instance_id: str,
    user_message: Message,
    queued_id: str,
    removed_message_id: str,
) -> ThreadEvent:
    """User message parked for replay; its assistant placeholder left the thread"""
    return _message_event(
        message_queued_event_type,
        instance_id,
        user_message,
        queued_id=queued_id,
        removed_message_id=removed_message_id,
    )


def message_regenerating(instance_id: str, assistant_message: Message, dropped_ids: list[str]) -> ThreadEvent:
    return _message_event(
        message_regenerating_event_type,
        instance_id,
        assistant_message,
        dropped_message_ids=dropped_ids,
    )

import asyncio
import logging
from collections import defaultdict
from typing import Any
from uuid import uuid4

from chatbridge.events.thread_event import ThreadEvent


logger = logging.getLogger(__name__)


class EventFilter:
    def __init__(
        self,
        event_types: list[str] | None = None,
        metadata_filters: dict[str, list[Any]] | None = None,
    ) -> None:
        """
        Initialize event filter.

        Args:
            event_types: List of allowed event types, None means all types
            metadata_filters: Dict of metadata key -> list of allowed values
                             e.g. {"message_id": ["id1", "id2"]}
                             None or empty list for a key means all values allowed
        """
        self.event_types = event_types
        self.metadata_filters = metadata_filters or {}

    def matches(self, event: ThreadEvent) -> bool:
        if self.event_types is not None and event.event_type not in self.event_types:
            return False

        for key, allowed_values in self.metadata_filters.items():
            if allowed_values:
                event_value = event.metadata.get(key)
                if event_value is not None and event_value not in allowed_values:
                    return False

        return True


class SseConnection:
    def __init__(self, instance_id: str, event_filter: EventFilter | None = None) -> None:
        self.instance_id = instance_id
        self.queue: asyncio.Queue[ThreadEvent] = asyncio.Queue()
        self.connection_id = str(uuid4())
        self.filter = event_filter or EventFilter()

    def send(self, event: ThreadEvent) -> None:
        if self.filter.matches(event):
            self.queue.put_nowait(event)

    async def receive(self) -> ThreadEvent:
        return await self.queue.get()


class SseService:
    """Fans thread events out to the HTTP clients watching each chat instance.

    `publish` is synchronous so it can be used directly as a thread engine
    subscriber; connections buffer events in an unbounded queue until the
    response generator drains them.
    """

    def __init__(self) -> None:
        self._connections: dict[str, list[SseConnection]] = defaultdict(list)

    def register_connection(
        self,
        instance_id: str,
        event_filter: EventFilter | None = None,
    ) -> SseConnection:
        connection = SseConnection(instance_id, event_filter)
        self._connections[instance_id].append(connection)
        logger.debug("Registered SSE connection %s for %s", connection.connection_id, instance_id)
        return connection

    def unregister_connection(self, connection: SseConnection) -> None:
        connections = self._connections.get(connection.instance_id)
        if connections is None:
            return

        self._connections[connection.instance_id] = [
            conn for conn in connections
            if conn.connection_id != connection.connection_id
        ]
        if not self._connections[connection.instance_id]:
            del self._connections[connection.instance_id]
        logger.debug("Unregistered SSE connection %s", connection.connection_id)

    def publish(self, instance_id: str, event: ThreadEvent) -> None:
        for connection in list(self._connections.get(instance_id, [])):
            connection.send(event)

    def get_active_connections_count(self, instance_id: str) -> int:
        return len(self._connections.get(instance_id, []))

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import uuid4

from chatbridge.db.offline_queue_repo import OfflineQueueRepo
from chatbridge.models.chat.models import Message
from chatbridge.models.queue.models import QueuedMessage


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OfflineQueue:
    """Durable buffer of user messages that could not be sent.

    Bounded by size (oldest entry dropped on overflow) and by age (expired
    entries are dropped lazily when the queue is read). The queue never sends
    anything itself; its owner replays `pending()` and calls `dequeue` once a
    send is confirmed.
    """

    def __init__(
        self,
        instance_id: str,
        repo: OfflineQueueRepo,
        max_size: int = 10,
        max_age_seconds: int = 86400,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.instance_id = instance_id
        self._repo = repo
        self._max_size = max_size
        self._max_age = timedelta(seconds=max_age_seconds)
        self._clock = clock

    def enqueue(self, message: Message) -> str:
        overflow = self._repo.count_by_instance(self.instance_id) - self._max_size + 1
        if overflow > 0:
            dropped = self._repo.delete_oldest(self.instance_id, overflow)
            logger.warning(
                "Offline queue for %s is full, dropped %d oldest message(s)",
                self.instance_id, dropped,
            )

        item = QueuedMessage(
            id=str(uuid4()),
            instance_id=self.instance_id,
            user_message_id=message.id,
            content=message.content,
            queued_at=self._clock(),
        )
        self._repo.add(item)
        logger.info("Queued message %s for %s while offline", message.id, self.instance_id)
        return item.id

    def dequeue(self, queued_id: str) -> bool:
        return self._repo.delete(self.instance_id, queued_id)

    def pending(self) -> list[QueuedMessage]:
        self._evict_expired()
        return self._repo.list_by_instance(self.instance_id)

    def find_by_user_message(self, user_message_id: str) -> QueuedMessage | None:
        return next((item for item in self.pending() if item.user_message_id == user_message_id), None)

    def size(self) -> int:
        self._evict_expired()
        return self._repo.count_by_instance(self.instance_id)

    def record_failure(self, queued_id: str, error: str) -> QueuedMessage | None:
        """Count a failed delivery attempt; returns the updated entry"""
        item = self._repo.get(self.instance_id, queued_id)
        if item is None:
            return None

        attempts = item.attempts + 1
        self._repo.update_attempts(self.instance_id, queued_id, attempts, error)
        return self._repo.get(self.instance_id, queued_id)

    def clear(self) -> None:
        self._repo.delete_all(self.instance_id)

    def _evict_expired(self) -> None:
        cutoff = self._clock() - self._max_age
        expired = self._repo.delete_older_than(self.instance_id, cutoff)
        if expired:
            logger.info("Dropped %d expired offline message(s) for %s", expired, self.instance_id)

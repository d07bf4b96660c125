from dataclasses import dataclass
from datetime import datetime

from chatbridge.models.chat.models import ContentPart, join_text


@dataclass(frozen=True)
class QueuedMessage:
    """A user message waiting for connectivity, plus its delivery bookkeeping"""
    id: str
    instance_id: str
    user_message_id: str
    content: tuple[ContentPart, ...]
    queued_at: datetime
    attempts: int = 0
    last_error: str | None = None

    @property
    def text(self) -> str:
        return join_text(self.content)

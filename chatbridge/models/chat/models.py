from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from chatbridge.models.chat.enums import ContentPartType, MessageRole, MessageStatus
from chatbridge.models.chat.responses import ChatMessageResponse, ContentPartResponse
from chatbridge.models.errors.models import ClassifiedError


@dataclass(frozen=True)
class ContentPart:
    type: ContentPartType
    text: str = ""
    url: str | None = None
    filename: str | None = None
    mime_type: str | None = None

    @staticmethod
    def of_text(text: str) -> 'ContentPart':
        return ContentPart(type=ContentPartType.TEXT, text=text)

    @staticmethod
    def of_file(url: str, filename: str | None = None, mime_type: str | None = None) -> 'ContentPart':
        is_image = mime_type is not None and mime_type.startswith("image/")
        return ContentPart(
            type=ContentPartType.IMAGE if is_image else ContentPartType.FILE,
            url=url,
            filename=filename,
            mime_type=mime_type,
        )

    def is_empty(self) -> bool:
        if self.type == ContentPartType.TEXT:
            return not self.text.strip()
        return not self.url

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.type == ContentPartType.TEXT:
            data["text"] = self.text
        else:
            data["url"] = self.url
            data["filename"] = self.filename
            data["mime_type"] = self.mime_type
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> 'ContentPart':
        return ContentPart(
            type=ContentPartType(data.get("type", ContentPartType.TEXT.value)),
            text=data.get("text") or "",
            url=data.get("url"),
            filename=data.get("filename"),
            mime_type=data.get("mime_type"),
        )

    def to_response(self) -> ContentPartResponse:
        return ContentPartResponse(
            type=self.type.value,
            text=self.text,
            url=self.url,
            filename=self.filename,
            mime_type=self.mime_type,
        )


def join_text(parts: tuple[ContentPart, ...]) -> str:
    return "\n".join(part.text for part in parts if part.type == ContentPartType.TEXT and part.text)


@dataclass(frozen=True)
class Message:
    id: str
    role: MessageRole
    content: tuple[ContentPart, ...]
    status: MessageStatus
    created_at: datetime
    error: ClassifiedError | None = None

    @property
    def text(self) -> str:
        return join_text(self.content)

    @property
    def attachments(self) -> tuple[ContentPart, ...]:
        return tuple(part for part in self.content if part.type != ContentPartType.TEXT)

    @staticmethod
    def create(role: MessageRole, content: tuple[ContentPart, ...], status: MessageStatus) -> 'Message':
        return Message(
            id=str(uuid4()),
            role=role,
            content=content,
            status=status,
            created_at=datetime.now(timezone.utc),
        )

    def to_response(self) -> ChatMessageResponse:
        return ChatMessageResponse(
            id=self.id,
            role=self.role.value,
            status=self.status.value,
            text=self.text,
            content=[part.to_response() for part in self.content],
            created_at=self.created_at,
            error_kind=self.error.kind.value if self.error else None,
            error_message=self.error.user_message if self.error else None,
        )


@dataclass(frozen=True)
class ChatReply:
    """Outcome of one successful transport run"""
    text: str
    session_id: str | None = None


@dataclass
class ReplayResult:
    sent: int = 0
    failed: int = 0
    dropped: int = 0
    remaining: int = 0
    failed_ids: list[str] = field(default_factory=list)

from datetime import datetime
from pydantic import BaseModel


class ContentPartResponse(BaseModel):
    type: str
    text: str = ""
    url: str | None = None
    filename: str | None = None
    mime_type: str | None = None


class ChatMessageResponse(BaseModel):
    id: str
    role: str
    status: str
    text: str
    content: list[ContentPartResponse]
    created_at: datetime
    error_kind: str | None = None
    error_message: str | None = None


class ThreadResponse(BaseModel):
    instance_id: str
    session_id: str
    messages: list[ChatMessageResponse]


class ReplayResponse(BaseModel):
    online: bool
    queued: int

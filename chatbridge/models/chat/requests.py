from pydantic import BaseModel, Field


class FileReference(BaseModel):
    url: str = Field(..., min_length=1, description="Where the host application stored the file")
    filename: str | None = None
    mime_type: str | None = None


class SendMessageRequest(BaseModel):
    content: str = Field("", description="Message text")
    files: list[FileReference] = Field(default_factory=list, description="Already-uploaded attachments")


class ConnectivityRequest(BaseModel):
    online: bool

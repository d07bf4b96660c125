from dataclasses import dataclass
from enum import Enum


class FrameType(str, Enum):
    START = "start"
    CONTENT = "content"
    METADATA = "metadata"
    ERROR = "error"
    END = "end"


@dataclass(frozen=True)
class Frame:
    """One decoded unit of a streamed reply"""
    frame_type: FrameType
    text: str = ""
    session_id: str | None = None
    event: str | None = None

    @staticmethod
    def content(text: str, event: str | None = None) -> 'Frame':
        return Frame(frame_type=FrameType.CONTENT, text=text, event=event)

    @staticmethod
    def end(event: str | None = None) -> 'Frame':
        return Frame(frame_type=FrameType.END, event=event)

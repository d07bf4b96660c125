from enum import Enum


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not MessageStatus.RUNNING


class ContentPartType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class TransportMode(str, Enum):
    STANDARD = "standard"
    STREAMING = "streaming"


class StreamTextMode(str, Enum):
    """How streamed content frames relate to each other"""
    CUMULATIVE = "cumulative"  # every frame carries the full reply so far
    DELTA = "delta"  # every frame carries only the new increment


class SessionLifetime(str, Enum):
    TAB = "tab"
    PERSISTENT = "persistent"

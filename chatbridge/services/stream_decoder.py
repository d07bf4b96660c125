"""Incremental decoder for the line-oriented streaming reply format.

Records are separated by a blank line. Each record carries an optional
`event:` type marker and one or more `data:` lines:

    event: message
    data: {"output": "Hello there"}

    data: [DONE]

`feed` is a pure function: it returns the frames decoded so far plus the
unfinished tail of the buffer, which the caller prepends to the next chunk.
`StreamDecoder` is the small stateful wrapper the transport drives.
"""

import json
import logging

from chatbridge.models.chat.enums import StreamTextMode
from chatbridge.models.stream.models import Frame, FrameType


logger = logging.getLogger(__name__)

DEFAULT_SENTINEL = "[DONE]"
START_EVENTS = {"start", "begin"}
END_EVENTS = {"end", "done"}
ERROR_EVENTS = {"error"}
RECORD_SEPARATOR = "\n\n"


def feed(buffer: str, sentinel: str = DEFAULT_SENTINEL) -> tuple[list[Frame], str]:
    """Decode every complete record in `buffer`.

    Returns the decoded frames and the remainder to carry into the next call.
    Decoding stops at the first end frame; nothing after it is carried forward.
    """
    buffer = buffer.replace("\r\n", "\n")
    frames: list[Frame] = []

    records = buffer.split(RECORD_SEPARATOR)
    remainder = records.pop()

    for record in records:
        frames.extend(decode_record(record, sentinel))
        if frames and frames[-1].frame_type == FrameType.END:
            return frames, ""

    # The sentinel ends the stream even before its record is closed by a blank line
    tail_lines = remainder.split("\n")
    complete_lines = tail_lines[:-1]
    for index, line in enumerate(complete_lines):
        if _is_sentinel_line(line, sentinel):
            frames.extend(decode_record("\n".join(complete_lines[:index]), sentinel))
            frames.append(Frame.end())
            return frames, ""

    return frames, remainder


def flush(remainder: str, sentinel: str = DEFAULT_SENTINEL) -> list[Frame]:
    """Decode whatever is left once the connection has closed"""
    remainder = remainder.replace("\r\n", "\n")
    if not remainder.strip():
        return []
    return decode_record(remainder.strip("\n"), sentinel)


def decode_record(record: str, sentinel: str = DEFAULT_SENTINEL) -> list[Frame]:
    event: str | None = None
    data_lines: list[str] = []

    for line in record.split("\n"):
        if not line or line.startswith(":"):
            continue

        field, separator, value = line.partition(":")
        if not separator:
            value = ""
        elif value.startswith(" "):
            value = value[1:]

        if field == "event":
            event = value.strip().lower() or None
        elif field == "data":
            data_lines.append(value)
        # id, retry and unknown fields carry nothing for us

    if not data_lines:
        if event in START_EVENTS:
            return [Frame(frame_type=FrameType.START, event=event)]
        if event in END_EVENTS:
            return [Frame.end(event)]
        return []

    data = "\n".join(data_lines)

    if data.strip() == sentinel:
        return [Frame.end(event)]

    if event in ERROR_EVENTS:
        return [Frame(frame_type=FrameType.ERROR, text=data, event=event)]

    frames = decode_payload(data, event)
    if event in START_EVENTS:
        metadata = [frame for frame in frames if frame.frame_type == FrameType.METADATA]
        return [Frame(frame_type=FrameType.START, event=event), *metadata]
    if event in END_EVENTS:
        return [*frames, Frame.end(event)]
    return frames


def decode_payload(data: str, event: str | None = None) -> list[Frame]:
    """Turn one data payload into frames; anything unrecognized degrades to raw text"""
    if not data.strip():
        return []

    try:
        parsed = json.loads(data)
    except ValueError:
        return [Frame.content(data, event)]

    if not isinstance(parsed, dict):
        return [Frame.content(data, event)]

    frames: list[Frame] = []

    session_id = parsed.get("sessionId")
    if isinstance(session_id, str) and session_id.strip():
        frames.append(Frame(frame_type=FrameType.METADATA, session_id=session_id.strip(), event=event))

    if parsed.get("error"):
        error = parsed["error"]
        frames.append(Frame(
            frame_type=FrameType.ERROR,
            text=error if isinstance(error, str) else json.dumps(error),
            event=event,
        ))
    elif "output" in parsed:
        output = parsed["output"]
        if output is None:
            output = ""
        elif not isinstance(output, str):
            output = json.dumps(output)
        frames.append(Frame.content(output, event))

    if not frames:
        return [Frame.content(data, event)]
    return frames


def _is_sentinel_line(line: str, sentinel: str) -> bool:
    field, separator, value = line.partition(":")
    return field == "data" and bool(separator) and value.strip() == sentinel


class StreamDecoder:
    """Carries the buffer remainder and the accumulated reply text across chunks"""

    def __init__(
        self,
        sentinel: str = DEFAULT_SENTINEL,
        text_mode: StreamTextMode = StreamTextMode.CUMULATIVE,
    ) -> None:
        self._sentinel = sentinel
        self._text_mode = text_mode
        self._remainder = ""
        self._text = ""
        self._finished = False

    @property
    def text(self) -> str:
        return self._text

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, chunk: str) -> list[Frame]:
        if self._finished:
            return []

        frames, self._remainder = feed(self._remainder + chunk, self._sentinel)
        if frames and frames[-1].frame_type == FrameType.END:
            self._finished = True
        return frames

    def flush(self) -> list[Frame]:
        if self._finished:
            return []

        frames = flush(self._remainder, self._sentinel)
        self._remainder = ""
        if frames and frames[-1].frame_type == FrameType.END:
            self._finished = True
        return frames

    def apply(self, frame: Frame) -> str:
        """Fold a content frame into the reply text and return the cumulative text"""
        if frame.frame_type != FrameType.CONTENT:
            return self._text

        if self._text_mode == StreamTextMode.DELTA:
            self._text += frame.text
        else:
            self._text = frame.text
        logger.debug("Stream text is now %d characters", len(self._text))
        return self._text

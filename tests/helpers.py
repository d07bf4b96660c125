import asyncio
import json
from typing import Any, AsyncIterator

import httpx

from chatbridge.events.thread_event import ThreadEvent


ENDPOINT_URL = "https://hooks.example.test/webhook/chat"


class RecordingSleep:
    """Stands in for asyncio.sleep in the retry manager; records requested delays"""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[ThreadEvent] = []

    def __call__(self, event: ThreadEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.event_type for event in self.events]

    def of_type(self, event_type: str) -> list[ThreadEvent]:
        return [event for event in self.events if event.event_type == event_type]


def sse_record(payload: Any, event: str | None = None) -> str:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {data}\n\n"


async def stream_chunks(*chunks: str) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk.encode("utf-8")


def streaming_response(*chunks: str) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"Content-Type": "text/event-stream"},
        content=stream_chunks(*chunks),
    )

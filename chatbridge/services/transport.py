import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from chatbridge.models.chat.enums import ContentPartType, MessageRole, TransportMode
from chatbridge.models.chat.models import ChatReply, ContentPart, join_text
from chatbridge.models.errors.models import (
    BackendStreamError,
    HttpStatusError,
    MalformedResponseError,
    RequestTimeoutError,
)
from chatbridge.models.stream.models import Frame, FrameType
from chatbridge.settings import BridgeSettings
from chatbridge.services.stream_decoder import StreamDecoder


logger = logging.getLogger(__name__)

SEND_MESSAGE_ACTION = "sendMessage"
LOAD_PREVIOUS_SESSION_ACTION = "loadPreviousSession"

PartialCallback = Callable[[str], None]


class HttpTransport:
    """Sends one user turn to the webhook and decodes the reply.

    The whole exchange, stream included, runs under a deadline owned by the
    transport. Cancelling the awaiting task aborts the request or the stream
    read wherever it is suspended.
    """

    def __init__(self, settings: BridgeSettings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)

    @property
    def mode(self) -> TransportMode:
        return self._settings.mode

    def _headers(self, accept: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": accept,
            **self._settings.auth_headers,
        }

    def _context(self, metadata: dict[str, Any]) -> dict[str, Any]:
        return {
            **metadata,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def build_payload(
        self,
        content: tuple[ContentPart, ...],
        session_id: str,
        metadata: dict[str, Any],
        history: tuple[tuple[str, str], ...] = (),
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            self._settings.chat_input_key: join_text(content),
            self._settings.session_key: session_id,
            "action": SEND_MESSAGE_ACTION,
            "context": self._context(metadata),
        }

        files = [part.to_dict() for part in content if part.type != ContentPartType.TEXT]
        if files:
            payload["files"] = files

        if self._settings.include_message_history:
            payload["messageHistory"] = [
                {"role": role, "content": text} for role, text in history
            ]

        return payload

    async def run(
        self,
        content: tuple[ContentPart, ...],
        session_id: str,
        metadata: dict[str, Any],
        on_partial: PartialCallback,
        history: tuple[tuple[str, str], ...] = (),
    ) -> ChatReply:
        payload = self.build_payload(content, session_id, metadata, history)
        timeout_seconds = self._settings.request_timeout_seconds

        try:
            async with asyncio.timeout(timeout_seconds):
                if self.mode == TransportMode.STREAMING:
                    return await self._run_streaming(payload, on_partial)
                return await self._run_standard(payload)
        except TimeoutError as e:
            raise RequestTimeoutError(timeout_seconds) from e

    async def _run_standard(self, payload: dict[str, Any]) -> ChatReply:
        response = await self._client.post(
            self._settings.endpoint_url,
            json=payload,
            headers=self._headers("application/json"),
        )

        if not response.is_success:
            raise HttpStatusError(
                status_code=response.status_code,
                body=response.text,
                retry_after=response.headers.get("Retry-After"),
            )

        return self.parse_standard_body(response.text)

    def parse_standard_body(self, body: str) -> ChatReply:
        try:
            data = json.loads(body)
        except ValueError as e:
            raise MalformedResponseError(f"Reply is not valid JSON: {body[:200]!r}") from e

        if not isinstance(data, dict):
            raise MalformedResponseError(f"Reply is not a JSON object: {body[:200]!r}")

        output = data.get("output")
        if output is None:
            output = ""
        elif not isinstance(output, str):
            raise MalformedResponseError(f"Reply 'output' is not a string: {output!r}")

        session_id = data.get("sessionId")
        if not isinstance(session_id, str) or not session_id.strip():
            session_id = None

        return ChatReply(text=output, session_id=session_id)

    async def _run_streaming(self, payload: dict[str, Any], on_partial: PartialCallback) -> ChatReply:
        decoder = StreamDecoder(
            sentinel=self._settings.stream_end_sentinel,
            text_mode=self._settings.stream_text_mode,
        )
        session_id: str | None = None

        async with self._client.stream(
            "POST",
            self._settings.endpoint_url,
            json=payload,
            headers=self._headers("text/event-stream"),
        ) as response:
            if not response.is_success:
                body = await response.aread()
                raise HttpStatusError(
                    status_code=response.status_code,
                    body=body.decode("utf-8", errors="replace"),
                    retry_after=response.headers.get("Retry-After"),
                )

            async for chunk in response.aiter_text():
                for frame in decoder.feed(chunk):
                    session_id = self._apply_frame(frame, decoder, on_partial) or session_id
                if decoder.finished:
                    return ChatReply(text=decoder.text, session_id=session_id)

            for frame in decoder.flush():
                session_id = self._apply_frame(frame, decoder, on_partial) or session_id
            if decoder.finished:
                return ChatReply(text=decoder.text, session_id=session_id)

        raise MalformedResponseError("Stream closed without an end marker")

    def _apply_frame(self, frame: Frame, decoder: StreamDecoder, on_partial: PartialCallback) -> str | None:
        """Apply one frame; returns a server-assigned session id when the frame carries one"""
        if frame.frame_type == FrameType.CONTENT:
            on_partial(decoder.apply(frame))
        elif frame.frame_type == FrameType.METADATA:
            return frame.session_id
        elif frame.frame_type == FrameType.ERROR:
            raise BackendStreamError(frame.text or "Backend reported a stream error")
        return None

    async def load_history(self, session_id: str, metadata: dict[str, Any]) -> list[tuple[MessageRole, str]]:
        """Fetch the backend's stored conversation for this session; empty on any failure"""
        payload = {
            "action": LOAD_PREVIOUS_SESSION_ACTION,
            self._settings.session_key: session_id,
            "context": self._context(metadata),
        }

        try:
            async with asyncio.timeout(self._settings.request_timeout_seconds):
                response = await self._client.post(
                    self._settings.endpoint_url,
                    json=payload,
                    headers=self._headers("application/json"),
                )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError, TimeoutError) as e:
            logger.warning("Could not load previous session %s: %s", session_id, e)
            return []

        raw_messages = data.get("messages") if isinstance(data, dict) else data
        if not isinstance(raw_messages, list):
            return []

        history: list[tuple[MessageRole, str]] = []
        for item in raw_messages:
            if not isinstance(item, dict):
                continue
            role = item.get("role")
            content = item.get("content")
            if role not in (MessageRole.USER.value, MessageRole.ASSISTANT.value) or not isinstance(content, str):
                continue
            history.append((MessageRole(role), content))
        return history

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

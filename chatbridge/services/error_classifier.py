import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

from chatbridge.models.errors.enums import ErrorKind
from chatbridge.models.errors.models import (
    BackendStreamError,
    BridgeRequestError,
    ClassifiedError,
    HttpStatusError,
    MalformedResponseError,
    OfflineError,
    RequestCancelledError,
    RequestTimeoutError,
)


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.OFFLINE: "You appear to be offline. Your message will be sent when the connection returns.",
    ErrorKind.TIMEOUT: "The response took too long. Please try again.",
    ErrorKind.RATE_LIMITED: "Too many messages. Please wait a moment before sending another.",
    ErrorKind.SERVER_ERROR: "The chat service encountered an error. Please try again.",
    ErrorKind.BAD_GATEWAY: "The chat service is temporarily unavailable. Please try again later.",
    ErrorKind.UNAUTHORIZED: "You are not authorized to use this chat. Please sign in again.",
    ErrorKind.MALFORMED_RESPONSE: "Received an invalid response from the chat service.",
    ErrorKind.CANCELLED: "",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again.",
}

RETRYABLE_KINDS = {
    ErrorKind.OFFLINE,
    ErrorKind.TIMEOUT,
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVER_ERROR,
    ErrorKind.BAD_GATEWAY,
}

BAD_GATEWAY_STATUSES = {502, 503, 504}
UNAUTHORIZED_STATUSES = {401, 403}
MAX_DETAIL_LENGTH = 500


@dataclass(frozen=True)
class ClassificationContext:
    online: bool = True
    attempt: int = 1


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header given either as delta-seconds or as an HTTP date"""
    if value is None or not value.strip():
        return None

    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None

    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max((retry_at - now).total_seconds(), 0.0)


class ErrorClassifier:
    """Maps transport and protocol failures onto the closed ErrorKind taxonomy.

    Pure and synchronous, never performs I/O.
    """

    def classify(
        self,
        failure: BaseException,
        context: ClassificationContext | None = None,
    ) -> ClassifiedError:
        context = context or ClassificationContext()

        if isinstance(failure, BridgeRequestError):
            return failure.error

        if isinstance(failure, (RequestCancelledError, asyncio.CancelledError)):
            return self._make(ErrorKind.CANCELLED)

        if isinstance(failure, OfflineError):
            return self._make(ErrorKind.OFFLINE, detail=str(failure))

        if not context.online and isinstance(failure, (httpx.TransportError, TimeoutError)):
            return self._make(ErrorKind.OFFLINE, detail=str(failure))

        if isinstance(failure, (RequestTimeoutError, TimeoutError, httpx.TimeoutException)):
            return self._make(ErrorKind.TIMEOUT, detail=str(failure))

        # backend unreachable while the device is online
        if isinstance(failure, httpx.NetworkError):
            return self._make(ErrorKind.BAD_GATEWAY, detail=str(failure))

        if isinstance(failure, HttpStatusError):
            return self.classify_status(failure.status_code, failure.body, failure.retry_after)

        if isinstance(failure, BackendStreamError):
            return self._make(ErrorKind.SERVER_ERROR, detail=str(failure))

        if isinstance(failure, (MalformedResponseError, httpx.RemoteProtocolError, httpx.DecodingError)):
            return self._make(ErrorKind.MALFORMED_RESPONSE, detail=str(failure))

        return self._make(ErrorKind.UNKNOWN, detail=f"{type(failure).__name__}: {failure}")

    def classify_status(
        self,
        status_code: int,
        body: str | None = None,
        retry_after: str | None = None,
    ) -> ClassifiedError:
        """Classify a completed-but-unsuccessful response"""
        if status_code == 429:
            kind = ErrorKind.RATE_LIMITED
        elif status_code in BAD_GATEWAY_STATUSES:
            kind = ErrorKind.BAD_GATEWAY
        elif 500 <= status_code < 600:
            kind = ErrorKind.SERVER_ERROR
        elif status_code in UNAUTHORIZED_STATUSES:
            kind = ErrorKind.UNAUTHORIZED
        else:
            kind = ErrorKind.UNKNOWN

        return self._make(
            kind,
            retry_after_seconds=parse_retry_after(retry_after) if kind == ErrorKind.RATE_LIMITED else None,
            status_code=status_code,
            detail=body,
        )

    def _make(
        self,
        kind: ErrorKind,
        retry_after_seconds: float | None = None,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> ClassifiedError:
        if detail is not None and len(detail) > MAX_DETAIL_LENGTH:
            detail = detail[:MAX_DETAIL_LENGTH] + "..."

        return ClassifiedError(
            kind=kind,
            user_message=USER_MESSAGES[kind],
            retryable=kind in RETRYABLE_KINDS,
            retry_after_seconds=retry_after_seconds,
            status_code=status_code,
            detail=detail,
        )

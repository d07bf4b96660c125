from dataclasses import dataclass

from chatbridge.models.errors.enums import ErrorKind


@dataclass(frozen=True)
class ClassifiedError:
    """Normalized failure handed to the retry logic and, when terminal, to the thread.

    Only `user_message` is meant for end users. `status_code` and `detail`
    are kept for local diagnostics.
    """
    kind: ErrorKind
    user_message: str
    retryable: bool
    retry_after_seconds: float | None = None
    status_code: int | None = None
    detail: str | None = None


class TransportError(Exception):
    """Base class for failures raised by the transport"""
    pass


class HttpStatusError(TransportError):
    """Backend answered, but not with a 2xx status"""

    def __init__(self, status_code: int, body: str = "", retry_after: str | None = None) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after


class MalformedResponseError(TransportError):
    """Response body does not follow the expected protocol"""
    pass


class BackendStreamError(TransportError):
    """Backend reported an error inside an otherwise healthy stream"""
    pass


class RequestTimeoutError(TransportError):
    """Client-side deadline expired before the reply finished"""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Request did not finish within {timeout_seconds} seconds")
        self.timeout_seconds = timeout_seconds


class OfflineError(TransportError):
    """No network connectivity is available"""
    pass


class RequestCancelledError(TransportError):
    """Request was cancelled by the caller"""
    pass


class BridgeRequestError(Exception):
    """A request failed for good, either non-retryable or out of attempts"""

    def __init__(self, error: ClassifiedError, attempts: int) -> None:
        super().__init__(f"{error.kind.value} after {attempts} attempt(s)")
        self.error = error
        self.attempts = attempts

from enum import Enum


class ErrorKind(str, Enum):
    OFFLINE = "offline"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rateLimited"
    SERVER_ERROR = "serverError"
    BAD_GATEWAY = "badGateway"
    UNAUTHORIZED = "unauthorized"
    MALFORMED_RESPONSE = "malformedResponse"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

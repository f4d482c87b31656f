from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    BAD_INPUT = "bad_input"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    UPSTREAM_ERROR = "upstream_error"
    INTERNAL_ERROR = "internal_error"
    CANCELLED = "cancelled"


UNKNOWN_ERROR_MESSAGE = "An unknown error occurred"


class RelayError(Exception):
    """Base class for failures that end a relay cycle.

    Each subclass carries an ``ErrorKind`` so the relay boundary can map it
    to a status code without inspecting exception types.
    """

    kind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or UNKNOWN_ERROR_MESSAGE
        super().__init__(self.message)


class BadInputError(RelayError):
    kind = ErrorKind.BAD_INPUT


class UpstreamError(RelayError):
    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Ollama API error: {status_code}, {body}")


class UpstreamUnavailableError(RelayError):
    kind = ErrorKind.INTERNAL_ERROR


class StreamReadError(RelayError):
    kind = ErrorKind.INTERNAL_ERROR


class RequestCancelledError(RelayError):
    kind = ErrorKind.CANCELLED

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "Client closed request")


__all__ = [
    "ErrorKind",
    "UNKNOWN_ERROR_MESSAGE",
    "RelayError",
    "BadInputError",
    "UpstreamError",
    "UpstreamUnavailableError",
    "StreamReadError",
    "RequestCancelledError",
]

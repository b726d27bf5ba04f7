from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    PAYLOAD_TOO_LARGE = "payload_too_large"
    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"
    INVALID_PAYLOAD = "invalid_payload"
    EMPTY_INPUT = "empty_input"
    INVALID_ARGUMENT = "invalid_argument"
    QUOTA_EXCEEDED = "quota_exceeded"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INTERNAL_ERROR = "internal_error"


STATUS_CODES = {
    ErrorKind.PAYLOAD_TOO_LARGE: 400,
    ErrorKind.UNSUPPORTED_MEDIA_TYPE: 400,
    ErrorKind.INVALID_PAYLOAD: 400,
    ErrorKind.EMPTY_INPUT: 400,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.QUOTA_EXCEEDED: 429,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
    ErrorKind.INTERNAL_ERROR: 500,
}

DEFAULT_MESSAGES = {
    ErrorKind.PAYLOAD_TOO_LARGE: "File size exceeds 25MB limit",
    ErrorKind.UNSUPPORTED_MEDIA_TYPE: "Unsupported file type. Please use PNG, JPEG, GIF, WebP, or PDF.",
    ErrorKind.INVALID_PAYLOAD: "Failed to process file data",
    ErrorKind.EMPTY_INPUT: "Message is required and must be a non-empty string",
    ErrorKind.INVALID_ARGUMENT: "The AI service rejected the request. Please check the input and try again.",
    ErrorKind.QUOTA_EXCEEDED: "API quota exceeded. Please try again later.",
    ErrorKind.UPSTREAM_UNAVAILABLE: "AI service temporarily unavailable. Please try again later.",
    ErrorKind.INTERNAL_ERROR: "Internal server error. Please try again later.",
}


class GatewayError(Exception):
    """A classified failure with a client-safe message and an HTTP status."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.QUOTA_EXCEEDED, ErrorKind.UPSTREAM_UNAVAILABLE)

    def to_dict(self) -> dict:
        return {"error": self.message}

    def __repr__(self) -> str:
        return f"GatewayError({self.kind.value!r}, {self.message!r})"

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    COURSE_NOT_FOUND = "COURSE_NOT_FOUND"
    COURSE_REQUIRED = "COURSE_REQUIRED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    INVALID_URL = "INVALID_URL"
    INVALID_INPUT = "INVALID_INPUT"
    EMBEDDINGS_UNAVAILABLE = "EMBEDDINGS_UNAVAILABLE"
    CANVAS_UNAVAILABLE = "CANVAS_UNAVAILABLE"


class CanvasContextError(Exception):
    """Raised by tool handlers for caller contract violations.

    Caught by server.py and serialised into the MCP error response.
    Upstream flakiness (restricted endpoints, missing pages, model outages)
    never surfaces as this error; it is folded into result shapes instead.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class CanvasRequestError(Exception):
    """A Canvas request returned a non-2xx status or failed in transport.

    ``status_code`` is 0 for transport failures. Never escapes the prober,
    discovery or orchestrator boundaries.
    """

    def __init__(self, url: str, status_code: int, message: str) -> None:
        super().__init__(f"HTTP {status_code} for {url}: {message}" if status_code else message)
        self.url = url
        self.status_code = status_code
        self.message = message


class LoginRedirectError(CanvasRequestError):
    """A web page fetch landed on an SSO sign-in screen instead of content."""

    def __init__(self, url: str, status_code: int = 200) -> None:
        super().__init__(url, status_code, "Web interface requires additional authentication")


class ParseErrorCode(StrEnum):
    DISABLED = "DISABLED"
    UPLOAD_DISALLOWED = "UPLOAD_DISALLOWED"
    UNSUPPORTED = "UNSUPPORTED"
    SIZE_EXCEEDED = "SIZE_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    API_ERROR = "API_ERROR"


class DocumentParseError(Exception):
    """Typed failure from the document-parsing service."""

    def __init__(self, code: ParseErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def declined(self) -> bool:
        """True when the parser refused the file rather than failing on it."""
        return self.code in {
            ParseErrorCode.DISABLED,
            ParseErrorCode.UPLOAD_DISALLOWED,
            ParseErrorCode.UNSUPPORTED,
            ParseErrorCode.SIZE_EXCEEDED,
        }


class SmallModelError(RuntimeError):
    """The small-model service was unreachable or returned an unusable reply."""


class EmbeddingError(RuntimeError):
    """Raised when embedding generation fails."""

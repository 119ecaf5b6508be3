"""
Error Definitions

Every error the relay answers with is rendered as a Messages API error body:
{"type": "error", "error": {"type": ..., "message": ..., "code": ...}}.
"""

from typing import Any, Optional


class AppError(Exception):
    """
    Relay Base Exception

    Subclasses fix the error type, default code and HTTP status; callers
    may still override the code, status and details per raise.
    """

    error_type = "server_error"
    default_code = "internal_error"
    default_message = "Internal server error"
    status_code = 500

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.code = code or self.default_code
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self, include_details: bool = True) -> dict[str, Any]:
        """
        Render as a Messages API error body

        Args:
            include_details: Attach the details mapping when it is non-empty

        Returns:
            dict: Error body
        """
        error: dict[str, Any] = {
            "type": self.error_type,
            "message": self.message,
            "code": self.code,
        }
        if include_details and self.details:
            error["details"] = self.details
        return {"type": "error", "error": error}


class InvalidRequestError(AppError):
    """The inbound Messages request cannot be parsed."""

    error_type = "invalid_request_error"
    default_code = "invalid_request"
    default_message = "Invalid request"
    status_code = 400


class RoutingError(AppError):
    """No usable backend exists for the requested model; nothing was dispatched."""

    error_type = "routing_error"
    default_code = "no_backend"
    default_message = "No backend available for model"


class BackendTransportError(AppError):
    """
    Backend Transport Error

    Network failure, non-2xx status, or an error body in the middle of a
    stream. Never retried here.
    """

    default_code = "backend_error"
    default_message = "Backend request failed"


class MalformedChunkError(ValueError):
    """A single stream chunk that could not be parsed; the chunk is skipped."""

"""Error types shared by the research service and its HTTP surface."""
from __future__ import annotations


class ResearchServiceError(Exception):
    """Base class for errors that map onto an HTTP-equivalent status."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_payload(self) -> dict:
        return {"message": self.message, "code": self.code}


class ValidationError(ResearchServiceError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, message: str | None = None, errors: dict[str, list[str]] | None = None):
        super().__init__(message)
        self.errors = errors or {}

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class AuthenticationError(ResearchServiceError):
    status_code = 401
    default_message = "Authentication required"


class ForbiddenError(ResearchServiceError):
    status_code = 403
    default_message = "You do not have permission to access this resource"


class NotFoundError(ResearchServiceError):
    status_code = 404
    default_message = "Resource not found"


class InvalidTransitionError(ResearchServiceError):
    status_code = 409
    default_message = "Invalid state transition"

    def __init__(self, message: str | None = None, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.current_status:
            payload["currentStatus"] = self.current_status
        return payload


class UpstreamError(ResearchServiceError):
    """Extractor or analyzer failure. Never rendered to end users verbatim."""

    status_code = 502
    default_message = "Upstream service failure"

    def __init__(self, message: str | None = None, service: str = "unknown"):
        super().__init__(message)
        self.service = service


class StoreError(ResearchServiceError):
    status_code = 500
    default_message = "Database error"

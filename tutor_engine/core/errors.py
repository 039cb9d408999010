"""Domain exceptions shared by the store, providers, and the HTTP layer.

Every error carries the HTTP status it maps to, so route handlers can raise
them directly and ``main.py`` renders a single ``{error, details}`` body,
with ``sessionId`` added when the failing request had already created one.
"""

from typing import Any
from uuid import UUID


class TutorEngineError(Exception):
    """Base class for errors the API knows how to render."""

    status_code: int = 500
    error: str = "Internal error"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details if details is not None else message
        # Set when the request created a session before failing
        self.session_id: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error, "details": self.details}
        if self.session_id is not None:
            body["sessionId"] = str(self.session_id)
        return body


class ValidationError(TutorEngineError):
    """Bad or missing input. Never retried."""

    status_code = 400
    error = "Validation failed"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, details={"field": field, "message": message} if field else message)
        self.field = field


class AuthError(TutorEngineError):
    """Missing or invalid identity."""

    status_code = 401
    error = "Not authenticated"


class ForbiddenError(TutorEngineError):
    """Identity is valid but does not own the resource."""

    status_code = 403
    error = "Forbidden"


class NotFoundError(TutorEngineError):
    status_code = 404
    error = "Not found"


class UpstreamError(TutorEngineError):
    """Embedding or generation provider failure."""

    status_code = 500
    error = "Upstream provider failure"


class EmbeddingDimensionError(UpstreamError):
    """Provider returned a vector of unexpected length."""


class ContentPolicyError(UpstreamError):
    """Provider refused to continue for content-policy reasons."""


class PersistenceError(TutorEngineError):
    """Session store read or write failure."""

    status_code = 500
    error = "Storage failure"

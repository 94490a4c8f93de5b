"""
Typed error taxonomy.

Every error carries its HTTP status code explicitly. Routes never infer a
status from message text; the exception handler in main.py reads
`status_code` and `code` from the raised error.
"""
from typing import Optional


class PawStudioError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    @classmethod
    def default_message(cls) -> str:
        return "Internal server error"


class AuthenticationError(PawStudioError):
    """No session, or the session token is invalid or expired."""
    status_code = 401
    code = "unauthenticated"

    @classmethod
    def default_message(cls) -> str:
        return "Unauthorized"


class AuthorizationError(PawStudioError):
    """Authenticated, but the role does not allow the action."""
    status_code = 403
    code = "forbidden"

    @classmethod
    def default_message(cls) -> str:
        return "Insufficient permissions"


class ValidationError(PawStudioError):
    """Missing or malformed request fields."""
    status_code = 400
    code = "validation_error"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid request"


class NotFoundError(PawStudioError):
    status_code = 404
    code = "not_found"

    @classmethod
    def default_message(cls) -> str:
        return "Not found"


class InsufficientCreditsError(PawStudioError):
    status_code = 402
    code = "insufficient_credits"

    @classmethod
    def default_message(cls) -> str:
        return "Insufficient credits. Please purchase more credits to continue."


class ExternalServiceError(PawStudioError):
    """A storage or AI API call failed."""
    status_code = 500
    code = "external_service_error"
    retryable = True

    @classmethod
    def default_message(cls) -> str:
        return "External service request failed"


class GenerationFailedError(ExternalServiceError):
    """The AI API reported an Error status for the task."""
    code = "generation_failed"
    retryable = True

    @classmethod
    def default_message(cls) -> str:
        return "Generation failed with error status"


class ContentModeratedError(ExternalServiceError):
    """The AI API rejected the prompt or image. Never retry."""
    code = "content_moderated"
    retryable = False

    @classmethod
    def default_message(cls) -> str:
        return "Content was moderated. Please try a different photo."


class GenerationTimeoutError(PawStudioError):
    """The poll ceiling was reached without a terminal status."""
    status_code = 500
    code = "generation_timeout"
    retryable = True

    @classmethod
    def default_message(cls) -> str:
        return "Timeout: Generation did not complete in time"

"""
Custom Exceptions.

Application-specific exception classes for consistent error handling.

Every error raised by the bot engine extends ApplicationError so that the
FastAPI exception handlers, the command router, and the scheduler can treat
them uniformly (code + message), while still carrying the typed context
each layer needs (retry-after, job id, chat id, provider name).
"""


class ApplicationError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, code: str = "SYS_INTERNAL_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class NotFoundError(ApplicationError):
    """Raised when a resource cannot be found."""

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message, code="RES_NOT_FOUND")


class ValidationError(ApplicationError):
    """Raised when an update, payload, or schedule fails validation."""

    def __init__(self, message: str = "Validation failed", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message, code="VAL_VALIDATION_ERROR")


class AuthenticationError(ApplicationError):
    """Raised when a shared secret or caller identity cannot be verified."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message, code="AUTH_UNAUTHORIZED")


class PermissionDenied(ApplicationError):
    """Raised when a caller lacks authentication or the required subscription tier."""

    def __init__(self, message: str = "Permission denied", required_tier: str | None = None) -> None:
        self.required_tier = required_tier
        super().__init__(message, code="AUTHZ_FORBIDDEN")


class RateLimitExceeded(ApplicationError):
    """Raised when admission is denied by the rate limiter."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after_seconds: int = 0) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message, code="RATE_LIMITED")


class SchedulingError(ApplicationError):
    """Raised when a scheduled job cannot be computed or executed."""

    def __init__(self, message: str = "Scheduling failed", job_id: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(message, code="SCHED_JOB_FAILED")


class RenderError(ApplicationError):
    """Raised when a template cannot be rendered into valid messages."""

    def __init__(self, message: str = "Render failed", errors: list[str] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message, code="RENDER_FAILED")


class DeliveryError(ApplicationError):
    """Raised when the transport fails to deliver a message."""

    def __init__(self, message: str = "Delivery failed", chat_id: int | None = None) -> None:
        self.chat_id = chat_id
        super().__init__(message, code="DELIVERY_FAILED")


class DataUnavailable(ApplicationError):
    """Raised by a data provider when its snapshot cannot be fetched."""

    def __init__(self, message: str = "Data unavailable", provider: str = "unknown") -> None:
        self.provider = provider
        super().__init__(message, code="DATA_UNAVAILABLE")


class DatabaseError(ApplicationError):
    """Raised when a database operation fails."""

    def __init__(self, message: str = "Database error") -> None:
        super().__init__(message, code="SYS_DATABASE_ERROR")

"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: str = "APP_ERROR",
        context: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and error code."""
        self.message = message
        self.status_code = status_code
        self.code = code
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(AppException):
    """Malformed input, detected before any I/O."""

    def __init__(self, message: str = "Validation error", context: dict[str, Any] | None = None):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400, code="VALIDATION_ERROR", context=context)


class DomainError(AppException):
    """Business rule violation such as an illegal status transition."""

    def __init__(self, message: str, code: str, context: dict[str, Any] | None = None):
        """Initialize with 422 status code and a rule-specific code."""
        super().__init__(message, status_code=422, code=code, context=context)


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str, identifier: str):
        """Initialize with 404 status code."""
        super().__init__(
            f"{resource} with identifier '{identifier}' not found",
            status_code=404,
            code="NOT_FOUND",
            context={"resource": resource, "identifier": identifier},
        )


class ConflictError(AppException):
    """Identity or idempotency key already taken."""

    def __init__(self, resource: str, message: str = "Conflict", context: dict[str, Any] | None = None):
        """Initialize with 409 status code."""
        super().__init__(
            message,
            status_code=409,
            code="CONFLICT",
            context={"resource": resource, **(context or {})},
        )


class InfrastructureError(AppException):
    """Durable store or messaging failure.

    The underlying exception is kept as ``__cause__`` when raised with
    ``raise ... from exc``.
    """

    def __init__(self, operation: str, message: str, context: dict[str, Any] | None = None):
        """Initialize with 500 status code."""
        self.operation = operation
        super().__init__(
            f"Infrastructure error during {operation}: {message}",
            status_code=500,
            code="INFRASTRUCTURE_ERROR",
            context={"operation": operation, **(context or {})},
        )

"""Application error taxonomy.

Services raise these; the handler registered in ``src.main`` maps ``code`` to
an HTTP status. Secondary-effect failures never surface as one of these, they
are logged for reconciliation instead.
"""

from http import HTTPStatus


class AppError(Exception):
    """Base application error."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, code: str = "app_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(AppError):
    """Malformed or missing input, or an illegal state transition."""

    status_code = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str = "Invalid request", code: str = "validation_error"):
        super().__init__(message, code)


class AuthenticationError(AppError):
    """Credential or signature mismatch."""

    status_code = HTTPStatus.UNAUTHORIZED

    def __init__(
        self, message: str = "Authentication failed", code: str = "authentication_error"
    ):
        super().__init__(message, code)


class PermissionDeniedError(AppError):
    """Authenticated but not allowed (not the owner, not enrolled)."""

    status_code = HTTPStatus.FORBIDDEN

    def __init__(self, message: str = "Permission denied", code: str = "permission_denied"):
        super().__init__(message, code)


class NotFoundError(AppError):
    status_code = HTTPStatus.NOT_FOUND

    def __init__(self, message: str = "Not found", code: str = "not_found"):
        super().__init__(message, code)


class ConflictError(AppError):
    """Uniqueness violation. Enrollment turns this into idempotent success."""

    status_code = HTTPStatus.CONFLICT

    def __init__(self, message: str = "Already exists", code: str = "conflict"):
        super().__init__(message, code)


class DependencyError(AppError):
    """A collaborator (gateway, code runner) failed."""

    status_code = HTTPStatus.BAD_GATEWAY

    def __init__(
        self, message: str = "Upstream service failed", code: str = "dependency_error"
    ):
        super().__init__(message, code)


class DependencyTimeoutError(DependencyError):
    status_code = HTTPStatus.GATEWAY_TIMEOUT

    def __init__(
        self, message: str = "Upstream service timed out", code: str = "dependency_timeout"
    ):
        super().__init__(message, code)


__all__ = [
    "AppError",
    "AuthenticationError",
    "ConflictError",
    "DependencyError",
    "DependencyTimeoutError",
    "NotFoundError",
    "PermissionDeniedError",
    "ValidationError",
]

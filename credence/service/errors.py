from __future__ import annotations

from typing import NoReturn, Optional

from credence.service.results import ErrorKind, Failure


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass defines both an HTTP status_code and a stable error_code:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


PLEASE_AUTHENTICATE = "Please authenticate"
INSUFFICIENT_PERMISSIONS = "Insufficient permissions"

_KIND_TO_ERROR: dict[ErrorKind, type[ServiceError]] = {
    ErrorKind.UNAUTHENTICATED: AuthenticationError,
    ErrorKind.AUTHENTICATION_REQUIRED: AuthenticationError,
    ErrorKind.NOT_FOUND: AuthenticationError,
    ErrorKind.EXPIRED: AuthenticationError,
    ErrorKind.INVALID_SIGNATURE: AuthenticationError,
    ErrorKind.INSUFFICIENT_PERMISSIONS: ForbiddenError,
    ErrorKind.VALIDATION_ERROR: ValidationError,
}


def error_for_failure(failure: Failure) -> ServiceError:
    """Translate a tagged failure into the HTTP-facing exception."""
    error_cls = _KIND_TO_ERROR.get(failure.kind, ServerError)
    if error_cls is AuthenticationError:
        # never reveal which check failed
        message = failure.message or PLEASE_AUTHENTICATE
    elif error_cls is ForbiddenError:
        message = failure.message or INSUFFICIENT_PERMISSIONS
    else:
        message = failure.message or "Invalid request"
    return error_cls(message)


def raise_for_failure(failure: Failure) -> NoReturn:
    raise error_for_failure(failure)


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "PLEASE_AUTHENTICATE",
    "INSUFFICIENT_PERMISSIONS",
    "error_for_failure",
    "raise_for_failure",
]

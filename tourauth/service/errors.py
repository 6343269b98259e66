from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and a stable ``error_code``:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - upstream_error (502)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: str = "request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class BadRequestError(ServiceError):
    """Request is malformed or fails a precondition (400)."""
    status_code = 400
    error_code = "validation_error"
    default_message = "invalid request"


class SamePasswordError(BadRequestError):
    default_message = "new password must differ from the current password"


class TokenInvalidOrExpiredError(BadRequestError):
    default_message = "token is invalid or has expired"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"
    default_message = "authentication required"


class InvalidCredentialsError(AuthenticationError):
    # Same message for unknown email and wrong password
    default_message = "incorrect email or password"


class UnauthenticatedError(AuthenticationError):
    default_message = "you are not logged in, please log in to get access"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"
    default_message = "you do not have permission to perform this action"


class EmailNotConfirmedError(ForbiddenError):
    default_message = "please confirm your email address before logging in"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"
    default_message = "not found"


class NoSuchUserError(NotFoundError):
    default_message = "there is no user with that email address"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"
    default_message = "conflict"


class DuplicateEmailError(ConflictError):
    default_message = "an account with this email already exists"


class ConfirmationPendingError(ConflictError):
    default_message = (
        "a confirmation email was already sent to this address, "
        "please confirm it or try again once the link expires"
    )


class EmailDeliveryFailedError(ServiceError):
    """The mail relay refused or could not be reached (502)."""
    status_code = 502
    error_code = "upstream_error"
    default_message = "there was an error sending the email, try again later"


__all__ = [
    "ServiceError",
    "BadRequestError",
    "SamePasswordError",
    "TokenInvalidOrExpiredError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "UnauthenticatedError",
    "ForbiddenError",
    "EmailNotConfirmedError",
    "NotFoundError",
    "NoSuchUserError",
    "ConflictError",
    "DuplicateEmailError",
    "ConfirmationPendingError",
    "EmailDeliveryFailedError",
]

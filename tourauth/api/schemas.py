from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tourauth.logging import get_correlation_id
from tourauth.storage.models import Role


def _normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi override characters, then apply NFKC."""
    # U+200B ZERO WIDTH SPACE, U+200C ZERO WIDTH NON-JOINER,
    # U+200D ZERO WIDTH JOINER, U+FEFF ZERO WIDTH NO-BREAK SPACE
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)

    # U+202A-U+202E, U+2066-U+2069
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)

    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
    "upstream_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class Envelope(BaseModel):
    """Every response body, success or failure, uses this shape."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: Optional[str]) -> Optional[str]:
    # Missing values are reported by the service as a bad request
    if value is None or not value.strip():
        return None
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = _normalize_unicode(value).strip()
    if len(cleaned) > 120:
        raise ValueError("name must be at most 120 characters")
    return cleaned or None


class _Request(BaseModel):
    # Accept both snake_case and the camelCase names older clients send
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SignupRequest(_Request):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = Field(default=None, max_length=1024)
    password_confirm: Optional[str] = Field(
        default=None, alias="passwordConfirm", max_length=1024
    )
    role: Optional[Literal["user", "guide", "lead-guide", "admin"]] = None

    @field_validator("email")
    @classmethod
    def _validate_signup_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value)

    @field_validator("name")
    @classmethod
    def _validate_signup_name(cls, value: Optional[str]) -> Optional[str]:
        return _validate_name(value)


class LoginRequest(_Request):
    email: Optional[str] = None
    password: Optional[str] = Field(default=None, max_length=1024)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value)


class ForgotPasswordRequest(_Request):
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _validate_forgot_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value)


class ResetPasswordRequest(_Request):
    password: Optional[str] = Field(default=None, max_length=1024)
    password_confirm: Optional[str] = Field(
        default=None, alias="passwordConfirm", max_length=1024
    )


class UpdatePasswordRequest(_Request):
    current_password: Optional[str] = Field(
        default=None, alias="currentPassword", max_length=1024
    )
    new_password: Optional[str] = Field(default=None, alias="newPassword", max_length=1024)
    new_password_confirm: Optional[str] = Field(
        default=None, alias="newPasswordConfirm", max_length=1024
    )


class UpdateProfileRequest(_Request):
    name: Optional[str] = None
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _validate_profile_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value)

    @field_validator("name")
    @classmethod
    def _validate_profile_name(cls, value: Optional[str]) -> Optional[str]:
        return _validate_name(value)


class DeactivateRequest(_Request):
    password: Optional[str] = Field(default=None, max_length=1024)


class ReactivateRequest(LoginRequest):
    pass


class AdminUpdateRequest(_Request):
    name: Optional[str] = None
    role: Optional[Role] = None
    active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def _validate_admin_name(cls, value: Optional[str]) -> Optional[str]:
        return _validate_name(value)


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str
    email_confirmed: bool
    active: bool
    created_at: datetime


class UserListResponse(BaseModel):
    items: List[UserResponse]


class TokenResponse(BaseModel):
    token: str
    user: UserResponse


class PendingResponse(BaseModel):
    pending: bool = True
    email: str
    expires_at: datetime
    message: str = "a confirmation link has been sent to your email"


class StatusResponse(BaseModel):
    status: str
    message: Optional[str] = None

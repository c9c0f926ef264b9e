from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from credence.service.tokens import AuthTokens
from credence.storage.models import QueryResult, Role, User

MAX_PASSWORD_LENGTH = 128
MIN_PASSWORD_LENGTH = 8
_SPECIAL_CHARACTERS = set("!@#$%^&*()_+-=[]{};':\"\\|,.<>/?")

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "service_unavailable",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str
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


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and drop zero-width and bidi override characters."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    bidi_overrides = {chr(c) for c in range(0x202A, 0x202F)}
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in value if c not in zero_width and c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("must be a valid email")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("must be a valid email")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("must be a valid email")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("must be a valid email")
    return normalized


def _validate_password_strength(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError("password must be at least 8 characters")
    if len(value) > MAX_PASSWORD_LENGTH:
        raise ValueError("password must not exceed 128 characters")
    if not re.search(r"[a-z]", value):
        raise ValueError("password must contain at least 1 lowercase letter")
    if not re.search(r"[A-Z]", value):
        raise ValueError("password must contain at least 1 uppercase letter")
    if not re.search(r"\d", value):
        raise ValueError("password must contain at least 1 number")
    if not any(ch in _SPECIAL_CHARACTERS for ch in value):
        raise ValueError("password must contain at least 1 special character")
    return value


def _validate_name(value: str) -> str:
    cleaned = _normalize_unicode(value).strip()
    if not cleaned:
        raise ValueError("name is required")
    return cleaned


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# requests


class RegisterRequest(CamelModel):
    name: str = Field(..., max_length=100)
    email: str
    password: str

    @field_validator("name")
    @classmethod
    def _validate_register_name(cls, value: str) -> str:
        return _validate_name(value)

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_register_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)

    @field_validator("email")
    @classmethod
    def _normalize_login_email(cls, value: str) -> str:
        return _normalize_unicode(value.strip().lower())


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1, max_length=2048)


class ForgotPasswordRequest(CamelModel):
    email: str

    @field_validator("email")
    @classmethod
    def _validate_forgot_email(cls, value: str) -> str:
        return _validate_email(value)


class ResetPasswordRequest(CamelModel):
    password: str

    @field_validator("password")
    @classmethod
    def _validate_reset_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class CreateUserRequest(CamelModel):
    name: str = Field(..., max_length=100)
    email: str
    password: str
    role: Role

    @field_validator("name")
    @classmethod
    def _validate_create_name(cls, value: str) -> str:
        return _validate_name(value)

    @field_validator("email")
    @classmethod
    def _validate_create_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_create_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class UpdateUserRequest(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = None
    password: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _validate_update_name(cls, value: Optional[str]) -> Optional[str]:
        return _validate_name(value) if value is not None else None

    @field_validator("email")
    @classmethod
    def _validate_update_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value) if value is not None else None

    @field_validator("password")
    @classmethod
    def _validate_update_password(cls, value: Optional[str]) -> Optional[str]:
        return _validate_password_strength(value) if value is not None else None

    @model_validator(mode="after")
    def _require_one_field(self):
        if self.name is None and self.email is None and self.password is None:
            raise ValueError("At least one field must be provided for update")
        return self


# responses


class UserResponse(CamelModel):
    id: str
    email: str
    name: str
    role: Role
    is_email_verified: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            is_email_verified=user.is_email_verified,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokenResponse(CamelModel):
    token: str
    expires: datetime


class AuthTokensResponse(CamelModel):
    access: TokenResponse
    refresh: TokenResponse

    @classmethod
    def from_tokens(cls, tokens: AuthTokens) -> "AuthTokensResponse":
        return cls(
            access=TokenResponse(token=tokens.access.token, expires=tokens.access.expires),
            refresh=TokenResponse(
                token=tokens.refresh.token, expires=tokens.refresh.expires
            ),
        )


class AuthResponse(CamelModel):
    user: UserResponse
    tokens: AuthTokensResponse


class UserListResponse(CamelModel):
    results: List[UserResponse]
    page: int
    limit: int
    total_pages: int
    total_results: int

    @classmethod
    def from_result(cls, result: QueryResult) -> "UserListResponse":
        return cls(
            results=[UserResponse.from_user(u) for u in result.results],
            page=result.page,
            limit=result.limit,
            total_pages=result.total_pages,
            total_results=result.total_results,
        )

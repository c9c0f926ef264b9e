from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class TokenType(str, Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"
    RESET_PASSWORD = "RESET_PASSWORD"
    VERIFY_EMAIL = "VERIFY_EMAIL"


@dataclass
class User:
    id: str
    email: str
    name: str
    password_hash: Optional[str] = None
    role: Role = Role.USER
    is_email_verified: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        email: str,
        name: str,
        password_hash: str,
        *,
        role: Role = Role.USER,
        is_email_verified: bool = False,
    ) -> "User":
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            email=email.lower(),
            name=name,
            password_hash=password_hash,
            role=role,
            is_email_verified=is_email_verified,
            created_at=now,
            updated_at=now,
        )

    def public(self) -> "User":
        """Copy without the password hash, for returning to callers."""
        return replace(self, password_hash=None)


@dataclass
class Token:
    id: str
    token: str
    user_id: str
    type: TokenType
    expires: datetime
    blacklisted: bool = False
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        token: str,
        user_id: str,
        type: TokenType,
        expires: datetime,
        *,
        blacklisted: bool = False,
    ) -> "Token":
        return cls(
            id=str(uuid.uuid4()),
            token=token,
            user_id=user_id,
            type=type,
            expires=expires,
            blacklisted=blacklisted,
        )


@dataclass(frozen=True)
class TokenFilter:
    """Predicate over token records; ``None`` fields are unconstrained."""

    id: Optional[str] = None
    token: Optional[str] = None
    user_id: Optional[str] = None
    type: Optional[TokenType] = None
    blacklisted: Optional[bool] = None

    def matches(self, record: Token) -> bool:
        if self.id is not None and record.id != self.id:
            return False
        if self.token is not None and record.token != self.token:
            return False
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.type is not None and record.type != self.type:
            return False
        if self.blacklisted is not None and record.blacklisted != self.blacklisted:
            return False
        return True

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.id, self.token, self.user_id, self.type, self.blacklisted)
        )


# Sort keys accepted by user queries, mapped to attribute names
USER_SORT_FIELDS: Dict[str, str] = {
    "name": "name",
    "email": "email",
    "role": "role",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


@dataclass(frozen=True)
class UserFilter:
    name: Optional[str] = None
    role: Optional[Role] = None

    def matches(self, user: User) -> bool:
        if self.name and self.name.lower() not in user.name.lower():
            return False
        if self.role is not None and user.role != self.role:
            return False
        return True


@dataclass(frozen=True)
class UserQuery:
    filter: UserFilter = field(default_factory=UserFilter)
    sort_field: str = "created_at"
    descending: bool = False
    offset: int = 0
    limit: int = 10


@dataclass
class QueryResult:
    results: List[User]
    page: int
    limit: int
    total_pages: int
    total_results: int


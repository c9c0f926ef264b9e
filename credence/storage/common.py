"""Store contracts and helpers shared between the memory and postgres backends.

Both backends expose the same async surface so the token and user services can
be handed either one at construction time.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from credence.storage.models import (
    Role,
    Token,
    TokenFilter,
    TokenType,
    User,
    UserQuery,
)


class CredentialStore(Protocol):
    async def find_by_id(self, user_id: str) -> Optional[User]: ...

    async def find_by_email(self, email: str) -> Optional[User]: ...

    async def create(self, user: User) -> User: ...

    async def update(self, user_id: str, patch: Mapping[str, Any]) -> Optional[User]: ...

    async def delete(self, user_id: str) -> bool: ...

    async def query(self, query: UserQuery) -> Tuple[List[User], int]: ...

    async def ping(self) -> None: ...


class TokenStore(Protocol):
    async def create_token(self, record: Token) -> Token: ...

    async def find_one(self, predicate: TokenFilter) -> Optional[Token]: ...

    async def delete_token(self, token_id: str) -> None: ...

    async def delete_many(self, predicate: TokenFilter) -> int: ...


# Columns callers may change through ``update``
USER_PATCHABLE_FIELDS = frozenset(
    {"email", "name", "password_hash", "role", "is_email_verified"}
)


def normalize_user_patch(patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop unknown keys and normalize values shared by both backends."""
    unknown = set(patch) - USER_PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"unsupported user fields: {', '.join(sorted(unknown))}")
    normalized = dict(patch)
    if "email" in normalized and normalized["email"] is not None:
        normalized["email"] = str(normalized["email"]).lower()
    if "role" in normalized and normalized["role"] is not None:
        normalized["role"] = Role(normalized["role"])
    return normalized


def _as_datetime(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        value = raw
    else:
        value = datetime.fromisoformat(str(raw))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def user_from_row(row: Mapping[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        email=row["email"],
        name=row.get("name") or "",
        password_hash=row.get("password_hash"),
        role=Role(row.get("role") or Role.USER.value),
        is_email_verified=bool(row.get("is_email_verified", False)),
        created_at=_as_datetime(row["created_at"]),
        updated_at=_as_datetime(row["updated_at"]),
    )


def user_to_row(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "password_hash": user.password_hash,
        "role": user.role.value,
        "is_email_verified": user.is_email_verified,
        "created_at": user.created_at.isoformat(),
        "updated_at": user.updated_at.isoformat(),
    }


def token_from_row(row: Mapping[str, Any]) -> Token:
    return Token(
        id=str(row["id"]),
        token=row["token"],
        user_id=str(row["user_id"]),
        type=TokenType(row["type"]),
        expires=_as_datetime(row["expires"]),
        blacklisted=bool(row.get("blacklisted", False)),
        created_at=_as_datetime(row["created_at"]),
    )


def token_to_row(record: Token) -> Dict[str, Any]:
    return {
        "id": record.id,
        "token": record.token,
        "user_id": record.user_id,
        "type": record.type.value,
        "expires": record.expires.isoformat(),
        "blacklisted": record.blacklisted,
        "created_at": record.created_at.isoformat(),
    }


__all__ = [
    "CredentialStore",
    "TokenStore",
    "USER_PATCHABLE_FIELDS",
    "normalize_user_patch",
    "token_from_row",
    "token_to_row",
    "user_from_row",
    "user_to_row",
]

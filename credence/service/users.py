from __future__ import annotations

import math
import uuid
from typing import Any, Mapping, Optional

from credence.logging import get_logger
from credence.service.errors import NotFoundError, ValidationError
from credence.service.passwords import PasswordService
from credence.storage.common import CredentialStore
from credence.storage.errors import ConstraintViolation
from credence.storage.models import (
    USER_SORT_FIELDS,
    QueryResult,
    Role,
    User,
    UserFilter,
    UserQuery,
)

logger = get_logger(__name__)

EMAIL_TAKEN = "Email already taken"
_MAX_NAME_FILTER = 100
_UPDATABLE = frozenset({"name", "email", "password", "role", "is_email_verified"})


def ensure_user_id(user_id: str) -> str:
    try:
        return str(uuid.UUID(str(user_id)))
    except ValueError:
        raise ValidationError("Invalid user ID format", detail={"field": "userId"})


def parse_sort(sort_by: Optional[str]) -> tuple[str, bool]:
    """Turn ``field:asc|desc`` into (column, descending); default createdAt:asc."""
    if not sort_by:
        return USER_SORT_FIELDS["createdAt"], False
    field_name, sep, direction = sort_by.partition(":")
    direction = direction.lower()
    if not sep or field_name not in USER_SORT_FIELDS or direction not in {"asc", "desc"}:
        raise ValidationError(
            'sortBy must be in format "field:direction" where field is one of: '
            + ", ".join(USER_SORT_FIELDS)
            + " and direction is asc or desc",
            detail={"field": "sortBy"},
        )
    return USER_SORT_FIELDS[field_name], direction == "desc"


class UserService:
    """User CRUD over the credential store."""

    def __init__(
        self,
        users: CredentialStore,
        passwords: PasswordService,
        *,
        default_page_size: int = 10,
        max_page_size: int = 100,
        max_page: int = 1000,
    ) -> None:
        self.users = users
        self.passwords = passwords
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.max_page = max_page

    async def create_user(
        self,
        *,
        name: str,
        email: str,
        password: str,
        role: Role = Role.USER,
        is_email_verified: bool = False,
    ) -> User:
        if await self.users.find_by_email(email):
            raise ValidationError(EMAIL_TAKEN, detail={"field": "email"})
        user = User.new(
            email,
            name,
            self.passwords.hash(password),
            role=Role(role),
            is_email_verified=is_email_verified,
        )
        try:
            created = await self.users.create(user)
        except ConstraintViolation:
            # lost a race with a concurrent signup for the same address
            raise ValidationError(EMAIL_TAKEN, detail={"field": "email"})
        logger.info("user_created", user_id=created.id, role=created.role.value)
        return created.public()

    async def query_users(
        self,
        *,
        name: Optional[str] = None,
        role: Optional[Role] = None,
        sort_by: Optional[str] = None,
        limit: Optional[int] = None,
        page: Optional[int] = None,
    ) -> QueryResult:
        sort_field, descending = parse_sort(sort_by)
        limit = min(max(int(limit or self.default_page_size), 1), self.max_page_size)
        page = min(max(int(page or 1), 1), self.max_page)
        name_filter = (name or "").strip()[:_MAX_NAME_FILTER] or None
        query = UserQuery(
            filter=UserFilter(name=name_filter, role=Role(role) if role else None),
            sort_field=sort_field,
            descending=descending,
            offset=(page - 1) * limit,
            limit=limit,
        )
        users, total = await self.users.query(query)
        return QueryResult(
            results=[u.public() for u in users],
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
            total_results=total,
        )

    async def get_user(self, user_id: str) -> User:
        user = await self.users.find_by_id(ensure_user_id(user_id))
        if not user:
            raise NotFoundError("User not found")
        return user.public()

    async def find_user(self, user_id: str) -> Optional[User]:
        return await self.users.find_by_id(user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await self.users.find_by_email(email)

    async def update_user(self, user_id: str, patch: Mapping[str, Any]) -> User:
        user_id = ensure_user_id(user_id)
        changes = {k: v for k, v in patch.items() if v is not None}
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(
                "unsupported fields", detail={"fields": sorted(unknown)}
            )
        if not changes:
            raise ValidationError("At least one field must be provided for update")
        if not await self.users.find_by_id(user_id):
            raise NotFoundError("User not found")
        email = changes.get("email")
        if email:
            owner = await self.users.find_by_email(email)
            if owner and owner.id != user_id:
                raise ValidationError(EMAIL_TAKEN, detail={"field": "email"})
        if "password" in changes:
            changes["password_hash"] = self.passwords.hash(changes.pop("password"))
        try:
            updated = await self.users.update(user_id, changes)
        except ConstraintViolation:
            raise ValidationError(EMAIL_TAKEN, detail={"field": "email"})
        if not updated:
            raise NotFoundError("User not found")
        logger.info("user_updated", user_id=user_id, fields=sorted(changes))
        return updated.public()

    async def delete_user(self, user_id: str) -> None:
        user_id = ensure_user_id(user_id)
        if not await self.users.delete(user_id):
            raise NotFoundError("User not found")
        logger.info("user_deleted", user_id=user_id)


__all__ = ["EMAIL_TAKEN", "UserService", "ensure_user_id", "parse_sort"]

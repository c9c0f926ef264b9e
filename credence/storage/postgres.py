from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Mapping, Optional, Tuple, TypeVar

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from credence.logging import get_logger
from credence.storage.common import (
    normalize_user_patch,
    token_from_row,
    user_from_row,
)
from credence.storage.errors import ConstraintViolation, StoreUnavailable
from credence.storage.models import (
    USER_SORT_FIELDS,
    Token,
    TokenFilter,
    User,
    UserQuery,
    utcnow,
)

T = TypeVar("T")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        email TEXT NOT NULL,
        name TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'USER' CHECK (role IN ('USER', 'ADMIN')),
        is_email_verified BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS app_user_email_lower_idx ON app_user (lower(email))",
    """
    CREATE TABLE IF NOT EXISTS auth_token (
        id UUID PRIMARY KEY,
        token TEXT NOT NULL UNIQUE,
        user_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        type TEXT NOT NULL
            CHECK (type IN ('ACCESS', 'REFRESH', 'RESET_PASSWORD', 'VERIFY_EMAIL')),
        expires TIMESTAMPTZ NOT NULL,
        blacklisted BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS auth_token_user_type_idx ON auth_token (user_id, type)",
)

# Columns that map 1:1 from TokenFilter fields
_TOKEN_FILTER_COLUMNS = ("id", "token", "user_id", "type", "blacklisted")


def _token_where(predicate: TokenFilter) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    for column in _TOKEN_FILTER_COLUMNS:
        value = getattr(predicate, column)
        if value is None:
            continue
        clauses.append(f"{column} = %s")
        params.append(value.value if column == "type" else value)
    where = " AND ".join(clauses) if clauses else "TRUE"
    return where, params


def _user_where(query: UserQuery) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if query.filter.name:
        clauses.append("name ILIKE %s")
        escaped = (
            query.filter.name.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        )
        params.append(f"%{escaped}%")
    if query.filter.role is not None:
        clauses.append("role = %s")
        params.append(query.filter.role.value)
    where = " AND ".join(clauses) if clauses else "TRUE"
    return where, params


class PostgresStore:
    """Postgres-backed credential and token store.

    psycopg's pool is synchronous; each public coroutine runs its query in a
    worker thread so request handlers never block the event loop.
    """

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=True,
        )

    def _connect(self):
        return self.pool.connection()

    async def _run(self, operation: str, func: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(func)
        except ConstraintViolation:
            raise
        except psycopg.Error as exc:
            self.logger.error(
                "postgres_operation_failed",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StoreUnavailable(operation, exc) from exc

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        self.logger.info("postgres_schema_ready")

    async def ping(self) -> None:
        def _probe() -> None:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()

        await self._run("ping", _probe)

    async def close(self) -> None:
        await asyncio.to_thread(self.pool.close)

    # credential store
    async def find_by_id(self, user_id: str) -> Optional[User]:
        def _select() -> Optional[User]:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM app_user WHERE id = %s", (user_id,)
                ).fetchone()
            return user_from_row(row) if row else None

        return await self._run("find_by_id", _select)

    async def find_by_email(self, email: str) -> Optional[User]:
        def _select() -> Optional[User]:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM app_user WHERE lower(email) = lower(%s)", (email,)
                ).fetchone()
            return user_from_row(row) if row else None

        return await self._run("find_by_email", _select)

    async def create(self, user: User) -> User:
        def _insert() -> User:
            try:
                with self._connect() as conn:
                    row = conn.execute(
                        """
                        INSERT INTO app_user (id, email, name, password_hash, role, is_email_verified, created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING *
                        """,
                        (
                            user.id,
                            user.email.lower(),
                            user.name,
                            user.password_hash,
                            user.role.value,
                            user.is_email_verified,
                            user.created_at,
                            user.updated_at,
                        ),
                    ).fetchone()
            except errors.UniqueViolation:
                raise ConstraintViolation("email already exists", {"field": "email"})
            return user_from_row(row)

        return await self._run("create_user", _insert)

    async def update(self, user_id: str, patch: Mapping[str, Any]) -> Optional[User]:
        changes = normalize_user_patch(patch)
        if not changes:
            return await self.find_by_id(user_id)
        assignments = [f"{column} = %s" for column in changes]
        params: List[Any] = [
            value.value if column == "role" else value for column, value in changes.items()
        ]
        assignments.append("updated_at = %s")
        params.extend([utcnow(), user_id])

        def _update() -> Optional[User]:
            try:
                with self._connect() as conn:
                    row = conn.execute(
                        f"UPDATE app_user SET {', '.join(assignments)} WHERE id = %s RETURNING *",
                        params,
                    ).fetchone()
            except errors.UniqueViolation:
                raise ConstraintViolation("email already exists", {"field": "email"})
            return user_from_row(row) if row else None

        return await self._run("update_user", _update)

    async def delete(self, user_id: str) -> bool:
        def _delete() -> bool:
            with self._connect() as conn:
                result = conn.execute("DELETE FROM app_user WHERE id = %s", (user_id,))
                return result.rowcount > 0

        return await self._run("delete_user", _delete)

    async def query(self, query: UserQuery) -> Tuple[List[User], int]:
        if query.sort_field not in USER_SORT_FIELDS.values():
            raise ValueError(f"unsupported sort field: {query.sort_field}")
        where, params = _user_where(query)
        direction = "DESC" if query.descending else "ASC"

        def _select() -> Tuple[List[User], int]:
            with self._connect() as conn:
                total_row = conn.execute(
                    f"SELECT count(*) AS total FROM app_user WHERE {where}", params
                ).fetchone()
                rows = conn.execute(
                    f"SELECT * FROM app_user WHERE {where} "
                    f"ORDER BY {query.sort_field} {direction}, id ASC LIMIT %s OFFSET %s",
                    [*params, query.limit, query.offset],
                ).fetchall()
            return [user_from_row(row) for row in rows], int(total_row["total"])

        return await self._run("query_users", _select)

    # token store
    async def create_token(self, record: Token) -> Token:
        def _insert() -> Token:
            try:
                with self._connect() as conn:
                    row = conn.execute(
                        """
                        INSERT INTO auth_token (id, token, user_id, type, expires, blacklisted, created_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        RETURNING *
                        """,
                        (
                            record.id,
                            record.token,
                            record.user_id,
                            record.type.value,
                            record.expires,
                            record.blacklisted,
                            record.created_at,
                        ),
                    ).fetchone()
            except errors.UniqueViolation:
                raise ConstraintViolation("token already exists", {"field": "token"})
            except errors.ForeignKeyViolation:
                raise ConstraintViolation("token owner does not exist", {"field": "user_id"})
            return token_from_row(row)

        return await self._run("create_token", _insert)

    async def find_one(self, predicate: TokenFilter) -> Optional[Token]:
        where, params = _token_where(predicate)

        def _select() -> Optional[Token]:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT * FROM auth_token WHERE {where} LIMIT 1", params
                ).fetchone()
            return token_from_row(row) if row else None

        return await self._run("find_token", _select)

    async def delete_token(self, token_id: str) -> None:
        def _delete() -> None:
            with self._connect() as conn:
                conn.execute("DELETE FROM auth_token WHERE id = %s", (token_id,))

        await self._run("delete_token", _delete)

    async def delete_many(self, predicate: TokenFilter) -> int:
        if predicate.is_empty():
            raise ValueError("refusing to delete tokens with an empty predicate")
        where, params = _token_where(predicate)

        def _delete() -> int:
            with self._connect() as conn:
                result = conn.execute(f"DELETE FROM auth_token WHERE {where}", params)
                return result.rowcount

        return await self._run("delete_tokens", _delete)


__all__ = ["PostgresStore", "SCHEMA_STATEMENTS"]

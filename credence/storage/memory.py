from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from credence.logging import get_logger
from credence.storage.common import (
    normalize_user_patch,
    token_from_row,
    token_to_row,
    user_from_row,
    user_to_row,
)
from credence.storage.errors import ConstraintViolation
from credence.storage.models import (
    Token,
    TokenFilter,
    User,
    UserQuery,
    utcnow,
)


class MemoryStore:
    """In-process credential and token store with optional JSON snapshots.

    Used for tests and single-process development. Every mutation happens
    under one re-entrant lock; the async methods never await while holding it.
    """

    def __init__(self, fs_root: str | None = None, *, persist: bool = True) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.tokens: Dict[str, Token] = {}
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        self.persist = persist and self.fs_root is not None
        if self.persist:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    # credential store
    async def find_by_id(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    async def find_by_email(self, email: str) -> Optional[User]:
        needle = email.lower()
        with self._data_lock:
            for user in self.users.values():
                if user.email == needle:
                    return replace(user)
        return None

    async def create(self, user: User) -> User:
        with self._data_lock:
            email = user.email.lower()
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            if user.id in self.users:
                raise ConstraintViolation("user id already exists", {"field": "id"})
            stored = replace(user, email=email)
            self.users[stored.id] = stored
            self._persist_state()
            self.logger.debug("memory_user_created", user_id=stored.id)
            return replace(stored)

    async def update(self, user_id: str, patch: Mapping[str, Any]) -> Optional[User]:
        changes = normalize_user_patch(patch)
        with self._data_lock:
            current = self.users.get(user_id)
            if not current:
                return None
            new_email = changes.get("email")
            if new_email and any(
                existing.email == new_email and existing.id != user_id
                for existing in self.users.values()
            ):
                raise ConstraintViolation("email already exists", {"field": "email"})
            updated = replace(current, **changes, updated_at=utcnow())
            self.users[user_id] = updated
            self._persist_state()
            return replace(updated)

    async def delete(self, user_id: str) -> bool:
        with self._data_lock:
            removed = self.users.pop(user_id, None)
            if not removed:
                return False
            # tokens cascade with their owner
            for token_id in [t.id for t in self.tokens.values() if t.user_id == user_id]:
                self.tokens.pop(token_id, None)
            self._persist_state()
            return True

    async def query(self, query: UserQuery) -> Tuple[List[User], int]:
        with self._data_lock:
            matched = [u for u in self.users.values() if query.filter.matches(u)]

        def _sort_key(user: User):
            value = getattr(user, query.sort_field)
            if isinstance(value, str):
                return value.lower()
            return value

        matched.sort(key=_sort_key, reverse=query.descending)
        window = matched[query.offset : query.offset + query.limit]
        return [replace(u) for u in window], len(matched)

    async def ping(self) -> None:
        return None

    # token store
    async def create_token(self, record: Token) -> Token:
        with self._data_lock:
            if record.user_id not in self.users:
                raise ConstraintViolation("token owner does not exist", {"field": "user_id"})
            if any(existing.token == record.token for existing in self.tokens.values()):
                raise ConstraintViolation("token already exists", {"field": "token"})
            self.tokens[record.id] = replace(record)
            self._persist_state()
            return replace(record)

    async def find_one(self, predicate: TokenFilter) -> Optional[Token]:
        with self._data_lock:
            for record in self.tokens.values():
                if predicate.matches(record):
                    return replace(record)
        return None

    async def delete_token(self, token_id: str) -> None:
        with self._data_lock:
            if self.tokens.pop(token_id, None) is not None:
                self._persist_state()

    async def delete_many(self, predicate: TokenFilter) -> int:
        if predicate.is_empty():
            raise ValueError("refusing to delete tokens with an empty predicate")
        with self._data_lock:
            doomed = [t.id for t in self.tokens.values() if predicate.matches(t)]
            for token_id in doomed:
                self.tokens.pop(token_id, None)
            if doomed:
                self._persist_state()
            return len(doomed)

    async def close(self) -> None:
        return None

    # persistence
    def _persist_state(self) -> None:
        if not self.persist:
            return
        state = {
            "users": [user_to_row(u) for u in self.users.values()],
            "tokens": [token_to_row(t) for t in self.tokens.values()],
        }
        path = self._state_path()
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
            with os.fdopen(fd, "w") as handle:
                json.dump(state, handle, indent=2)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: user_from_row(u) for u in data.get("users", [])}
        self.tokens = {t["id"]: token_from_row(t) for t in data.get("tokens", [])}
        self.logger.info(
            "memory_store_loaded", users=len(self.users), tokens=len(self.tokens)
        )
        return True


__all__ = ["MemoryStore"]

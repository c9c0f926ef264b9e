from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Union

from credence.logging import get_logger
from credence.service.codec import TokenCodec
from credence.service.results import ErrorKind, Failure
from credence.storage.common import TokenStore
from credence.storage.errors import ConstraintViolation
from credence.storage.models import Token, TokenFilter, TokenType, User, utcnow

logger = get_logger(__name__)

SINGLE_USE_TYPES = frozenset({TokenType.RESET_PASSWORD, TokenType.VERIFY_EMAIL})


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires: datetime


@dataclass(frozen=True)
class AuthTokens:
    access: IssuedToken
    refresh: IssuedToken


class TokenService:
    """Issues, persists, verifies, rotates and revokes tokens.

    Access tokens are stateless. Refresh, reset-password and verify-email
    tokens are persisted and only count as valid while a matching,
    non-blacklisted record exists in the token store.
    """

    def __init__(
        self,
        codec: TokenCodec,
        store: TokenStore,
        *,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.codec = codec
        self.store = store
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    async def _persist(
        self, user_id: str, kind: TokenType, expires: datetime
    ) -> str:
        token = self.codec.encode(user_id, expires, kind)
        await self.store.create_token(Token.new(token, user_id, kind, expires))
        return token

    async def issue_auth_tokens(self, user: User) -> AuthTokens:
        """Mint an access/refresh pair; earlier refresh tokens stay valid."""
        tokens = await self._issue_for_user_id(user.id)
        logger.info("auth_tokens_issued", user_id=user.id)
        return tokens

    async def issue_single_use_token(
        self, user: User, kind: TokenType, ttl: timedelta
    ) -> str:
        if kind not in SINGLE_USE_TYPES:
            raise ValueError(f"{kind} is not a single-use token type")
        # earlier tokens of this kind are left alone; consumption purges them
        token = await self._persist(user.id, kind, self._clock() + ttl)
        logger.info("single_use_token_issued", user_id=user.id, kind=kind.value)
        return token

    async def verify_token(
        self, token: str, expected: TokenType
    ) -> Union[Token, Failure]:
        """Check a persisted token without consuming it.

        Bad signatures, expiry, wrong type and missing records all come back
        as ``not_found`` so callers cannot tell them apart.
        """
        claims = self.codec.decode(token)
        if isinstance(claims, Failure):
            logger.info("token_rejected", reason=claims.kind.value, expected=expected.value)
            return Failure(ErrorKind.NOT_FOUND)
        if claims.type != expected:
            logger.info(
                "token_rejected", reason="type_mismatch", expected=expected.value
            )
            return Failure(ErrorKind.NOT_FOUND)
        record = await self.store.find_one(
            TokenFilter(
                token=token, type=expected, user_id=claims.sub, blacklisted=False
            )
        )
        if record is None:
            logger.info("token_rejected", reason="not_persisted", expected=expected.value)
            return Failure(ErrorKind.NOT_FOUND)
        return record

    async def consume(self, record: Token) -> bool:
        """Delete one verified record; False if someone else got there first."""
        deleted = await self.store.delete_many(TokenFilter(id=record.id))
        return deleted > 0

    async def purge(self, user_id: str, kind: TokenType) -> int:
        count = await self.store.delete_many(TokenFilter(user_id=user_id, type=kind))
        logger.info("tokens_purged", user_id=user_id, kind=kind.value, count=count)
        return count

    async def rotate_refresh(self, old_token: str) -> Union[AuthTokens, Failure]:
        record = await self.verify_token(old_token, TokenType.REFRESH)
        if isinstance(record, Failure):
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED)
        # delete first; a failed issue below forces a fresh login
        if not await self.consume(record):
            logger.info("refresh_rotation_lost_race", user_id=record.user_id)
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED)
        try:
            tokens = await self._issue_for_user_id(record.user_id)
        except ConstraintViolation:
            logger.warning("refresh_rotation_issue_failed", user_id=record.user_id)
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED)
        logger.info("refresh_token_rotated", user_id=record.user_id)
        return tokens

    async def _issue_for_user_id(self, user_id: str) -> AuthTokens:
        now = self._clock()
        access_expires = now + self.access_ttl
        access = self.codec.encode(user_id, access_expires, TokenType.ACCESS)
        refresh_expires = now + self.refresh_ttl
        refresh = await self._persist(user_id, TokenType.REFRESH, refresh_expires)
        return AuthTokens(
            access=IssuedToken(access, access_expires),
            refresh=IssuedToken(refresh, refresh_expires),
        )

    async def revoke(self, token: str) -> Union[None, Failure]:
        record = await self.store.find_one(
            TokenFilter(token=token, type=TokenType.REFRESH, blacklisted=False)
        )
        if record is None or not await self.consume(record):
            return Failure(ErrorKind.NOT_FOUND, "Not found")
        logger.info("refresh_token_revoked", user_id=record.user_id)
        return None


__all__ = ["AuthTokens", "IssuedToken", "SINGLE_USE_TYPES", "TokenService"]

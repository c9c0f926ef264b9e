from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Tuple, Union

from credence.logging import get_logger
from credence.service.email import EmailService
from credence.service.passwords import PasswordService
from credence.service.results import ErrorKind, Failure
from credence.service.tokens import AuthTokens, TokenService
from credence.service.users import UserService
from credence.storage.models import TokenType, User

logger = get_logger(__name__)

INCORRECT_CREDENTIALS = "Incorrect email or password"
RESET_FAILED = "Password reset failed"
VERIFY_FAILED = "Email verification failed"


class AuthService:
    """Registration, login and the token-backed account flows."""

    def __init__(
        self,
        users: UserService,
        tokens: TokenService,
        passwords: PasswordService,
        email: EmailService,
        *,
        reset_password_ttl: timedelta,
        verify_email_ttl: timedelta,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.passwords = passwords
        self.email = email
        self.reset_password_ttl = reset_password_ttl
        self.verify_email_ttl = verify_email_ttl

    async def register(
        self, *, name: str, email: str, password: str
    ) -> Tuple[User, AuthTokens]:
        user = await self.users.create_user(name=name, email=email, password=password)
        tokens = await self.tokens.issue_auth_tokens(user)
        logger.info("user_registered", user_id=user.id)
        return user, tokens

    async def login(
        self, *, email: str, password: str
    ) -> Union[Tuple[User, AuthTokens], Failure]:
        user = await self.users.get_user_by_email(email)
        if not user or not self.passwords.verify(user.password_hash, password):
            logger.info("login_failed")
            return Failure(ErrorKind.UNAUTHENTICATED, INCORRECT_CREDENTIALS)
        tokens = await self.tokens.issue_auth_tokens(user)
        logger.info("login_succeeded", user_id=user.id)
        return user.public(), tokens

    async def logout(self, refresh_token: str) -> Union[None, Failure]:
        return await self.tokens.revoke(refresh_token)

    async def refresh_auth(self, refresh_token: str) -> Union[AuthTokens, Failure]:
        return await self.tokens.rotate_refresh(refresh_token)

    async def forgot_password(self, email: str) -> None:
        user = await self.users.get_user_by_email(email)
        if not user:
            # same response either way so addresses cannot be probed
            logger.info("password_reset_unknown_account")
            return
        token = await self.tokens.issue_single_use_token(
            user, TokenType.RESET_PASSWORD, self.reset_password_ttl
        )
        await asyncio.to_thread(
            self.email.send_password_reset,
            user.email,
            token,
            expires_minutes=int(self.reset_password_ttl.total_seconds() // 60),
        )

    async def reset_password(
        self, token: str, new_password: str
    ) -> Union[None, Failure]:
        record = await self.tokens.verify_token(token, TokenType.RESET_PASSWORD)
        if isinstance(record, Failure):
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED, RESET_FAILED)
        user = await self.users.find_user(record.user_id)
        if not user:
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED, RESET_FAILED)
        # only the request that deletes the record may change the password
        if not await self.tokens.consume(record):
            logger.info("password_reset_lost_race", user_id=user.id)
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED, RESET_FAILED)
        await self.users.update_user(user.id, {"password": new_password})
        await self.tokens.purge(user.id, TokenType.RESET_PASSWORD)
        # sessions minted with the old password end here
        await self.tokens.purge(user.id, TokenType.REFRESH)
        logger.info("password_reset_completed", user_id=user.id)
        return None

    async def send_verification_email(self, user: User) -> None:
        token = await self.tokens.issue_single_use_token(
            user, TokenType.VERIFY_EMAIL, self.verify_email_ttl
        )
        await asyncio.to_thread(
            self.email.send_email_verification,
            user.email,
            token,
            expires_minutes=int(self.verify_email_ttl.total_seconds() // 60),
        )

    async def verify_email(self, token: str) -> Union[None, Failure]:
        record = await self.tokens.verify_token(token, TokenType.VERIFY_EMAIL)
        if isinstance(record, Failure):
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED, VERIFY_FAILED)
        user = await self.users.find_user(record.user_id)
        if not user:
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED, VERIFY_FAILED)
        if not await self.tokens.consume(record):
            logger.info("email_verification_lost_race", user_id=user.id)
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED, VERIFY_FAILED)
        await self.tokens.purge(user.id, TokenType.VERIFY_EMAIL)
        await self.users.update_user(user.id, {"is_email_verified": True})
        logger.info("email_verified", user_id=user.id)
        return None


__all__ = ["AuthService", "INCORRECT_CREDENTIALS", "RESET_FAILED", "VERIFY_FAILED"]

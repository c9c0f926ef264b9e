"""Unit tests for the account flows in AuthService."""

import asyncio
from datetime import timedelta

import pytest

from credence.service.auth import INCORRECT_CREDENTIALS, RESET_FAILED, VERIFY_FAILED
from credence.service.errors import ValidationError
from credence.service.results import ErrorKind, Failure
from credence.storage.models import TokenFilter, TokenType


async def _register(auth_service, email="alice@example.com", password="Secret123!"):
    return await auth_service.register(name="Alice", email=email, password=password)


class TestRegister:
    """Tests for registration."""

    @pytest.mark.asyncio
    async def test_register_returns_user_and_tokens(self, auth_service):
        """Test that registration signs the new user in."""
        user, tokens = await _register(auth_service)

        assert user.email == "alice@example.com"
        assert user.password_hash is None
        assert user.is_email_verified is False
        assert tokens.access.token and tokens.refresh.token

    @pytest.mark.asyncio
    async def test_register_stores_hashed_password(self, auth_service, memory_store):
        """Test that the plaintext password is never stored."""
        user, _ = await _register(auth_service)

        stored = await memory_store.find_by_id(user.id)
        assert stored.password_hash
        assert stored.password_hash != "Secret123!"
        assert stored.password_hash.startswith("$argon2id$")

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, auth_service):
        """Test that a second registration for the same address fails."""
        await _register(auth_service)

        with pytest.raises(ValidationError) as exc_info:
            await _register(auth_service, email="ALICE@example.com")

        assert exc_info.value.message == "Email already taken"


class TestLogin:
    """Tests for password login."""

    @pytest.mark.asyncio
    async def test_login_with_correct_password(self, auth_service):
        """Test a successful login."""
        registered, _ = await _register(auth_service)

        result = await auth_service.login(email="alice@example.com", password="Secret123!")

        assert not isinstance(result, Failure)
        user, tokens = result
        assert user.id == registered.id
        assert user.password_hash is None
        assert tokens.refresh.token

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_email_look_alike(self, auth_service):
        """Test that both credential failures share one message."""
        await _register(auth_service)

        wrong_password = await auth_service.login(email="alice@example.com", password="Nope123!")
        unknown = await auth_service.login(email="bob@example.com", password="Secret123!")

        for result in (wrong_password, unknown):
            assert isinstance(result, Failure)
            assert result.kind == ErrorKind.UNAUTHENTICATED
            assert result.message == INCORRECT_CREDENTIALS


class TestLogoutAndRefresh:
    """Tests for logout and token refresh."""

    @pytest.mark.asyncio
    async def test_logout_then_refresh_fails(self, auth_service):
        """Test that a logged-out refresh token cannot be rotated."""
        _, tokens = await _register(auth_service)

        assert await auth_service.logout(tokens.refresh.token) is None
        result = await auth_service.refresh_auth(tokens.refresh.token)

        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.AUTHENTICATION_REQUIRED

    @pytest.mark.asyncio
    async def test_logout_unknown_token(self, auth_service):
        """Test that logging out an unknown token reports not found."""
        result = await auth_service.logout("not-a-real-token")

        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.NOT_FOUND


class TestPasswordReset:
    """Tests for forgot/reset password."""

    @pytest.mark.asyncio
    async def test_forgot_password_sends_reset_token(self, auth_service, email_outbox):
        """Test that a reset link is mailed to a known address."""
        await _register(auth_service)

        await auth_service.forgot_password("alice@example.com")

        assert len(email_outbox.sent) == 1
        kind, recipient, token = email_outbox.sent[0]
        assert kind == "reset"
        assert recipient == "alice@example.com"
        assert token

    @pytest.mark.asyncio
    async def test_forgot_password_unknown_email_is_silent(self, auth_service, email_outbox):
        """Test that unknown addresses neither fail nor send mail."""
        await auth_service.forgot_password("ghost@example.com")

        assert email_outbox.sent == []

    @pytest.mark.asyncio
    async def test_reset_changes_password_and_ends_sessions(self, auth_service, email_outbox):
        """Test the full reset: new password works, old sessions are gone."""
        _, tokens = await _register(auth_service)
        await auth_service.forgot_password("alice@example.com")
        reset_token = email_outbox.sent[-1][2]

        assert await auth_service.reset_password(reset_token, "Changed456!") is None

        old_login = await auth_service.login(email="alice@example.com", password="Secret123!")
        new_login = await auth_service.login(email="alice@example.com", password="Changed456!")
        assert isinstance(old_login, Failure)
        assert not isinstance(new_login, Failure)
        assert isinstance(await auth_service.refresh_auth(tokens.refresh.token), Failure)

    @pytest.mark.asyncio
    async def test_reset_token_is_single_use(self, auth_service, email_outbox):
        """Test that a reset token cannot be replayed."""
        await _register(auth_service)
        await auth_service.forgot_password("alice@example.com")
        reset_token = email_outbox.sent[-1][2]
        await auth_service.reset_password(reset_token, "Changed456!")

        result = await auth_service.reset_password(reset_token, "Another789!")

        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.AUTHENTICATION_REQUIRED
        assert result.message == RESET_FAILED

    @pytest.mark.asyncio
    async def test_concurrent_resets_have_one_winner(self, auth_service, email_outbox):
        """Test that racing resets with one token change the password once."""
        await _register(auth_service)
        await auth_service.forgot_password("alice@example.com")
        reset_token = email_outbox.sent[-1][2]

        results = await asyncio.gather(
            auth_service.reset_password(reset_token, "Changed456!"),
            auth_service.reset_password(reset_token, "Another789!"),
        )

        assert sum(1 for r in results if r is None) == 1
        logins = [
            await auth_service.login(email="alice@example.com", password=p)
            for p in ("Changed456!", "Another789!")
        ]
        assert sum(1 for r in logins if not isinstance(r, Failure)) == 1

    @pytest.mark.asyncio
    async def test_reset_lost_race_leaves_password_alone(
        self, auth_service, email_outbox, token_service, monkeypatch
    ):
        """Test that a request whose token was consumed elsewhere changes nothing."""
        await _register(auth_service)
        await auth_service.forgot_password("alice@example.com")
        reset_token = email_outbox.sent[-1][2]

        async def _already_consumed(record):
            return False

        monkeypatch.setattr(token_service, "consume", _already_consumed)
        result = await auth_service.reset_password(reset_token, "Changed456!")

        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.AUTHENTICATION_REQUIRED
        assert result.message == RESET_FAILED
        old_login = await auth_service.login(email="alice@example.com", password="Secret123!")
        assert not isinstance(old_login, Failure)

    @pytest.mark.asyncio
    async def test_reset_purges_sibling_reset_tokens(self, auth_service, email_outbox, memory_store):
        """Test that using one reset token invalidates the others."""
        await _register(auth_service)
        await auth_service.forgot_password("alice@example.com")
        await auth_service.forgot_password("alice@example.com")
        first, second = email_outbox.sent[0][2], email_outbox.sent[1][2]

        await auth_service.reset_password(second, "Changed456!")

        assert await memory_store.find_one(TokenFilter(type=TokenType.RESET_PASSWORD)) is None
        assert isinstance(await auth_service.reset_password(first, "Another789!"), Failure)

    @pytest.mark.asyncio
    async def test_expired_reset_token_fails(self, auth_service, token_service, user_service):
        """Test that an already expired reset token is refused."""
        user, _ = await _register(auth_service)
        token = await token_service.issue_single_use_token(
            await user_service.find_user(user.id),
            TokenType.RESET_PASSWORD,
            timedelta(minutes=-1),
        )

        result = await auth_service.reset_password(token, "Changed456!")

        assert isinstance(result, Failure)
        assert result.message == RESET_FAILED
        still_old = await auth_service.login(email="alice@example.com", password="Secret123!")
        assert not isinstance(still_old, Failure)

    @pytest.mark.asyncio
    async def test_refresh_token_cannot_reset_password(self, auth_service):
        """Test that token types are not interchangeable."""
        _, tokens = await _register(auth_service)

        result = await auth_service.reset_password(tokens.refresh.token, "Changed456!")

        assert isinstance(result, Failure)


class TestEmailVerification:
    """Tests for verify-email flow."""

    @pytest.mark.asyncio
    async def test_verify_email_marks_user_verified(self, auth_service, email_outbox, user_service):
        """Test that following the verification link flips the flag."""
        user, _ = await _register(auth_service)

        await auth_service.send_verification_email(user)
        kind, recipient, token = email_outbox.sent[-1]
        assert kind == "verify"
        assert recipient == user.email

        assert await auth_service.verify_email(token) is None
        refreshed = await user_service.get_user(user.id)
        assert refreshed.is_email_verified is True

    @pytest.mark.asyncio
    async def test_verify_token_single_use(self, auth_service, email_outbox):
        """Test that a verification token cannot be used twice."""
        user, _ = await _register(auth_service)
        await auth_service.send_verification_email(user)
        token = email_outbox.sent[-1][2]
        await auth_service.verify_email(token)

        result = await auth_service.verify_email(token)

        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.AUTHENTICATION_REQUIRED
        assert result.message == VERIFY_FAILED

    @pytest.mark.asyncio
    async def test_reset_token_cannot_verify_email(self, auth_service, email_outbox):
        """Test that a reset token is refused by email verification."""
        await _register(auth_service)
        await auth_service.forgot_password("alice@example.com")
        reset_token = email_outbox.sent[-1][2]

        result = await auth_service.verify_email(reset_token)

        assert isinstance(result, Failure)

    @pytest.mark.asyncio
    async def test_verify_lost_race_leaves_flag_alone(
        self, auth_service, email_outbox, token_service, user_service, monkeypatch
    ):
        """Test that a verification whose token was consumed elsewhere is refused."""
        user, _ = await _register(auth_service)
        await auth_service.send_verification_email(user)
        token = email_outbox.sent[-1][2]

        async def _already_consumed(record):
            return False

        monkeypatch.setattr(token_service, "consume", _already_consumed)
        result = await auth_service.verify_email(token)

        assert isinstance(result, Failure)
        assert result.message == VERIFY_FAILED
        assert (await user_service.get_user(user.id)).is_email_verified is False

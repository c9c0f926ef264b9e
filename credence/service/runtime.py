from __future__ import annotations

import threading
from datetime import timedelta
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from credence.config import Settings, get_settings, reset_settings_cache
from credence.logging import get_logger
from credence.service.auth import AuthService
from credence.service.authorization import AuthorizationEngine
from credence.service.codec import TokenCodec
from credence.service.email import EmailService
from credence.service.passwords import PasswordService
from credence.service.roles import ROLE_RIGHTS
from credence.service.tokens import TokenService
from credence.service.users import UserService
from credence.storage.memory import MemoryStore
from credence.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a DSN for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Builds the store and every service from one Settings instance."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        self.store: Union[MemoryStore, PostgresStore]
        try:
            if self.settings.use_memory_store:
                self.store = MemoryStore(
                    self.settings.shared_fs_root,
                    persist=not self.settings.test_mode,
                )
            else:
                self.store = PostgresStore(self.settings.database_url)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                database=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.codec = TokenCodec(self.settings.jwt_secret)
        self.tokens = TokenService(
            self.codec,
            self.store,
            access_ttl=timedelta(minutes=self.settings.jwt_access_expiration_minutes),
            refresh_ttl=timedelta(days=self.settings.jwt_refresh_expiration_days),
        )
        self.authorization = AuthorizationEngine(self.codec, self.store, ROLE_RIGHTS)
        self.passwords = PasswordService()
        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
            base_url=self.settings.app_base_url,
        )
        self.users = UserService(
            self.store,
            self.passwords,
            default_page_size=self.settings.default_page_size,
            max_page_size=self.settings.max_page_size,
            max_page=self.settings.max_page,
        )
        self.auth = AuthService(
            self.users,
            self.tokens,
            self.passwords,
            self.email,
            reset_password_ttl=timedelta(
                minutes=self.settings.jwt_reset_password_expiration_minutes
            ),
            verify_email_ttl=timedelta(
                minutes=self.settings.jwt_verify_email_expiration_minutes
            ),
        )
        logger.info(
            "runtime_initialized",
            store_type=type(self.store).__name__,
            email_configured=self.email.is_configured,
        )

    def prepare(self) -> None:
        """Create database tables when running against Postgres."""
        if isinstance(self.store, PostgresStore):
            self.store.ensure_schema()

    async def close(self) -> None:
        await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime from freshly read settings; TEST_MODE only."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime

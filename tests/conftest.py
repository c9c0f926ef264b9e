import asyncio
import inspect
import os
import sys
import tempfile
from datetime import timedelta
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="credence_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")

import pytest  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from credence.service.auth import AuthService  # noqa: E402
from credence.service.authorization import AuthorizationEngine  # noqa: E402
from credence.service.codec import TokenCodec  # noqa: E402
from credence.service.email import EmailService  # noqa: E402
from credence.service.passwords import PasswordService  # noqa: E402
from credence.service.roles import ROLE_RIGHTS  # noqa: E402
from credence.service.runtime import reset_runtime_for_tests  # noqa: E402
from credence.service.tokens import TokenService  # noqa: E402
from credence.service.users import UserService  # noqa: E402
from credence.storage.memory import MemoryStore  # noqa: E402

TEST_SECRET = "unit-test-secret-with-enough-length-0123456789"


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def memory_store():
    """Fresh in-memory store without disk snapshots."""
    return MemoryStore(persist=False)


@pytest.fixture
def codec():
    return TokenCodec(TEST_SECRET)


@pytest.fixture
def passwords():
    # cheap argon2 parameters keep the suite fast
    return PasswordService(
        PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1, type=Type.ID)
    )


@pytest.fixture
def token_service(codec, memory_store):
    return TokenService(
        codec,
        memory_store,
        access_ttl=timedelta(minutes=30),
        refresh_ttl=timedelta(days=30),
    )


@pytest.fixture
def user_service(memory_store, passwords):
    return UserService(memory_store, passwords)


@pytest.fixture
def authorization(codec, memory_store):
    return AuthorizationEngine(codec, memory_store, ROLE_RIGHTS)


class RecordingEmailService(EmailService):
    """Captures outgoing mail instead of logging or sending it."""

    def __init__(self):
        super().__init__()
        self.sent = []

    def send_password_reset(self, to_email, token, *, expires_minutes=10):
        self.sent.append(("reset", to_email, token))
        return True

    def send_email_verification(self, to_email, token, *, expires_minutes=10):
        self.sent.append(("verify", to_email, token))
        return True


@pytest.fixture
def email_outbox():
    return RecordingEmailService()


@pytest.fixture
def auth_service(user_service, token_service, passwords, email_outbox):
    return AuthService(
        user_service,
        token_service,
        passwords,
        email_outbox,
        reset_password_ttl=timedelta(minutes=10),
        verify_email_ttl=timedelta(minutes=10),
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")

import importlib.util
from pathlib import Path

import pytest

from credence.service.runtime import get_runtime
from credence.storage.models import Role

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("bootstrap_admin", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


bootstrap = _load_script()


def test_generated_password_meets_policy():
    from credence.api.schemas import _validate_password_strength

    for _ in range(20):
        password = bootstrap.generate_password()
        assert _validate_password_strength(password) == password


@pytest.mark.asyncio
async def test_creates_verified_admin():
    result = await bootstrap.bootstrap_admin("root@example.com", "Root", "Secret123!")

    assert result["status"] == "created"
    user = await get_runtime().users.get_user(result["user_id"])
    assert user.role == Role.ADMIN
    assert user.is_email_verified is True


@pytest.mark.asyncio
async def test_promotes_existing_user():
    runtime = get_runtime()
    user = await runtime.users.create_user(
        name="Alice", email="alice@example.com", password="Secret123!"
    )

    result = await bootstrap.bootstrap_admin("alice@example.com", "Alice", "ignored")

    assert result == {"user_id": user.id, "email": "alice@example.com", "status": "promoted"}
    assert (await runtime.users.get_user(user.id)).role == Role.ADMIN

    again = await bootstrap.bootstrap_admin("alice@example.com", "Alice", "ignored")
    assert again["status"] == "already_admin"


@pytest.mark.asyncio
async def test_dry_run_changes_nothing():
    result = await bootstrap.bootstrap_admin(
        "root@example.com", "Root", "Secret123!", dry_run=True
    )

    assert result["status"] == "dry_run"
    assert await get_runtime().users.get_user_by_email("root@example.com") is None

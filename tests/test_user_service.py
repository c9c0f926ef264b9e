"""Tests for user management and query helpers."""

import pytest

from credence.service.errors import NotFoundError, ValidationError
from credence.service.users import ensure_user_id, parse_sort
from credence.storage.models import Role


async def _make_user(user_service, name, email, role=Role.USER):
    return await user_service.create_user(
        name=name, email=email, password="Secret123!", role=role
    )


class TestHelpers:
    """Tests for id and sort parsing."""

    def test_ensure_user_id_accepts_uuid(self):
        """Test that a canonical uuid passes through."""
        value = "6f1c2b9e-2f1e-4c39-9d8a-3e6f7a1b2c3d"
        assert ensure_user_id(value) == value

    def test_ensure_user_id_rejects_garbage(self):
        """Test that malformed ids raise a validation error."""
        with pytest.raises(ValidationError) as exc_info:
            ensure_user_id("not-a-uuid")
        assert exc_info.value.message == "Invalid user ID format"

    def test_parse_sort_default(self):
        """Test the default ordering."""
        assert parse_sort(None) == ("created_at", False)

    def test_parse_sort_desc(self):
        """Test a descending sort key."""
        assert parse_sort("name:desc") == ("name", True)

    @pytest.mark.parametrize("value", ["name", "password:asc", "name:sideways", ":asc"])
    def test_parse_sort_rejects_bad_input(self, value):
        """Test that unsupported sort expressions are rejected."""
        with pytest.raises(ValidationError):
            parse_sort(value)


class TestCreateAndGet:
    """Tests for creating and reading users."""

    @pytest.mark.asyncio
    async def test_create_user_with_role(self, user_service):
        """Test that admins can be created directly."""
        user = await _make_user(user_service, "Root", "root@example.com", Role.ADMIN)

        fetched = await user_service.get_user(user.id)

        assert fetched.role == Role.ADMIN
        assert fetched.password_hash is None

    @pytest.mark.asyncio
    async def test_get_missing_user(self, user_service):
        """Test that a well-formed but unknown id is a 404."""
        with pytest.raises(NotFoundError):
            await user_service.get_user("6f1c2b9e-2f1e-4c39-9d8a-3e6f7a1b2c3d")

    @pytest.mark.asyncio
    async def test_email_lookup_is_case_insensitive(self, user_service):
        """Test that addresses are compared without case."""
        user = await _make_user(user_service, "Alice", "Alice@Example.com")

        found = await user_service.get_user_by_email("ALICE@example.COM")

        assert found.id == user.id
        assert user.email == "alice@example.com"


class TestUpdate:
    """Tests for patching users."""

    @pytest.mark.asyncio
    async def test_update_name(self, user_service):
        """Test that a name change is persisted and bumps updated_at."""
        user = await _make_user(user_service, "Alice", "alice@example.com")

        updated = await user_service.update_user(user.id, {"name": "Alicia"})

        assert updated.name == "Alicia"
        assert updated.updated_at >= user.updated_at

    @pytest.mark.asyncio
    async def test_update_password_rehashes(self, user_service, memory_store, passwords):
        """Test that a new password is hashed before storage."""
        user = await _make_user(user_service, "Alice", "alice@example.com")

        await user_service.update_user(user.id, {"password": "Changed456!"})

        stored = await memory_store.find_by_id(user.id)
        assert passwords.verify(stored.password_hash, "Changed456!")
        assert not passwords.verify(stored.password_hash, "Secret123!")

    @pytest.mark.asyncio
    async def test_update_email_to_taken_address(self, user_service):
        """Test that email uniqueness holds on update."""
        await _make_user(user_service, "Alice", "alice@example.com")
        bob = await _make_user(user_service, "Bob", "bob@example.com")

        with pytest.raises(ValidationError) as exc_info:
            await user_service.update_user(bob.id, {"email": "alice@example.com"})
        assert exc_info.value.message == "Email already taken"

    @pytest.mark.asyncio
    async def test_update_own_email_unchanged(self, user_service):
        """Test that re-submitting your own address is allowed."""
        alice = await _make_user(user_service, "Alice", "alice@example.com")

        updated = await user_service.update_user(alice.id, {"email": "alice@example.com"})

        assert updated.email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, user_service):
        """Test that only known fields may be patched."""
        alice = await _make_user(user_service, "Alice", "alice@example.com")

        with pytest.raises(ValidationError):
            await user_service.update_user(alice.id, {"password_hash": "x"})

    @pytest.mark.asyncio
    async def test_update_missing_user(self, user_service):
        """Test that updating an unknown id is a 404."""
        with pytest.raises(NotFoundError):
            await user_service.update_user(
                "6f1c2b9e-2f1e-4c39-9d8a-3e6f7a1b2c3d", {"name": "Ghost"}
            )


class TestDelete:
    """Tests for deleting users."""

    @pytest.mark.asyncio
    async def test_delete_user(self, user_service):
        """Test that deleted users are gone."""
        user = await _make_user(user_service, "Alice", "alice@example.com")

        await user_service.delete_user(user.id)

        with pytest.raises(NotFoundError):
            await user_service.get_user(user.id)

    @pytest.mark.asyncio
    async def test_delete_twice(self, user_service):
        """Test that the second delete is a 404."""
        user = await _make_user(user_service, "Alice", "alice@example.com")
        await user_service.delete_user(user.id)

        with pytest.raises(NotFoundError):
            await user_service.delete_user(user.id)


class TestQuery:
    """Tests for paginated listing."""

    @pytest.mark.asyncio
    async def test_pagination_metadata(self, user_service):
        """Test page, limit and totals."""
        for index in range(5):
            await _make_user(user_service, f"User {index}", f"user{index}@example.com")

        result = await user_service.query_users(limit=2, page=3)

        assert result.page == 3
        assert result.limit == 2
        assert result.total_results == 5
        assert result.total_pages == 3
        assert len(result.results) == 1

    @pytest.mark.asyncio
    async def test_empty_result(self, user_service):
        """Test an empty listing."""
        result = await user_service.query_users()

        assert result.results == []
        assert result.total_pages == 0
        assert result.limit == 10

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, user_service):
        """Test that oversized pages are capped."""
        result = await user_service.query_users(limit=5000)

        assert result.limit == 100

    @pytest.mark.asyncio
    async def test_filter_by_role_and_name(self, user_service):
        """Test combined filters."""
        await _make_user(user_service, "Alice Admin", "a1@example.com", Role.ADMIN)
        await _make_user(user_service, "Alice User", "a2@example.com")
        await _make_user(user_service, "Bob Admin", "b1@example.com", Role.ADMIN)

        result = await user_service.query_users(name="alice", role=Role.ADMIN)

        assert [u.email for u in result.results] == ["a1@example.com"]

    @pytest.mark.asyncio
    async def test_sort_by_name_desc(self, user_service):
        """Test descending sort."""
        for name in ("bravo", "Alpha", "charlie"):
            await _make_user(user_service, name, f"{name.lower()}@example.com")

        result = await user_service.query_users(sort_by="name:desc")

        assert [u.name for u in result.results] == ["charlie", "bravo", "Alpha"]

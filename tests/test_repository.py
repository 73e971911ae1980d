import pytest
from datetime import timedelta
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from telecare.core.exceptions import ConflictError
from telecare.core.security import PasswordHasher, utcnow
from telecare.domain.auth.models import User, UserRole, VerificationType
from telecare.domain.auth.repository import (
    SessionRepository,
    UserRepository,
    VerificationRepository,
    parse_sort,
)


@pytest.mark.unit
@pytest.mark.asyncio
class TestUserRepository:

    async def test_create_stores_hash_not_plaintext(
        self, db_session: AsyncSession, hasher: PasswordHasher, user_data: Dict[str, Any]
    ) -> None:
        repo = UserRepository(db_session, hasher)

        user = await repo.create(user_data)

        assert user.id is not None
        assert user.password != user_data["password"]
        assert await hasher.verify(user_data["password"], user.password)
        assert user.verified is False

    async def test_duplicate_unique_field_is_a_conflict(
        self, db_session: AsyncSession, hasher: PasswordHasher, test_user: User, user_data: Dict[str, Any]
    ) -> None:
        repo = UserRepository(db_session, hasher)

        with pytest.raises(ConflictError):
            await repo.create({**user_data, "username": "someoneelse", "email": "other@example.com"})

    async def test_lookup_by_each_unique_field(
        self, db_session: AsyncSession, hasher: PasswordHasher, test_user: User
    ) -> None:
        repo = UserRepository(db_session, hasher)

        for field in ("email", "username", "contact_number"):
            found = await repo.get_by_field(field, getattr(test_user, field))
            assert found is not None and found.id == test_user.id

        assert await repo.get_by_field("email", "nobody@example.com") is None
        assert await repo.exists(email=test_user.email)

    async def test_exists_can_exclude_a_user(
        self, db_session: AsyncSession, hasher: PasswordHasher, test_user: User, admin_user: User
    ) -> None:
        repo = UserRepository(db_session, hasher)

        assert not await repo.exists(exclude_id=test_user.id, email=test_user.email)
        assert await repo.exists(exclude_id=admin_user.id, email=test_user.email)

    async def test_get_all_filters_and_counts(
        self, db_session: AsyncSession, hasher: PasswordHasher, test_user: User, admin_user: User
    ) -> None:
        repo = UserRepository(db_session, hasher)

        everyone = await repo.get_all()
        admins = await repo.get_all({"role": UserRole.ADMIN, "name": None})

        assert {user.id for user in everyone} == {test_user.id, admin_user.id}
        assert [user.id for user in admins] == [admin_user.id]
        assert await repo.count() == 2
        assert await repo.count({"email": "user@example.com"}) == 1
        # Only whitelisted fields filter
        assert await repo.count({"password": "anything"}) == 2

    async def test_get_all_pages_in_sort_order(
        self, db_session: AsyncSession, hasher: PasswordHasher, test_user: User, admin_user: User
    ) -> None:
        repo = UserRepository(db_session, hasher)

        first = await repo.get_all(page=1, limit=1, sort_by="username:asc")
        second = await repo.get_all(page=2, limit=1, sort_by="username:asc")
        past_end = await repo.get_all(page=3, limit=1, sort_by="username:asc")
        descending = await repo.get_all(sort_by="name:desc")

        assert [user.username for user in first + second] == ["admin", "testuser"]
        assert past_end == []
        assert [user.name for user in descending] == ["Test User", "Admin User"]

    async def test_update_rehashes_password(
        self, db_session: AsyncSession, hasher: PasswordHasher, test_user: User
    ) -> None:
        repo = UserRepository(db_session, hasher)

        user = await repo.update(test_user, {"password": "NewSecret456", "name": "Renamed"})

        assert user.name == "Renamed"
        assert await hasher.verify("NewSecret456", user.password)
        assert not await hasher.verify("Secret123", user.password)


@pytest.mark.unit
@pytest.mark.asyncio
class TestSessionRepository:
    """Test the refresh token ledger."""

    async def test_create_and_exists(self, db_session: AsyncSession, test_user: User) -> None:
        repo = SessionRepository(db_session)

        await repo.create(test_user.id, "refresh-token-1", "1.2.3.4", utcnow() + timedelta(days=1))

        assert await repo.exists(user_id=test_user.id, token="refresh-token-1")
        assert not await repo.exists(user_id=test_user.id, token="refresh-token-2")

    async def test_delete_by_token_is_idempotent(self, db_session: AsyncSession, test_user: User) -> None:
        repo = SessionRepository(db_session)
        await repo.create(test_user.id, "refresh-token-1", "1.2.3.4", utcnow() + timedelta(days=1))

        assert await repo.delete_by_token("refresh-token-1") is True
        assert await repo.delete_by_token("refresh-token-1") is False
        assert not await repo.exists(token="refresh-token-1")

    async def test_delete_all_for_user_leaves_other_users(
        self, db_session: AsyncSession, test_user: User, admin_user: User
    ) -> None:
        repo = SessionRepository(db_session)
        expires = utcnow() + timedelta(days=1)
        await repo.create(test_user.id, "user-token-1", "1.2.3.4", expires)
        await repo.create(test_user.id, "user-token-2", "5.6.7.8", expires)
        await repo.create(admin_user.id, "admin-token", "1.2.3.4", expires)

        assert await repo.delete_all_for_user(test_user.id) == 2
        assert not await repo.exists(user_id=test_user.id)
        assert await repo.exists(token="admin-token")


@pytest.mark.unit
@pytest.mark.asyncio
class TestVerificationRepository:
    """Test the pending one-time-code ledger."""

    async def test_replace_active_keeps_one_record_per_flow(
        self, db_session: AsyncSession, test_user: User
    ) -> None:
        repo = VerificationRepository(db_session)
        expires = utcnow() + timedelta(minutes=10)

        await repo.replace_active(test_user.id, VerificationType.PASSWORD_RESET, "111111", "token-1", "1.2.3.4", expires)
        await repo.replace_active(test_user.id, VerificationType.PASSWORD_RESET, "222222", "token-2", "1.2.3.4", expires)

        assert await repo.find_by_code("111111", VerificationType.PASSWORD_RESET) is None
        active = await repo.find_active(test_user.id, VerificationType.PASSWORD_RESET)
        assert active is not None
        assert active.verification_code == "222222"
        assert active.token == "token-2"

    async def test_flows_do_not_replace_each_other(self, db_session: AsyncSession, test_user: User) -> None:
        repo = VerificationRepository(db_session)
        expires = utcnow() + timedelta(minutes=10)

        await repo.replace_active(test_user.id, VerificationType.PASSWORD_RESET, "111111", "reset", "1.2.3.4", expires)
        await repo.replace_active(
            test_user.id, VerificationType.ACCOUNT_VERIFICATION, "111111", "verify", "1.2.3.4", expires
        )

        reset = await repo.find_by_code("111111", VerificationType.PASSWORD_RESET)
        verify = await repo.find_by_code("111111", VerificationType.ACCOUNT_VERIFICATION)
        assert reset is not None and reset.token == "reset"
        assert verify is not None and verify.token == "verify"

    async def test_delete_active(self, db_session: AsyncSession, test_user: User) -> None:
        repo = VerificationRepository(db_session)
        await repo.replace_active(
            test_user.id, VerificationType.PASSWORD_RESET, "333333", "token", "1.2.3.4",
            utcnow() + timedelta(minutes=10)
        )

        assert await repo.delete_active(test_user.id, VerificationType.PASSWORD_RESET) == 1
        assert not await repo.exists(user_id=test_user.id, type=VerificationType.PASSWORD_RESET)
        assert await repo.delete_active(test_user.id, VerificationType.PASSWORD_RESET) == 0


@pytest.mark.unit
def test_parse_sort_skips_malformed_items() -> None:
    clauses = parse_sort("username:asc,password:desc,name,email:sideways")

    assert len(clauses) == 2
    assert str(clauses[-1]) == str(User.id.asc())
    assert len(parse_sort(None)) == 1

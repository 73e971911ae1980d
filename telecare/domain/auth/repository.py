from typing import Optional, Any, Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, exists, func
from sqlalchemy.exc import IntegrityError
from datetime import datetime
import uuid

from telecare.core.exceptions import ConflictError
from telecare.core.security import PasswordHasher
from telecare.domain.auth.models import User, RefreshToken, VerificationToken, VerificationType

USER_FILTER_FIELDS = ("name", "username", "email", "role")

# Columns a user listing may be sorted by, keyed by the names clients send
USER_SORT_FIELDS = {
    "name": User.name,
    "username": User.username,
    "email": User.email,
    "role": User.role,
    "created_at": User.created_at,
    "createdAt": User.created_at,
}

DEFAULT_USER_SORT = "created_at:desc"


def parse_sort(sort_by: Optional[str]) -> list:
    """Turn "field:order[,field:order]" into ORDER BY clauses.

    Malformed items and unknown fields are skipped; the user id is always the
    final tiebreaker so pages are stable.
    """
    clauses = []
    for item in (sort_by or "").split(","):
        field, _, order = item.strip().partition(":")
        column = USER_SORT_FIELDS.get(field)
        if column is None or order not in ("asc", "desc"):
            continue
        clauses.append(column.desc() if order == "desc" else column.asc())

    return clauses + [User.id.asc()]


class UserRepository:
    """Repository for user data access operations.

    Every write that carries a ``password`` field hashes it before it
    reaches the database.
    """

    def __init__(self, db: AsyncSession, hasher: PasswordHasher):
        self.db = db
        self.hasher = hasher

    async def create(self, user_data: dict) -> User:
        """Create a new user"""
        user_data = dict(user_data)
        user_data["password"] = await self.hasher.hash(user_data["password"])
        user = User(**user_data)

        self.db.add(user)
        await self._commit_unique("User already exists")
        await self.db.refresh(user)

        return user

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Get user by ID"""
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_field(self, field: str, value: Any) -> Optional[User]:
        """Get user by one of its unique lookup fields (email, username, contact_number)"""
        result = await self.db.execute(select(User).where(getattr(User, field) == value))
        return result.scalar_one_or_none()

    async def exists(self, exclude_id: Optional[uuid.UUID] = None, **filters) -> bool:
        """Check if a user other than ``exclude_id`` matches all filters"""
        conditions = [getattr(User, k) == v for k, v in filters.items()]
        if exclude_id is not None:
            conditions.append(User.id != exclude_id)

        result = await self.db.execute(select(exists().where(*conditions)))
        return bool(result.scalar())

    async def get_all(
        self,
        filters: Optional[Dict[str, Any]] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = DEFAULT_USER_SORT
    ) -> List[User]:
        """Get users with equality filters, sorting and pagination"""
        query = self._filtered(select(User), filters)
        query = query.order_by(*parse_sort(sort_by)).offset((page - 1) * limit).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count users matching the filters"""
        result = await self.db.execute(self._filtered(select(func.count(User.id)), filters))
        return result.scalar()

    @staticmethod
    def _filtered(query, filters: Optional[Dict[str, Any]]):
        for field, value in (filters or {}).items():
            if field in USER_FILTER_FIELDS and value is not None:
                query = query.where(getattr(User, field) == value)
        return query

    async def update(self, user: User, update_data: dict) -> User:
        """Update user information"""
        update_data = dict(update_data)
        if "password" in update_data:
            password = update_data.pop("password")
            if password:
                update_data["password"] = await self.hasher.hash(password)

        for field, value in update_data.items():
            setattr(user, field, value)

        await self._commit_unique("User with the same unique field already exists")
        await self.db.refresh(user)
        return user

    async def _commit_unique(self, message: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(message=message)


class SessionRepository:
    """Authoritative ledger of live refresh tokens, one row per session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, user_id: uuid.UUID, token: str, ip: str, expires: datetime) -> RefreshToken:
        """Record a newly issued refresh token"""
        session = RefreshToken(user_id=user_id, token=token, ip=ip, expires=expires)
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)
        return session

    async def exists(self, **filters) -> bool:
        """Check whether a session matching all filters is recorded"""
        query = select(exists().where(*[getattr(RefreshToken, k) == v for k, v in filters.items()]))
        result = await self.db.execute(query)
        return bool(result.scalar())

    async def delete_by_token(self, token: str) -> bool:
        """Remove a session; False when it was already gone"""
        result = await self.db.execute(
            delete(RefreshToken).where(RefreshToken.token == token)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def delete_all_for_user(self, user_id: uuid.UUID) -> int:
        """Revoke every session of a user"""
        result = await self.db.execute(
            delete(RefreshToken).where(RefreshToken.user_id == user_id)
        )
        await self.db.commit()
        return result.rowcount


class VerificationRepository:
    """Ledger of pending one-time-code flows, at most one per (user, type)"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def replace_active(
        self,
        user_id: uuid.UUID,
        verification_type: VerificationType,
        verification_code: str,
        token: str,
        ip: str,
        expires: datetime
    ) -> VerificationToken:
        """Drop earlier records for (user, type) and store the new one"""
        await self.db.execute(
            delete(VerificationToken).where(
                VerificationToken.user_id == user_id,
                VerificationToken.type == verification_type
            )
        )
        record = VerificationToken(
            user_id=user_id,
            type=verification_type,
            verification_code=verification_code,
            token=token,
            ip=ip,
            expires=expires
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def exists(self, **filters) -> bool:
        query = select(exists().where(*[getattr(VerificationToken, k) == v for k, v in filters.items()]))
        result = await self.db.execute(query)
        return bool(result.scalar())

    async def find_by_code(
        self,
        verification_code: str,
        verification_type: VerificationType
    ) -> Optional[VerificationToken]:
        """Look up the pending record a code was issued for"""
        result = await self.db.execute(
            select(VerificationToken).where(
                VerificationToken.verification_code == verification_code,
                VerificationToken.type == verification_type
            )
        )
        return result.scalars().first()

    async def find_active(
        self,
        user_id: uuid.UUID,
        verification_type: VerificationType
    ) -> Optional[VerificationToken]:
        """Get the pending record of a user for a flow"""
        result = await self.db.execute(
            select(VerificationToken).where(
                VerificationToken.user_id == user_id,
                VerificationToken.type == verification_type
            )
        )
        return result.scalars().first()

    async def delete_active(self, user_id: uuid.UUID, verification_type: VerificationType) -> int:
        """Remove the pending record(s) once a flow completes"""
        result = await self.db.execute(
            delete(VerificationToken).where(
                VerificationToken.user_id == user_id,
                VerificationToken.type == verification_type
            )
        )
        await self.db.commit()
        return result.rowcount

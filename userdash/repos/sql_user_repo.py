"""SQLAlchemy implementation of UserRepo (PostgreSQL or SQLite)."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from userdash.core.errors import ConflictError
from userdash.db.tables import UserRow
from userdash.models.user import NewUser, UserRecord
from userdash.repos.user_repo import UPDATABLE_FIELDS


class SqlUserRepo:
    """Satisfies the UserRepo Protocol using an async SQLAlchemy session.

    The session's owner commits or rolls back; this class only flushes.
    `has_writes` tells the owner whether anything was flushed.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.has_writes = False

    async def get_by_id(self, user_id: int) -> UserRecord | None:
        row = await self._session.get(UserRow, user_id)
        if row is None:
            return None
        return _row_to_user(row)

    async def get_by_email(self, email: str) -> UserRecord | None:
        stmt = select(UserRow).where(UserRow.email == email)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_user(row)

    async def add(self, user: NewUser) -> UserRecord:
        row = UserRow(
            email=user.email,
            role=user.role,
            status=user.status,
            created_at=datetime.now(UTC),
            email_hash=user.email_hash,
            signature=user.signature,
        )
        self._session.add(row)
        await self._flush_or_conflict(user.email)
        self.has_writes = True
        return _row_to_user(row)

    async def update(self, user_id: int, **fields: str) -> UserRecord | None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update fields: {sorted(unknown)}")

        row = await self._session.get(UserRow, user_id)
        if row is None:
            return None
        for name, value in fields.items():
            setattr(row, name, value)
        await self._flush_or_conflict(fields.get("email", row.email))
        self.has_writes = True
        return _row_to_user(row)

    async def delete(self, user_id: int) -> bool:
        stmt = delete(UserRow).where(UserRow.id == user_id)
        result = await self._session.execute(stmt)
        self.has_writes = True
        return result.rowcount > 0

    async def list_all(self) -> list[UserRecord]:
        stmt = select(UserRow).order_by(UserRow.created_at.desc(), UserRow.id.desc())
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_user(r) for r in rows]

    async def count(self, *, role: str | None = None, status: str | None = None) -> int:
        stmt = select(func.count(UserRow.id))
        if role is not None:
            stmt = stmt.where(UserRow.role == role)
        if status is not None:
            stmt = stmt.where(UserRow.status == status)
        return (await self._session.execute(stmt)).scalar_one()

    async def created_since(self, since: datetime) -> list[datetime]:
        stmt = select(UserRow.created_at).where(UserRow.created_at >= since)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_as_utc(ts) for ts in rows]

    async def _flush_or_conflict(self, email: str) -> None:
        # The unique index is the last line of defence against two
        # concurrent requests that both passed the service-level check.
        try:
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            raise ConflictError(email) from None


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def _row_to_user(row: UserRow) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        role=row.role,
        status=row.status,
        created_at=_as_utc(row.created_at),
        email_hash=row.email_hash,
        signature=row.signature,
    )

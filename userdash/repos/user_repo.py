from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from typing import Protocol

from userdash.core.errors import ConflictError
from userdash.models.user import NewUser, UserRecord


class UserRepo(Protocol):
    async def get_by_id(self, user_id: int) -> UserRecord | None: ...
    async def get_by_email(self, email: str) -> UserRecord | None: ...
    async def add(self, user: NewUser) -> UserRecord: ...
    async def update(self, user_id: int, **fields: str) -> UserRecord | None: ...
    async def delete(self, user_id: int) -> bool: ...
    async def list_all(self) -> list[UserRecord]: ...
    async def count(
        self, *, role: str | None = None, status: str | None = None
    ) -> int: ...
    async def created_since(self, since: datetime) -> list[datetime]: ...


# Columns a caller may change after insert.  id and created_at are fixed.
UPDATABLE_FIELDS = frozenset({"email", "role", "status", "email_hash", "signature"})


class InMemoryUserRepo:
    """Process-local store used when DATABASE_URL is not configured."""

    def __init__(self) -> None:
        self._by_id: dict[int, UserRecord] = {}
        self._next_id = 1

    def clear(self) -> None:
        self._by_id.clear()
        self._next_id = 1

    async def get_by_id(self, user_id: int) -> UserRecord | None:
        return self._by_id.get(user_id)

    async def get_by_email(self, email: str) -> UserRecord | None:
        # Exact match, same as the unique column in SQL
        return next((u for u in self._by_id.values() if u.email == email), None)

    async def add(self, user: NewUser) -> UserRecord:
        if await self.get_by_email(user.email) is not None:
            raise ConflictError(user.email)
        record = UserRecord(
            id=self._next_id,
            email=user.email,
            role=user.role,
            status=user.status,
            created_at=datetime.now(UTC),
            email_hash=user.email_hash,
            signature=user.signature,
        )
        self._by_id[record.id] = record
        self._next_id += 1
        return record

    async def update(self, user_id: int, **fields: str) -> UserRecord | None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update fields: {sorted(unknown)}")

        current = self._by_id.get(user_id)
        if current is None:
            return None

        new_email = fields.get("email")
        if new_email is not None and new_email != current.email:
            clash = await self.get_by_email(new_email)
            if clash is not None and clash.id != user_id:
                raise ConflictError(new_email)

        updated = replace(current, **fields)
        self._by_id[user_id] = updated
        return updated

    async def delete(self, user_id: int) -> bool:
        return self._by_id.pop(user_id, None) is not None

    async def list_all(self) -> list[UserRecord]:
        return sorted(
            self._by_id.values(), key=lambda u: (u.created_at, u.id), reverse=True
        )

    async def count(self, *, role: str | None = None, status: str | None = None) -> int:
        return sum(
            1
            for u in self._by_id.values()
            if (role is None or u.role == role)
            and (status is None or u.status == status)
        )

    async def created_since(self, since: datetime) -> list[datetime]:
        return [u.created_at for u in self._by_id.values() if u.created_at >= since]

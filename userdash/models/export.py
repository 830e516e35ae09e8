"""Export-side structural types.

These mirror the protobuf `userdashboard.User` / `userdashboard.UsersExport`
messages field for field.  `to_exported_user` is the only bridge from
the persistence-side UserRecord; nothing crosses the boundary by
duck typing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from userdash.models.user import UserRecord


@dataclass(frozen=True, slots=True)
class ExportedUser:
    id: int
    email: str
    role: str
    status: str
    created_at: str  # ISO-8601, UTC, millisecond precision
    email_hash: str
    signature: str  # base64


@dataclass(frozen=True, slots=True)
class UsersExport:
    users: list[ExportedUser] = field(default_factory=list)
    exported_at: str = ""
    total_count: int = 0


def isoformat_utc(value: datetime) -> str:
    """Render a timestamp as `2024-05-01T12:30:00.123Z`.

    Naive datetimes are taken to be UTC (SQLite hands them back without
    tzinfo even for timezone-aware columns).
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    iso = value.astimezone(UTC).isoformat(timespec="milliseconds")
    return iso.replace("+00:00", "Z")


def to_exported_user(record: UserRecord) -> ExportedUser:
    return ExportedUser(
        id=record.id,
        email=record.email,
        role=record.role,
        status=record.status,
        created_at=isoformat_utc(record.created_at),
        email_hash=record.email_hash,
        signature=record.signature,
    )

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

UserRole = Literal["admin", "user"]
UserStatus = Literal["active", "inactive"]

ROLES: tuple[str, ...] = ("admin", "user")
STATUSES: tuple[str, ...] = ("active", "inactive")

# RFC 5321 path limit; also the width of the users.email column
EMAIL_MAX_LENGTH = 320


@dataclass(frozen=True, slots=True)
class UserRecord:
    """A persisted user with its integrity fields.

    `email` is stored exactly as supplied.  `email_hash` is the SHA-384
    digest of the normalized email and `signature` is the base64 RSA
    signature over that hex digest.
    """

    id: int
    email: str
    role: str  # admin|user
    status: str  # active|inactive
    created_at: datetime
    email_hash: str
    signature: str


@dataclass(frozen=True, slots=True)
class NewUser:
    """Fields the service hands to a repo on insert.

    The repo assigns `id` and `created_at`.
    """

    email: str
    role: str
    status: str
    email_hash: str
    signature: str


@dataclass(frozen=True, slots=True)
class UserUpdate:
    """Partial update.  None means "leave unchanged"."""

    email: str | None = None
    role: str | None = None
    status: str | None = None


@dataclass(frozen=True, slots=True)
class DailyCount:
    date: str  # YYYY-MM-DD (UTC)
    count: int


@dataclass(frozen=True, slots=True)
class UserStats:
    total_users: int
    active_users: int
    admin_users: int

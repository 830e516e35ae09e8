"""SQLAlchemy table definitions.

These map to the frozen dataclass UserRecord in userdash/models/user.py.
Repos convert between rows and domain records; rows never leave the
repo layer.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from userdash.db.engine import Base
from userdash.models.user import EMAIL_MAX_LENGTH


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Unique on the raw string; case/whitespace variants are distinct rows
    email: Mapped[str] = mapped_column(
        String(EMAIL_MAX_LENGTH), unique=True, index=True, nullable=False
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="user"
    )  # admin|user
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active"
    )  # active|inactive
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    email_hash: Mapped[str] = mapped_column(String(96), nullable=False)
    signature: Mapped[str] = mapped_column(Text, nullable=False)

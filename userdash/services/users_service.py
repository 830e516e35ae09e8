"""User record lifecycle with integrity fields.

Every path that writes `email` goes through IntegritySigner.seal(), so
`email_hash`/`signature` are always derived from the email that is
actually stored.  Role/status edits never touch them.

Uniqueness is checked on the raw email string, while the hash is taken
over the normalized one.  "Bob@x.io" and "bob@x.io " are therefore two
distinct records with the same email_hash.  This mirrors the unique
column in the database and is kept as-is until product decides whether
identity should be case-insensitive.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict
from datetime import UTC, date, datetime, time, timedelta

from userdash.core.errors import ConflictError, InvalidInputError, NotFoundError
from userdash.models.user import (
    EMAIL_MAX_LENGTH,
    ROLES,
    STATUSES,
    DailyCount,
    NewUser,
    UserRecord,
    UserStats,
    UserUpdate,
)
from userdash.repos.user_repo import UserRepo
from userdash.services.cache import CacheService
from userdash.services.integrity import IntegritySigner

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

STATS_TTL_SECONDS = 60
STATS_CACHE_PATTERN = "stats:*"
CHART_DAYS = 7


def validate_email(email: object) -> str:
    if not isinstance(email, str) or not email.strip():
        raise InvalidInputError("email must be non-empty")
    if len(email) > EMAIL_MAX_LENGTH:
        raise InvalidInputError(
            f"email must be at most {EMAIL_MAX_LENGTH} characters"
        )
    # Surrounding whitespace is tolerated (it is stripped before hashing)
    if not _EMAIL_RE.match(email.strip()):
        raise InvalidInputError("Please provide a valid email address")
    try:
        email.encode("utf-8")
    except UnicodeEncodeError:
        # Lone surrogates survive JSON decoding but not hashing or storage
        raise InvalidInputError("Please provide a valid email address") from None
    return email


def _validate_label(value: object, allowed: tuple[str, ...], field: str) -> str:
    if value not in allowed:
        raise InvalidInputError(f"{field} must be one of {'|'.join(allowed)}")
    return value  # type: ignore[return-value]


class UsersService:
    def __init__(
        self, repo: UserRepo, signer: IntegritySigner, cache: CacheService
    ) -> None:
        self._repo = repo
        self._signer = signer
        self._cache = cache

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def list_users(self) -> list[UserRecord]:
        users = await self._repo.list_all()
        logger.debug("Retrieved %d users", len(users))
        return users

    async def get(self, user_id: int) -> UserRecord:
        user = await self._repo.get_by_id(user_id)
        if user is None:
            logger.warning("User not found id=%d", user_id)
            raise NotFoundError(user_id)
        return user

    async def create(
        self, email: str, role: str = "user", status: str = "active"
    ) -> UserRecord:
        try:
            validate_email(email)
            _validate_label(role, ROLES, "role")
            _validate_label(status, STATUSES, "status")
        except InvalidInputError as e:
            logger.warning("Rejected user payload: %s", e)
            raise

        if await self._repo.get_by_email(email) is not None:
            logger.warning("Rejected duplicate email=%s", email)
            raise ConflictError(email)

        email_hash, signature = self._signer.seal(email)
        user = await self._repo.add(
            NewUser(
                email=email,
                role=role,
                status=status,
                email_hash=email_hash,
                signature=signature,
            )
        )
        await self._invalidate_stats()
        logger.info("Created user id=%d email=%s", user.id, user.email)
        return user

    async def update(self, user_id: int, changes: UserUpdate) -> UserRecord:
        current = await self.get(user_id)
        fields: dict[str, str] = {}

        if changes.email is not None and changes.email != current.email:
            try:
                validate_email(changes.email)
            except InvalidInputError as e:
                logger.warning("Rejected email change for id=%d: %s", user_id, e)
                raise
            clash = await self._repo.get_by_email(changes.email)
            if clash is not None and clash.id != user_id:
                logger.warning("Rejected duplicate email=%s", changes.email)
                raise ConflictError(changes.email)

            email_hash, signature = self._signer.seal(changes.email)
            fields.update(
                email=changes.email, email_hash=email_hash, signature=signature
            )

        if changes.role is not None and changes.role != current.role:
            fields["role"] = _validate_label(changes.role, ROLES, "role")
        if changes.status is not None and changes.status != current.status:
            fields["status"] = _validate_label(changes.status, STATUSES, "status")

        if not fields:
            return current

        updated = await self._repo.update(user_id, **fields)
        if updated is None:
            # Deleted between the read above and this write
            raise NotFoundError(user_id)
        await self._invalidate_stats()
        logger.info(
            "Updated user id=%d fields=%s resigned=%s",
            user_id,
            ",".join(sorted(fields)),
            "email" in fields,
        )
        return updated

    async def delete(self, user_id: int) -> None:
        await self.get(user_id)
        if not await self._repo.delete(user_id):
            raise NotFoundError(user_id)
        await self._invalidate_stats()
        logger.info("Deleted user id=%d", user_id)

    # ------------------------------------------------------------------
    # Stats (read-through cached)
    # ------------------------------------------------------------------

    async def users_created_per_day(
        self, days: int = CHART_DAYS, *, today: date | None = None
    ) -> list[DailyCount]:
        """Creations per UTC day for the last `days` days, oldest first.

        Days with no creations are present with count 0.
        """
        today = today or datetime.now(UTC).date()
        cache_key = f"stats:chart:{today.isoformat()}:{days}"
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return [DailyCount(**item) for item in json.loads(cached)]

        first_day = today - timedelta(days=days - 1)
        since = datetime.combine(first_day, time.min, tzinfo=UTC)
        buckets = {first_day + timedelta(days=i): 0 for i in range(days)}
        for created_at in await self._repo.created_since(since):
            day = created_at.astimezone(UTC).date()
            if day in buckets:
                buckets[day] += 1

        result = [DailyCount(date=d.isoformat(), count=n) for d, n in buckets.items()]
        await self._cache.set(
            cache_key, json.dumps([asdict(r) for r in result]), STATS_TTL_SECONDS
        )
        return result

    async def summary(self) -> UserStats:
        cached = await self._cache.get("stats:summary")
        if cached is not None:
            return UserStats(**json.loads(cached))

        stats = UserStats(
            total_users=await self._repo.count(),
            active_users=await self._repo.count(status="active"),
            admin_users=await self._repo.count(role="admin"),
        )
        await self._cache.set(
            "stats:summary", json.dumps(asdict(stats)), STATS_TTL_SECONDS
        )
        return stats

    async def _invalidate_stats(self) -> None:
        # SQL writes are not committed yet; get_user_repo clears again after commit
        await self._cache.delete_pattern(STATS_CACHE_PATTERN)

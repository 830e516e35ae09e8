"""FastAPI dependencies wiring the composition root into request handlers.

The KeyManager lives on app.state (installed by the lifespan hook in
userdash.main, or by tests).  The user repo is either a request-scoped
SqlUserRepo or the process-wide in-memory repo when DATABASE_URL is
not set.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request

from userdash.core.errors import UninitializedKeyError
from userdash.db.engine import async_session_factory
from userdash.repos.sql_user_repo import SqlUserRepo
from userdash.repos.user_repo import InMemoryUserRepo, UserRepo
from userdash.services.cache import cache_service
from userdash.services.integrity import IntegritySigner
from userdash.services.key_manager import KeyManager
from userdash.services.users_service import STATS_CACHE_PATTERN, UsersService

# Module-level singleton used when no database is configured
memory_user_repo = InMemoryUserRepo()


async def get_user_repo() -> AsyncGenerator[UserRepo, None]:
    """Yield a repo for this request.

    SQL sessions commit on success and roll back on any exception,
    including HTTPExceptions raised by the endpoint.  Cached stats are
    dropped again once a write is committed, so a read racing the
    request cannot leave pre-commit counts in the cache.
    """
    if async_session_factory is None:
        yield memory_user_repo
        return

    async with async_session_factory() as session:
        repo = SqlUserRepo(session)
        try:
            yield repo
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    if repo.has_writes:
        await cache_service.delete_pattern(STATS_CACHE_PATTERN)


def get_key_manager(request: Request) -> KeyManager:
    key_manager: KeyManager | None = getattr(request.app.state, "key_manager", None)
    if key_manager is None or not key_manager.is_ready:
        raise UninitializedKeyError("Key manager has not been initialized")
    return key_manager


def get_users_service(
    repo: Annotated[UserRepo, Depends(get_user_repo)],
    key_manager: Annotated[KeyManager, Depends(get_key_manager)],
) -> UsersService:
    return UsersService(repo, IntegritySigner(key_manager), cache_service)

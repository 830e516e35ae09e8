"""The users API against a SQLite database instead of the in-memory repo."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from tests.conftest import create_user
from userdash.api import dependencies
from userdash.api.dependencies import get_user_repo
from userdash.client.verifier import SignatureFilter
from userdash.db.engine import build_session_factory, create_tables
from userdash.main import app
from userdash.models.user import NewUser
from userdash.repos.sql_user_repo import SqlUserRepo
from userdash.services.cache import cache_service
from userdash.services.export_codec import decode_users
from userdash.services.key_manager import KeyManager


@pytest.fixture
def sql_engine(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[AsyncEngine]:
    # NullPool: connections must not outlive the event loop that opened them
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'api.sqlite'}", poolclass=NullPool
    )
    asyncio.run(create_tables(engine))
    monkeypatch.setattr(
        dependencies, "async_session_factory", build_session_factory(engine)
    )
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def sql_client(sql_engine: AsyncEngine) -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c


def _count_rows(engine: AsyncEngine) -> int:
    async def _main() -> int:
        async with build_session_factory(engine)() as session:
            return await SqlUserRepo(session).count()

    return asyncio.run(_main())


def _new_user(email: str) -> NewUser:
    return NewUser(
        email=email, role="user", status="active", email_hash="h" * 96, signature="c2ln"
    )


# ---- request-scoped session ----


def test_created_user_is_committed(
    sql_client: TestClient, sql_engine: AsyncEngine
) -> None:
    created = create_user(sql_client, "sql@example.com")

    resp = sql_client.get(f"/users/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["email"] == "sql@example.com"
    assert _count_rows(sql_engine) == 1


def test_duplicate_returns_409_and_keeps_one_row(
    sql_client: TestClient, sql_engine: AsyncEngine
) -> None:
    create_user(sql_client, "dup@example.com")

    resp = sql_client.post("/users", json={"email": "dup@example.com"})

    assert resp.status_code == 409
    assert len(sql_client.get("/users").json()) == 1
    assert _count_rows(sql_engine) == 1


def test_patch_and_delete_are_committed(sql_client: TestClient) -> None:
    created = create_user(sql_client, "old@example.com")

    resp = sql_client.patch(f"/users/{created['id']}", json={"email": "new@example.com"})
    assert resp.status_code == 200
    assert sql_client.get(f"/users/{created['id']}").json()["email"] == "new@example.com"

    assert sql_client.delete(f"/users/{created['id']}").status_code == 204
    assert sql_client.get(f"/users/{created['id']}").status_code == 404


def test_stats_follow_committed_writes(sql_client: TestClient) -> None:
    assert sql_client.get("/users/stats/summary").json()["totalUsers"] == 0

    created = create_user(sql_client, "a@example.com", role="admin")
    assert sql_client.get("/users/stats/summary").json() == {
        "totalUsers": 1,
        "activeUsers": 1,
        "adminUsers": 1,
    }

    sql_client.delete(f"/users/{created['id']}")
    assert sql_client.get("/users/stats/summary").json()["totalUsers"] == 0


def test_export_from_database_verifies(
    sql_client: TestClient, key_manager: KeyManager
) -> None:
    create_user(sql_client, "a@example.com")
    create_user(sql_client, "b@example.com")

    export = decode_users(sql_client.get("/users/export").content)

    assert {u.email for u in export.users} == {"a@example.com", "b@example.com"}
    assert SignatureFilter(key_manager.public_key).filter(export.users) == export.users


# ---- get_user_repo ----


def test_commit_clears_stats_cached_mid_request(sql_engine: AsyncEngine) -> None:
    async def _main() -> None:
        agen = get_user_repo()
        repo = await agen.__anext__()
        await repo.add(_new_user("racer@example.com"))
        # A concurrent read re-caches counts before this request commits
        await cache_service.set("stats:summary", '{"total_users": 0}', 60)

        with pytest.raises(StopAsyncIteration):
            await agen.__anext__()

        assert await cache_service.get("stats:summary") is None

    asyncio.run(_main())
    assert _count_rows(sql_engine) == 1


def test_read_only_request_keeps_stats_cache(sql_engine: AsyncEngine) -> None:
    async def _main() -> None:
        agen = get_user_repo()
        repo = await agen.__anext__()
        await repo.count()
        await cache_service.set("stats:summary", '{"total_users": 0}', 60)

        with pytest.raises(StopAsyncIteration):
            await agen.__anext__()

        assert await cache_service.get("stats:summary") is not None

    asyncio.run(_main())


def test_exception_rolls_back(sql_engine: AsyncEngine) -> None:
    async def _main() -> None:
        agen = get_user_repo()
        repo = await agen.__anext__()
        await repo.add(_new_user("lost@example.com"))

        with pytest.raises(RuntimeError, match="boom"):
            await agen.athrow(RuntimeError("boom"))

    asyncio.run(_main())
    assert _count_rows(sql_engine) == 0

from __future__ import annotations

import asyncio
from collections.abc import Iterator

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from userdash.api.dependencies import memory_user_repo
from userdash.main import app
from userdash.models.user import UserRecord
from userdash.services.cache import cache_service
from userdash.services.key_manager import KeyManager


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    """One RSA keypair for the whole run; generation is the slow part."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def key_manager(private_key: rsa.RSAPrivateKey) -> KeyManager:
    return KeyManager.from_private_key(private_key)


@pytest.fixture(autouse=True)
def install_key_manager(key_manager: KeyManager) -> Iterator[None]:
    """The lifespan hook keeps a manager that is already on app.state."""
    app.state.key_manager = key_manager
    yield
    app.state.key_manager = key_manager


@pytest.fixture(autouse=True)
def reset_users_state() -> None:
    memory_user_repo.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c


def create_user(client: TestClient, email: str, **extra: str) -> dict:
    resp = client.post("/users", json={"email": email, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


def corrupt_signature(user_id: int, signature: str = "AAAA") -> UserRecord:
    """Overwrite a stored signature behind the service's back."""
    record = asyncio.run(memory_user_repo.update(user_id, signature=signature))
    assert record is not None
    return record

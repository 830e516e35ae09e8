from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import create_user
from userdash.services import export_codec
from userdash.services.export_codec import decode_users
from userdash.services.integrity import verify_signature
from userdash.services.key_manager import KeyManager


def test_export_returns_protobuf_attachment(client: TestClient) -> None:
    create_user(client, "a@example.com")

    resp = client.get("/users/export")

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/octet-stream"
    assert (
        resp.headers["content-disposition"]
        == 'attachment; filename="users_export.pb"'
    )
    assert resp.headers["x-total-count"] == "1"
    exported = datetime.fromisoformat(resp.headers["x-export-date"].replace("Z", "+00:00"))
    assert abs(datetime.now(UTC) - exported) < timedelta(minutes=1)


def test_export_contains_every_record_with_valid_signature(
    client: TestClient, key_manager: KeyManager
) -> None:
    created = [
        create_user(client, "Alice@Example.com", role="admin"),
        create_user(client, "bob@example.com", status="inactive"),
        create_user(client, "carol@example.com"),
    ]

    resp = client.get("/users/export")
    export = decode_users(resp.content)

    assert export.total_count == 3
    assert len(export.users) == 3
    assert export.exported_at == resp.headers["x-export-date"]
    for user in export.users:
        assert verify_signature(user.email_hash, user.signature, key_manager.public_key)

    by_id = {u.id: u for u in export.users}
    for body in created:
        user = by_id[body["id"]]
        assert user.email == body["email"]
        assert user.role == body["role"]
        assert user.status == body["status"]
        assert user.created_at == body["createdAt"]
        assert user.email_hash == body["emailHash"]
        assert user.signature == body["signature"]


def test_export_of_empty_store(client: TestClient) -> None:
    resp = client.get("/users/export")
    assert resp.status_code == 200
    assert resp.headers["x-total-count"] == "0"
    assert decode_users(resp.content).users == []


def test_export_counts_successes(client: TestClient) -> None:
    before = REGISTRY.get_sample_value("user_exports_total", {"result": "ok"}) or 0.0
    client.get("/users/export")
    after = REGISTRY.get_sample_value("user_exports_total", {"result": "ok"}) or 0.0
    assert after - before == 1


def test_export_encoding_failure_returns_500(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    create_user(client, "a@example.com")
    monkeypatch.setattr(export_codec, "ROLES", ("admin",))

    resp = client.get("/users/export")

    assert resp.status_code == 500
    assert resp.json() == {"detail": "Export failed"}
    assert "x-total-count" not in resp.headers

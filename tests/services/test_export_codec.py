from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from userdash.core.errors import DecodingError, EncodingError
from userdash.models.export import isoformat_utc, to_exported_user
from userdash.models.user import UserRecord
from userdash.services.export_codec import (
    UserMessage,
    UsersExportMessage,
    decode_users,
    encode_users,
    schema_info,
)
from userdash.services.integrity import IntegritySigner, hash_email, verify_signature
from userdash.services.key_manager import KeyManager

_NOW = datetime(2024, 5, 1, 12, 30, 0, 123456, tzinfo=UTC)


def _record(
    signer: IntegritySigner, user_id: int, email: str, **overrides: object
) -> UserRecord:
    email_hash, signature = signer.seal(email)
    fields: dict[str, object] = {
        "id": user_id,
        "email": email,
        "role": "user",
        "status": "active",
        "created_at": overrides.pop("created_at", None)
        or _NOW - timedelta(days=user_id),
        "email_hash": email_hash,
        "signature": signature,
    }
    fields.update(overrides)
    return UserRecord(**fields)  # type: ignore[arg-type]


@pytest.fixture
def signer(key_manager: KeyManager) -> IntegritySigner:
    return IntegritySigner(key_manager)


# ---- schema ----


def test_schema_field_order_matches_wire_contract() -> None:
    assert schema_info() == {
        "user_fields": [
            "id",
            "email",
            "role",
            "status",
            "createdAt",
            "emailHash",
            "signature",
        ],
        "export_fields": ["users", "exportedAt", "totalCount"],
    }


def test_field_numbers_are_stable() -> None:
    numbers = {f.name: f.number for f in UserMessage.DESCRIPTOR.fields}
    assert numbers == {
        "id": 1,
        "email": 2,
        "role": 3,
        "status": 4,
        "createdAt": 5,
        "emailHash": 6,
        "signature": 7,
    }
    assert UsersExportMessage.DESCRIPTOR.full_name == "userdashboard.UsersExport"


# ---- encode / decode ----


def test_export_of_three_records_decodes_with_valid_signatures(
    signer: IntegritySigner, key_manager: KeyManager
) -> None:
    records = [
        _record(signer, 1, "Alice@Example.com", role="admin"),
        _record(signer, 2, "bob@example.com", status="inactive"),
        _record(signer, 3, "carol@example.com"),
    ]

    export = decode_users(encode_users(records, now=_NOW))

    assert export.total_count == 3
    assert len(export.users) == 3
    assert export.exported_at == "2024-05-01T12:30:00.123Z"
    for user in export.users:
        assert verify_signature(user.email_hash, user.signature, key_manager.public_key)


def test_decoded_records_match_source_records(signer: IntegritySigner) -> None:
    records = [_record(signer, 7, "Alice@Example.com", role="admin")]

    (decoded,) = decode_users(encode_users(records, now=_NOW)).users

    assert decoded == to_exported_user(records[0])
    assert decoded.email == "Alice@Example.com"
    assert decoded.created_at == "2024-04-24T12:30:00.123Z"


def test_message_parses_with_generated_classes(signer: IntegritySigner) -> None:
    data = encode_users([_record(signer, 1, "dave@example.com")], now=_NOW)

    message = UsersExportMessage()
    message.ParseFromString(data)

    assert message.totalCount == 1
    assert message.users[0].emailHash == hash_email("dave@example.com")


def test_empty_export() -> None:
    export = decode_users(encode_users([], now=_NOW))
    assert export.users == []
    assert export.total_count == 0
    assert export.exported_at == "2024-05-01T12:30:00.123Z"


def test_exported_at_defaults_to_now() -> None:
    export = decode_users(encode_users([]))
    assert export.exported_at.endswith("Z")
    stamped = datetime.fromisoformat(export.exported_at.replace("Z", "+00:00"))
    assert abs(datetime.now(UTC) - stamped) < timedelta(minutes=1)


# ---- encoding failures ----


def test_encode_rejects_id_outside_int32(signer: IntegritySigner) -> None:
    record = _record(signer, 2**31, "big@example.com", created_at=_NOW)
    with pytest.raises(EncodingError):
        encode_users([record], now=_NOW)


def test_encode_rejects_unknown_role(signer: IntegritySigner) -> None:
    with pytest.raises(EncodingError, match="unknown role"):
        encode_users([_record(signer, 1, "x@example.com", role="owner")], now=_NOW)


def test_encode_rejects_unknown_status(signer: IntegritySigner) -> None:
    with pytest.raises(EncodingError, match="unknown status"):
        encode_users([_record(signer, 1, "x@example.com", status="banned")], now=_NOW)


# ---- decoding failures ----


def test_decode_rejects_truncated_bytes() -> None:
    # field 1, length 5, but only 3 bytes follow
    with pytest.raises(DecodingError):
        decode_users(b"\x0a\x05abc")


def test_decode_rejects_non_bytes() -> None:
    with pytest.raises(DecodingError, match="Expected bytes"):
        decode_users("not bytes")  # type: ignore[arg-type]


def test_decode_rejects_count_mismatch() -> None:
    message = UsersExportMessage()
    message.users.add(id=1, email="a@example.com", role="user", status="active")
    message.totalCount = 2

    with pytest.raises(DecodingError, match="totalCount=2"):
        decode_users(message.SerializeToString())


# ---- timestamps ----


def test_isoformat_utc_converts_offsets() -> None:
    local = datetime(2024, 5, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
    assert isoformat_utc(local) == "2024-05-01T12:30:00.000Z"


def test_isoformat_utc_treats_naive_as_utc() -> None:
    assert isoformat_utc(datetime(2024, 5, 1, 12, 30)) == "2024-05-01T12:30:00.000Z"

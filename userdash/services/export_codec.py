"""Binary user export in Protocol Buffers format.

Wire schema (field numbers are part of the contract; the dashboard
front-end decodes with the same numbers):

    syntax = "proto3";
    package userdashboard;

    message User {
      int32  id        = 1;
      string email     = 2;
      string role      = 3;   // "admin" | "user"
      string status    = 4;   // "active" | "inactive"
      string createdAt = 5;   // ISO-8601, UTC
      string emailHash = 6;   // SHA-384 hex
      string signature = 7;   // base64
    }

    message UsersExport {
      repeated User users      = 1;
      string        exportedAt = 2;
      int32         totalCount = 3;
    }

The descriptors are assembled with descriptor_pb2 into a private
DescriptorPool at import time, so no protoc step is needed and the
default pool stays untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError, EncodeError

from userdash.core.errors import DecodingError, EncodingError
from userdash.models.export import (
    ExportedUser,
    UsersExport,
    isoformat_utc,
    to_exported_user,
)
from userdash.models.user import ROLES, STATUSES, UserRecord

logger = logging.getLogger(__name__)

PACKAGE = "userdashboard"

_FD = descriptor_pb2.FieldDescriptorProto

_USER_FIELDS: tuple[tuple[str, int], ...] = (
    ("id", _FD.TYPE_INT32),
    ("email", _FD.TYPE_STRING),
    ("role", _FD.TYPE_STRING),
    ("status", _FD.TYPE_STRING),
    ("createdAt", _FD.TYPE_STRING),
    ("emailHash", _FD.TYPE_STRING),
    ("signature", _FD.TYPE_STRING),
)


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(
        name=f"{PACKAGE}/user.proto", package=PACKAGE, syntax="proto3"
    )

    user = fdp.message_type.add(name="User")
    for number, (name, field_type) in enumerate(_USER_FIELDS, start=1):
        user.field.add(
            name=name, number=number, type=field_type, label=_FD.LABEL_OPTIONAL
        )

    export = fdp.message_type.add(name="UsersExport")
    export.field.add(
        name="users",
        number=1,
        type=_FD.TYPE_MESSAGE,
        type_name=f".{PACKAGE}.User",
        label=_FD.LABEL_REPEATED,
    )
    export.field.add(
        name="exportedAt", number=2, type=_FD.TYPE_STRING, label=_FD.LABEL_OPTIONAL
    )
    export.field.add(
        name="totalCount", number=3, type=_FD.TYPE_INT32, label=_FD.LABEL_OPTIONAL
    )
    return fdp


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file_descriptor().SerializeToString())

UserMessage = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.User")
)
UsersExportMessage = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.UsersExport")
)


def schema_info() -> dict[str, list[str]]:
    """Field names of both messages in field-number order."""
    return {
        "user_fields": [f.name for f in UserMessage.DESCRIPTOR.fields],
        "export_fields": [f.name for f in UsersExportMessage.DESCRIPTOR.fields],
    }


def _fill_user(message, user: ExportedUser) -> None:
    if user.role not in ROLES:
        raise EncodingError(f"User {user.id}: unknown role {user.role!r}")
    if user.status not in STATUSES:
        raise EncodingError(f"User {user.id}: unknown status {user.status!r}")
    message.id = user.id
    message.email = user.email
    message.role = user.role
    message.status = user.status
    message.createdAt = user.created_at
    message.emailHash = user.email_hash
    message.signature = user.signature


def encode_users(
    records: Sequence[UserRecord], *, now: datetime | None = None
) -> bytes:
    """Serialize every record into one UsersExport message.

    exportedAt is stamped here and totalCount is len(records).  Either
    the whole export is produced or EncodingError is raised.
    """
    exported_at = isoformat_utc(now or datetime.now(UTC))
    message = UsersExportMessage()
    try:
        for record in records:
            _fill_user(message.users.add(), to_exported_user(record))
        message.exportedAt = exported_at
        message.totalCount = len(records)
        data = message.SerializeToString()
    except EncodingError:
        logger.error("Protobuf encoding rejected a record", exc_info=True)
        raise
    except (TypeError, ValueError, AttributeError, EncodeError) as e:
        logger.error("Failed to encode users to protobuf: %s", e)
        raise EncodingError(f"Protobuf encoding failed: {e}") from e

    logger.info("Encoded %d users to protobuf format", len(records))
    return data


def decode_users(data: bytes) -> UsersExport:
    """Parse a UsersExport message back into the export dataclasses."""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodingError(f"Expected bytes, got {type(data).__name__}")

    message = UsersExportMessage()
    try:
        message.ParseFromString(bytes(data))
    except DecodeError as e:
        logger.warning("Failed to decode protobuf data: %s", e)
        raise DecodingError(f"Protobuf decoding failed: {e}") from e

    users = [
        ExportedUser(
            id=m.id,
            email=m.email,
            role=m.role,
            status=m.status,
            created_at=m.createdAt,
            email_hash=m.emailHash,
            signature=m.signature,
        )
        for m in message.users
    ]
    if message.totalCount != len(users):
        raise DecodingError(
            f"totalCount={message.totalCount} but message holds {len(users)} users"
        )

    logger.debug("Decoded %d users from protobuf format", len(users))
    return UsersExport(
        users=users, exported_at=message.exportedAt, total_count=message.totalCount
    )

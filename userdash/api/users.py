"""User management endpoints.

  GET    /users                 list, newest first
  POST   /users                 create (hash + sign)
  GET    /users/export          protobuf snapshot of every record
  GET    /users/stats/chart     creations per day, last 7 days
  GET    /users/stats/summary   total / active / admin counts
  GET    /users/{id}
  PATCH  /users/{id}            partial update (re-sign on email change)
  DELETE /users/{id}

JSON bodies use camelCase keys (emailHash, createdAt, ...) so the
dashboard front-end reads the same names from JSON and from the
protobuf export.  The static /users/export and /users/stats/* routes
are registered before /users/{user_id} so they are matched first.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from userdash.api.dependencies import get_users_service
from userdash.core.errors import (
    ConflictError,
    EncodingError,
    InvalidInputError,
    NotFoundError,
)
from userdash.core.metrics import EXPORT_SIZE, EXPORTS
from userdash.models.export import isoformat_utc
from userdash.models.user import UserRecord, UserRole, UserStatus, UserUpdate
from userdash.services.export_codec import encode_users
from userdash.services.users_service import UsersService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

Service = Annotated[UsersService, Depends(get_users_service)]


# --- Pydantic schemas ---


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserOut(_CamelModel):
    id: int
    email: str
    role: str
    status: str
    created_at: str
    email_hash: str
    signature: str


class UserCreateIn(_CamelModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    role: UserRole = "user"
    status: UserStatus = "active"


class UserUpdateIn(_CamelModel):
    model_config = ConfigDict(extra="forbid")

    email: str | None = None
    role: UserRole | None = None
    status: UserStatus | None = None


class DailyCountOut(_CamelModel):
    date: str
    count: int


class UserStatsOut(_CamelModel):
    total_users: int
    active_users: int
    admin_users: int


def to_user_out(user: UserRecord) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        role=user.role,
        status=user.status,
        created_at=isoformat_utc(user.created_at),
        email_hash=user.email_hash,
        signature=user.signature,
    )


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _conflict(e: ConflictError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


def _invalid(e: InvalidInputError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(e)
    )


# --- Collection endpoints ---


@router.get("", response_model=list[UserOut])
async def list_users(service: Service) -> list[UserOut]:
    users = await service.list_users()
    return [to_user_out(u) for u in users]


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreateIn, service: Service) -> UserOut:
    try:
        user = await service.create(
            payload.email, role=payload.role, status=payload.status
        )
    except ConflictError as e:
        raise _conflict(e) from None
    except InvalidInputError as e:
        raise _invalid(e) from None
    return to_user_out(user)


@router.get(
    "/export",
    response_class=Response,
    responses={200: {"content": {"application/octet-stream": {}}}},
)
async def export_users(service: Service) -> Response:
    users = await service.list_users()
    exported_at = datetime.now(UTC)
    try:
        data = encode_users(users, now=exported_at)
    except EncodingError:
        EXPORTS.labels(result="error").inc()
        logger.exception("Failed to export %d users", len(users))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Export failed",
        ) from None

    EXPORTS.labels(result="ok").inc()
    EXPORT_SIZE.observe(len(users))
    logger.info(
        "Exported %d users in protobuf format",
        len(users),
        extra={"record_count": len(users)},
    )
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": 'attachment; filename="users_export.pb"',
            "X-Total-Count": str(len(users)),
            "X-Export-Date": isoformat_utc(exported_at),
        },
    )


@router.get("/stats/chart", response_model=list[DailyCountOut])
async def users_created_per_day(service: Service) -> list[DailyCountOut]:
    rows = await service.users_created_per_day()
    return [DailyCountOut(date=r.date, count=r.count) for r in rows]


@router.get("/stats/summary", response_model=UserStatsOut)
async def user_stats(service: Service) -> UserStatsOut:
    stats = await service.summary()
    return UserStatsOut(
        total_users=stats.total_users,
        active_users=stats.active_users,
        admin_users=stats.admin_users,
    )


# --- Item endpoints ---


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: int, service: Service) -> UserOut:
    try:
        user = await service.get(user_id)
    except NotFoundError as e:
        raise _not_found(e) from None
    return to_user_out(user)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: int, payload: UserUpdateIn, service: Service
) -> UserOut:
    changes = UserUpdate(
        email=payload.email, role=payload.role, status=payload.status
    )
    try:
        user = await service.update(user_id, changes)
    except NotFoundError as e:
        raise _not_found(e) from None
    except ConflictError as e:
        raise _conflict(e) from None
    except InvalidInputError as e:
        raise _invalid(e) from None
    return to_user_out(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: int, service: Service) -> Response:
    try:
        await service.delete(user_id)
    except NotFoundError as e:
        raise _not_found(e) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)

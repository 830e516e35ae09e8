"""Operational endpoints for probes and scrapers.

  /health  liveness + per-dependency status.  Always 200; the "status"
           field says "ok" or "degraded".
  /ready   503 until the signing keypair is loaded, so a load balancer
           never routes a write to an instance that cannot sign it.
  /metrics Prometheus text exposition, scraped rather than read.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from userdash.db.engine import engine
from userdash.db.redis import redis_pool
from userdash.services.key_manager import KeyManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _keys_ready(request: Request) -> bool:
    key_manager: KeyManager | None = getattr(request.app.state, "key_manager", None)
    return key_manager is not None and key_manager.is_ready


@router.get("/health")
async def health(request: Request) -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if _keys_ready(request):
        checks["keys"] = "ok"
    else:
        checks["keys"] = "missing"
        overall = "degraded"

    if engine is not None:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except (SQLAlchemyError, OSError):
            logger.warning("Database health check failed", exc_info=True)
            checks["database"] = "degraded"
            overall = "degraded"
    else:
        checks["database"] = "in_memory"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except (RedisError, OSError):
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready(request: Request) -> Response:
    if not _keys_ready(request):
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

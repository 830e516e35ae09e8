from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from userdash.api.crypto import router as crypto_router
from userdash.api.health import router as health_router
from userdash.api.users import router as users_router
from userdash.core.config import SETTINGS
from userdash.core.logging import setup_logging
from userdash.db.engine import lifespan_db
from userdash.db.redis import lifespan_redis
from userdash.middleware.metrics import MetricsMiddleware
from userdash.middleware.request_context import RequestContextMiddleware
from userdash.services.key_manager import KeyManager

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # The keypair must be in memory before the first request is served.
    # ensure_keys() blocks and raises KeyInitializationError on failure,
    # which aborts startup.  Tests install their own manager beforehand.
    key_manager: KeyManager | None = getattr(app.state, "key_manager", None)
    if key_manager is None:
        key_manager = KeyManager(SETTINGS.keys_dir)
        app.state.key_manager = key_manager
    key_manager.ensure_keys()
    logger.info("Signing keys ready (dir=%s)", key_manager.keys_dir)

    # LIFO teardown: Redis closes before the database engine.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="userdash",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=["X-Total-Count", "X-Export-Date", "X-Request-ID"],
)

# Last-added runs first: RequestContext → Metrics → CORS → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(health_router)
app.include_router(crypto_router)
app.include_router(users_router)

logger.info(
    "userdash configured  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)

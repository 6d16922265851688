"""FastAPI application wiring for the IAM service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import AsyncConnectionPool

from .api.errors import register_exception_handlers
from .api.routes import router as auth_router
from .config import Settings, get_settings
from .domain.service import AuthService
from .notifications.mailer import SmtpMailer
from .notifications.messages import AccountNotifier
from .repository import AccountRepository
from .security.passwords import PasswordHasher
from .security.token_registry import TokenRegistry
from .security.tokens import TokenCodec

logger = logging.getLogger(__name__)

settings = get_settings()


def build_auth_service(
    settings: Settings, pool: AsyncConnectionPool, redis_client: aioredis.Redis
) -> AuthService:
    """Assemble the service from the shared pool and Redis client."""
    mailer = SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        from_email=settings.smtp_from,
        use_tls=settings.smtp_use_tls,
    )
    return AuthService(
        repository=AccountRepository(pool),
        registry=TokenRegistry(redis_client),
        codec=TokenCodec(
            secret=settings.jwt_secret,
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        ),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        notifier=AccountNotifier(mailer, frontend_url=settings.frontend_url),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, Redis, services) for the app lifecycle."""
    pool = AsyncConnectionPool(settings.database_url, open=False)
    await pool.open()
    redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    app.state.settings = settings
    app.state.pool = pool
    app.state.redis = redis_client
    app.state.auth_service = build_auth_service(settings, pool, redis_client)
    logger.info("%s %s started", settings.app_name, settings.version)
    try:
        yield
    finally:
        await redis_client.aclose()
        await pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
register_exception_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    """Expose Prometheus metrics for scrapes."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(auth_router)

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from survey_lifecycle.api.v1.router import api_router
from survey_lifecycle.config import APP_VERSION, _DEFAULT_SECRET_KEYS, settings
from survey_lifecycle.core.logging_config import configure_logging
from survey_lifecycle.core.metrics import app_info
from survey_lifecycle.database import engine
from survey_lifecycle.middleware.prometheus import PrometheusMiddleware
from survey_lifecycle.models import Base

logger = logging.getLogger(__name__)


def _run_alembic_stamp(alembic_cfg, revision):
    from alembic import command

    command.stamp(alembic_cfg, revision)


def _run_alembic_upgrade(alembic_cfg, revision):
    from alembic import command

    command.upgrade(alembic_cfg, revision)


def check_secret_key(secret_key: str, environment: str) -> None:
    """Refuse to start outside development with a well-known secret key."""
    if secret_key not in _DEFAULT_SECRET_KEYS:
        return
    if environment != "development":
        raise RuntimeError(
            "SECRET_KEY must be set to a strong random value in production. "
            'Generate one with: python -c "import secrets; print(secrets.token_urlsafe(64))"'
        )
    logger.warning("Using default SECRET_KEY; acceptable for development only.")


async def _prepare_schema() -> None:
    from alembic.config import Config
    from sqlalchemy import inspect as sa_inspect
    from sqlalchemy import text

    alembic_cfg = Config("alembic.ini")

    if settings.RESET_DB:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        await asyncio.to_thread(_run_alembic_stamp, alembic_cfg, "head")
        return

    async with engine.connect() as conn:
        has_alembic = await conn.run_sync(
            lambda sync_conn: sa_inspect(sync_conn).has_table("alembic_version")
        )
        alembic_version = None
        if has_alembic:
            row = await conn.execute(text("SELECT version_num FROM alembic_version LIMIT 1"))
            first = row.first()
            alembic_version = first[0] if first else None

    if not has_alembic or alembic_version is None:
        # Fresh database: build from the models, then mark as current.
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await asyncio.to_thread(_run_alembic_stamp, alembic_cfg, "head")
    else:
        try:
            await asyncio.to_thread(_run_alembic_upgrade, alembic_cfg, "head")
        except Exception:
            logger.exception("Alembic migration failed")
            raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.ENVIRONMENT, settings.LOG_LEVEL)
    check_secret_key(settings.SECRET_KEY, settings.ENVIRONMENT)
    await _prepare_schema()
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url=None,
    openapi_url="/api/openapi.json" if settings.ENVIRONMENT == "development" else None,
)

app.add_middleware(PrometheusMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(api_router, prefix=settings.API_V1_PREFIX)

app_info.info({"version": APP_VERSION, "environment": settings.ENVIRONMENT})


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

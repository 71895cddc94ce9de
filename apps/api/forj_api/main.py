"""FORJ API - Main FastAPI application."""

import logging
import os
import sys
from contextlib import asynccontextmanager

import redis
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from forj_api.core import get_core
from forj_api.db.session import get_session_factory
from forj_api.errors import ForjError
from forj_api.middleware.auth import AuthMiddleware
from forj_api.middleware.correlation import CorrelationIdFilter, CorrelationIDMiddleware
from forj_api.routes import admin, audit, certificates, forges, keys, licenses, stats
from forj_api.settings import get_settings

# Configure logging
log_handler = logging.StreamHandler(sys.stdout)
log_handler.addFilter(CorrelationIdFilter())
logging.basicConfig(
    level=get_settings().log_level,
    format=(
        '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", '
        '"module": "%(name)s", "correlation_id": "%(correlation_id)s"}'
    ),
    handlers=[log_handler],
)
logger = logging.getLogger(__name__)

ALEMBIC_INI = os.path.join(os.path.dirname(__file__), "..", "alembic.ini")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting FORJ API...")
    try:
        settings.validate_production_settings()
        signer = get_core().signer
        logger.info(f"Signer initialized: {signer.get_key_id()}")
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ValueError(f"Invalid configuration: {e}") from e

    yield
    logger.info("Shutting down FORJ API...")


app = FastAPI(
    title="FORJ API",
    description="Certification pipeline, tamper-evident audit chain, certificates and licenses",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Last added runs first: correlation id is set before authentication logs it.
app.add_middleware(AuthMiddleware)
app.add_middleware(CorrelationIDMiddleware)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

app.include_router(admin.router)
app.include_router(forges.router)
app.include_router(audit.router)
app.include_router(certificates.router)
app.include_router(licenses.router)
app.include_router(keys.router)
app.include_router(stats.router)


@app.exception_handler(ForjError)
async def forj_error_handler(request: Request, exc: ForjError):
    """Map domain errors to their HTTP status and stable code."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health_check():
    """Health check endpoint (basic liveness)."""
    return {
        "status": "healthy",
        "service": "forj-api",
        "version": "0.1.0",
    }


@app.get("/ready")
def readiness_check():
    """Readiness check endpoint (verifies dependencies)."""
    checks = {
        "database": False,
        "migrations": False,
        "redis": False,
        "signer": False,
    }

    db = get_session_factory()()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True

        current_rev = MigrationContext.configure(db.connection()).get_current_revision()
        head_rev = ScriptDirectory.from_config(Config(ALEMBIC_INI)).get_current_head()
        checks["migrations"] = current_rev == head_rev
        if not checks["migrations"]:
            logger.warning(f"Migrations not at head: current={current_rev}, head={head_rev}")
    except SQLAlchemyError as e:
        logger.error(f"Database check failed: {e}")
    finally:
        db.close()

    try:
        redis.from_url(settings.redis_url, decode_responses=True).ping()
        checks["redis"] = True
    except redis.RedisError as e:
        logger.error(f"Redis check failed: {e}")

    try:
        get_core().signer.get_key_id()
        checks["signer"] = True
    except ValueError as e:
        logger.error(f"Signer check failed: {e}")

    all_ready = all(checks.values())
    return JSONResponse(
        content={
            "status": "ready" if all_ready else "not_ready",
            "checks": checks,
        },
        status_code=200 if all_ready else 503,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "FORJ API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }

"""FastAPI entry point for the remote project store.

Serves the sync endpoint used by the local-first client, the identity
check, and liveness/readiness probes. Run with
``uvicorn gdd_manager.main:app``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from gdd_manager.api.routes import auth, projects
from gdd_manager.config import settings
from gdd_manager.db.database import dispose_engine, engine
from gdd_manager.middleware.request_id import RequestIDLogFilter, RequestIDMiddleware

logger = logging.getLogger(__name__)

_TEXT_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(request_id)s]: %(message)s"
_JSON_LOG_FORMAT = (
    '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s",'
    '"request_id":"%(request_id)s","message":"%(message)s"}'
)


def configure_logging() -> None:
    """Plain text logs in dev mode, one JSON object per line otherwise."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=_TEXT_LOG_FORMAT if settings.dev_mode else _JSON_LOG_FORMAT,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(RequestIDLogFilter())


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Project sync API starting")
    yield
    await dispose_engine()
    logger.info("Project sync API stopped")


app = FastAPI(
    title="GDD Manager Sync API",
    description="Remote project store for the offline-first GDD manager",
    version="0.1.0",
    docs_url="/docs" if settings.dev_mode else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class NoStoreHeadersMiddleware(BaseHTTPMiddleware):
    """Sync responses carry user data: never cache them, never frame them."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if not settings.dev_mode:
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response


app.add_middleware(NoStoreHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": str(exc) if settings.dev_mode else "internal_error"},
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

app.include_router(projects.router, prefix="/api/projects", tags=["projects"])
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])


@app.get("/health")
async def health() -> dict:
    return {"status": "healthy"}


@app.get("/health/ready")
async def ready() -> JSONResponse:
    """503 until the project database answers."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("Readiness probe: database unavailable", exc_info=True)
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "unavailable"})
    return JSONResponse(status_code=200, content={"status": "ready", "database": "ok"})

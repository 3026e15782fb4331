"""FastAPI server for SubZero"""

from __future__ import annotations

import os
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subzero.api.routes.analytics import router as analytics_router
from subzero.api.routes.cron import router as cron_router
from subzero.api.routes.gmail import router as gmail_router
from subzero.api.routes.health import router as health_router
from subzero.api.routes.notifications import router as notifications_router
from subzero.api.routes.settings import router as settings_router
from subzero.api.routes.subscriptions import router as subscriptions_router
from subzero.config import APP_BASE_URL, APP_VERSION
from subzero.errors import PersistenceError
from subzero.infrastructure.database import init_database
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter, log_event
from subzero.utils.error_sanitizer import sanitize_error_message

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    try:
        logger.info("Initializing database schema...")
        init_database()
    except (OSError, sqlite3.Error) as e:
        logger.critical("Database initialization failed: %s", e)
        raise RuntimeError(f"Database initialization failed: {e}") from e

    log_event("api.startup", service="subzero", version=APP_VERSION)
    yield


app = FastAPI(title="SubZero API", version=APP_VERSION, lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report which fields are invalid without echoing the submitted values."""
    logger.warning("Validation error on %s: %d errors", request.url.path, len(exc.errors()))
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


@app.exception_handler(PersistenceError)
async def persistence_exception_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Store failure on %s: %s", request.url.path, exc)
    counter("api.persistence_errors")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": sanitize_error_message(str(exc), 500)},
    )


ALLOWED_ORIGINS = [APP_BASE_URL]

if os.getenv("SUBZERO_ENV", "development") == "development":
    ALLOWED_ORIGINS.extend(
        [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:8000",
        ]
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(set(ALLOWED_ORIGINS)),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(health_router)
app.include_router(gmail_router)
app.include_router(subscriptions_router)
app.include_router(analytics_router)
app.include_router(settings_router)
app.include_router(notifications_router)
app.include_router(cron_router)


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "SubZero API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "gmail": "/api/gmail",
            "subscriptions": "/api/subscriptions",
            "analytics": "/api/analytics",
            "settings": "/api/settings/notifications",
            "notifications": "/api/notifications",
        },
    }


def main() -> None:
    import uvicorn

    from subzero.config import API_HOST, API_PORT

    uvicorn.run("subzero.api.app:app", host=API_HOST, port=API_PORT)

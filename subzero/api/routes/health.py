"""Health check endpoint.

Liveness plus configuration readiness; never calls external services.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from subzero.config import APP_VERSION
from subzero.observability.telemetry import get_counters, get_latency_stats

router = APIRouter(tags=["health"])

LATENCY_METRICS = ("sync.total", "gmail.scan")


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Service status, version, and whether each integration has its settings."""
    has_api_key = bool(os.getenv("GOOGLE_API_KEY"))
    has_project = bool(os.getenv("GOOGLE_CLOUD_PROJECT"))
    oauth_ready = all(
        os.getenv(name)
        for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI")
    )

    return {
        "status": "healthy",
        "service": "SubZero API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "ready": has_api_key or has_project,
            "google_api_key": has_api_key,
            "google_cloud_project": has_project,
        },
        "gmail_oauth": {"ready": oauth_ready},
        "vault": {"ready": bool(os.getenv("SUBZERO_ENCRYPTION_KEY"))},
        "counters": get_counters(),
        "latency_ms": {name: get_latency_stats(name) for name in LATENCY_METRICS},
    }

"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.dependencies import AppSettings

router = APIRouter(tags=["system"])
logger = logging.getLogger("healthsync.health")


@router.get("/health")
async def health_check(request: Request, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports the collection scheduler's state; a scheduler that is not
    running marks the service as degraded.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    state = scheduler.state.value if scheduler is not None else "unavailable"
    running = scheduler is not None and scheduler.running
    if not running:
        logger.debug("Health check: scheduler %s", state)

    return {
        "status": "healthy" if running else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "scheduler": state,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

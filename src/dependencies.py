"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.collector.scheduler import CollectionScheduler
from src.config import Settings, get_settings


async def get_scheduler(request: Request) -> CollectionScheduler:
    """Return the scheduler built by the app lifespan.

    ``create_app()`` stores it on ``app.state.scheduler``.
    """
    scheduler: CollectionScheduler | None = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Collection scheduler not initialised")
    return scheduler


# Annotated shortcuts for route signatures
Scheduler = Annotated[CollectionScheduler, Depends(get_scheduler)]
AppSettings = Annotated[Settings, Depends(get_settings)]

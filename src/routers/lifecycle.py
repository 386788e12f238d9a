"""Host lifecycle signals and scheduler control endpoints.

The host (a launcher script, a session-lock watcher, a mobile bridge) reports
lifecycle transitions here; each one is applied to the scheduler on the event
loop thread.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from src.collector.scheduler import SchedulerEvent
from src.dependencies import Scheduler
from src.models.base import ErrorDetail
from src.models.scheduler import LifecycleAck, SchedulerStatus

router = APIRouter(
    tags=["collector"],
    responses={503: {"model": ErrorDetail, "description": "Scheduler not initialised"}},
)
logger = logging.getLogger("healthsync.lifecycle")

# Events the host may report; start/stop have their own endpoints.
_LIFECYCLE_EVENTS = {
    SchedulerEvent.ENTERED_BACKGROUND.value: SchedulerEvent.ENTERED_BACKGROUND,
    SchedulerEvent.DEVICE_LOCKED.value: SchedulerEvent.DEVICE_LOCKED,
    SchedulerEvent.DEVICE_UNLOCKED.value: SchedulerEvent.DEVICE_UNLOCKED,
}


@router.post(
    "/lifecycle/{event}",
    response_model=LifecycleAck,
    responses={400: {"model": ErrorDetail, "description": "Unknown lifecycle event"}},
)
async def report_lifecycle_event(event: str, scheduler: Scheduler) -> LifecycleAck:
    """Apply a host lifecycle event (entered_background, device_locked, device_unlocked)."""
    scheduler_event = _LIFECYCLE_EVENTS.get(event)
    if scheduler_event is None:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown lifecycle event {event!r}. Expected one of: {sorted(_LIFECYCLE_EVENTS)}",
        )
    logger.info("Lifecycle event from host: %s", event)
    scheduler.dispatch(scheduler_event)
    return LifecycleAck(event=event, scheduler=SchedulerStatus.from_scheduler(scheduler))


@router.post("/scheduler/start", response_model=SchedulerStatus)
async def start_scheduler(scheduler: Scheduler) -> SchedulerStatus:
    scheduler.start()
    return SchedulerStatus.from_scheduler(scheduler)


@router.post("/scheduler/stop", response_model=SchedulerStatus)
async def stop_scheduler(scheduler: Scheduler) -> SchedulerStatus:
    scheduler.stop()
    return SchedulerStatus.from_scheduler(scheduler)


@router.get("/scheduler/status", response_model=SchedulerStatus)
async def scheduler_status(scheduler: Scheduler) -> SchedulerStatus:
    return SchedulerStatus.from_scheduler(scheduler)

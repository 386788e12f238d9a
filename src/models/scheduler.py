"""Pydantic response models for the scheduler control endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from src.models.base import HealthSyncBase

if TYPE_CHECKING:
    from src.collector.cycle import CycleResult
    from src.collector.scheduler import CollectionScheduler


class CycleSummary(HealthSyncBase):
    status: str
    error: str | None = None
    metrics_present: int = 0
    started_at: datetime
    finished_at: datetime | None = None

    @classmethod
    def from_result(cls, result: CycleResult) -> CycleSummary:
        present = len(result.record.measurements.present()) if result.record else 0
        return cls(
            status=result.status.value,
            error=result.error,
            metrics_present=present,
            started_at=result.started_at,
            finished_at=result.finished_at,
        )


class SchedulerStatus(HealthSyncBase):
    state: str
    running: bool
    device_locked: bool
    pending_trigger: bool
    collecting: bool
    cycles_completed: int
    last_cycle: CycleSummary | None = None

    @classmethod
    def from_scheduler(cls, scheduler: CollectionScheduler) -> SchedulerStatus:
        last = scheduler.last_result
        return cls(
            state=scheduler.state.value,
            running=scheduler.running,
            device_locked=scheduler.device_locked,
            pending_trigger=scheduler.has_pending_trigger,
            collecting=scheduler.collecting,
            cycles_completed=scheduler.cycles_completed,
            last_cycle=CycleSummary.from_result(last) if last else None,
        )


class LifecycleAck(HealthSyncBase):
    event: str
    scheduler: SchedulerStatus

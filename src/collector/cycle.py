"""One collection cycle: lease → session → fetch → normalize → transmit → release.

A cycle never raises for the failures its policy recovers from:

- no execution window   → status ``no_window``
- no active session     → status ``no_session``
- a metric fetch fails  → that metric is absent, the cycle continues
- transmission fails    → status ``transmit_failed``, the record is dropped
- the lease expires     → status ``expired``, the cycle is aborted

In every case the lease, if one was acquired, is released exactly once
before ``run()`` returns.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable

from src.collector.base import (
    CanonicalRecord,
    MeasurementSource,
    Sample,
    SessionProvider,
    SourceKind,
    TransmissionError,
    Transmitter,
    UserProfile,
    utc_now,
)
from src.collector.lease import ExecutionLease, ExecutionWindowUnavailable, LeaseProvider
from src.collector.normalizer import METRICS, build_record

logger = logging.getLogger("healthsync.collector.cycle")


class CycleStatus(str, Enum):
    SENT = "sent"
    TRANSMIT_FAILED = "transmit_failed"
    NO_SESSION = "no_session"
    NO_WINDOW = "no_window"
    EXPIRED = "expired"


@dataclass
class CycleResult:
    """Outcome of a single collection cycle.

    Attributes:
        status:      How the cycle ended.
        record:      The record built this cycle, if it got that far.
        error:       Human-readable cause for non-``sent`` outcomes.
        started_at:  UTC timestamp when the cycle began.
        finished_at: UTC timestamp when the cycle ended.
    """

    status: CycleStatus = CycleStatus.SENT
    record: CanonicalRecord | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None


async def fetch_all(
    source: MeasurementSource,
    metrics: dict[str, str],
) -> list[Sample]:
    """Fetch the latest sample of every metric concurrently.

    Args:
        source:  Measurement source to query.
        metrics: Canonical metric name → device group it is collected from.

    Returns:
        The samples that were found.  Metrics that failed or had no sample
        are simply missing from the list.
    """

    async def _one(name: str, group: str) -> Sample | None:
        identifier = METRICS[name].identifier
        try:
            sample = await source.fetch_latest(identifier)
        except Exception as exc:
            logger.warning("%s fetch failed for %s (%s): %s", group, name, identifier, exc)
            return None
        if sample is None:
            logger.info("%s: no sample for %s", group, name)
            return None
        logger.debug("%s sample: %s = %s %s", group, name, sample.value, sample.unit)
        return sample

    names = list(metrics)
    results = await asyncio.gather(*(_one(n, metrics[n]) for n in names))
    samples = [s for s in results if s is not None]
    logger.info("Fetched %d of %d metrics from %s", len(samples), len(names), source.DISPLAY_NAME)
    return samples


class CollectionCycle:
    """Runs one fetch → normalize → transmit pass.

    A cycle is single-use: construct it, ``await run()`` once.
    """

    def __init__(
        self,
        source: MeasurementSource,
        transmitter: Transmitter,
        sessions: SessionProvider,
        leases: LeaseProvider,
        metrics: dict[str, str],
        source_kind: SourceKind = SourceKind.APPLE,
    ) -> None:
        self._source = source
        self._transmitter = transmitter
        self._sessions = sessions
        self._leases = leases
        self._metrics = metrics
        self._source_kind = source_kind
        self._lease: ExecutionLease | None = None
        self._task: asyncio.Task | None = None
        self._expired = False

    @property
    def expired(self) -> bool:
        return self._expired

    def release_lease(self) -> bool:
        """Release the held lease, if any.  Safe to call repeatedly."""
        if self._lease is None:
            return False
        return self._lease.release()

    def _on_lease_expired(self) -> None:
        self._expired = True
        self.release_lease()
        # Called synchronously from inside acquire(): run() checks the flag instead.
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    async def run(self) -> CycleResult:
        self._task = asyncio.current_task()
        result = CycleResult()
        logger.info("Collection cycle started")

        try:
            try:
                self._lease = self._leases.acquire(self._on_lease_expired)
            except ExecutionWindowUnavailable as exc:
                logger.warning("Execution window unavailable: %s", exc)
                result.status = CycleStatus.NO_WINDOW
                result.error = str(exc)
                return result

            if self._expired:
                self._abandon(result)
                return result

            session = await self._sessions.current_session()
            if session is None:
                logger.info("No active session; skipping collection")
                result.status = CycleStatus.NO_SESSION
                return result

            samples = await fetch_all(self._source, self._metrics)
            profile = await self._fetch_profile()
            record = build_record(
                samples,
                identity=session.identity,
                source_kind=self._source_kind,
                profile=profile,
            )
            result.record = record

            started = time.monotonic()
            try:
                await self._transmitter.send(record, session.context_id)
            except TransmissionError as exc:
                logger.warning("Transmission failed, record dropped: %s", exc.cause)
                result.status = CycleStatus.TRANSMIT_FAILED
                result.error = exc.cause
            else:
                logger.info(
                    "Record sent for context %d in %.2fs (%d metrics)",
                    session.context_id,
                    time.monotonic() - started,
                    len(record.measurements.present()),
                )
                result.status = CycleStatus.SENT

        except asyncio.CancelledError:
            if not self._expired:
                raise
            self._abandon(result)
        finally:
            self.release_lease()
            result.finished_at = utc_now()

        return result

    def _abandon(self, result: CycleResult) -> None:
        logger.warning("Execution window expired; collection cycle aborted")
        result.status = CycleStatus.EXPIRED
        result.error = "execution window expired"

    async def _fetch_profile(self) -> UserProfile:
        try:
            return await self._source.fetch_profile()
        except Exception as exc:
            logger.warning("Profile fetch failed: %s", exc)
            return UserProfile()


def group_metrics(groups: dict[str, Iterable[str]]) -> dict[str, str]:
    """Flatten ``{group: [metric, ...]}`` into ``{metric: group}``."""
    return {metric: group for group, names in groups.items() for metric in names}

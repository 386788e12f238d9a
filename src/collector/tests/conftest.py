"""Shared fixtures and fake collaborators for collector tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

import pytest

from src.collector.base import (
    MeasurementFetchError,
    MeasurementSource,
    Sample,
    Session,
    SessionProvider,
    TransmissionError,
    Transmitter,
    UserProfile,
)
from src.collector.config_loader import CollectionConfig, load_collection_config
from src.collector.cycle import CollectionCycle
from src.collector.lease import ExecutionLease, ExecutionWindowUnavailable, LeaseProvider
from src.collector.normalizer import METRICS
from src.collector.scheduler import CollectionScheduler

TEST_EMAIL = "ada@example.com"
TEST_CONTEXT_ID = 42
TEST_TIME = datetime(2026, 2, 23, 8, 0, tzinfo=timezone.utc)


def make_sample(name: str, value: float, unit: str | None = None, end: datetime = TEST_TIME) -> Sample:
    """Build a sample for a canonical metric, under its source identifier."""
    spec = METRICS[name]
    return Sample(
        metric=spec.identifier,
        value=value,
        unit=spec.target_unit if unit is None else unit,
        start=end,
        end=end,
    )


async def settle(rounds: int = 10) -> None:
    """Let pending tasks and callbacks on the loop run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Manual timer
# ---------------------------------------------------------------------------


@dataclass
class TimerHandle:
    when: float
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimer:
    """Deterministic stand-in for ``loop.call_later``.

    Time only moves when ``advance()`` is called; due callbacks run in order.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: list[TimerHandle] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(when=self.now + delay, callback=callback)
        self.handles.append(handle)
        return handle

    def pending(self) -> list[TimerHandle]:
        """Handles that are armed and have not fired or been cancelled."""
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self.pending() if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.now = handle.when
            handle.fired = True
            handle.callback()
        self.now = target


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeSource(MeasurementSource):
    """Returns canned samples keyed by source identifier.

    A value that is an Exception instance is raised from ``fetch_latest``.
    """

    SOURCE_ID = "fake"
    DISPLAY_NAME = "Fake Source"

    def __init__(self, samples: Iterable[Sample] = (), profile: UserProfile | None = None) -> None:
        self.responses: dict[str, Sample | Exception] = {s.metric: s for s in samples}
        self.profile = profile or UserProfile()
        self.fetched: list[str] = []
        self.authorized: list[str] | None = None

    def fail(self, name: str, cause: str = "boom") -> None:
        identifier = METRICS[name].identifier
        self.responses[identifier] = MeasurementFetchError(identifier, cause)

    async def authorize(self, scopes: Iterable[str]) -> None:
        self.authorized = list(scopes)

    async def fetch_latest(self, metric: str) -> Sample | None:
        self.fetched.append(metric)
        response = self.responses.get(metric)
        if isinstance(response, Exception):
            raise response
        return response

    async def fetch_profile(self) -> UserProfile:
        return self.profile


class FakeTransmitter(Transmitter):
    """Records sent records.  ``gate`` holds ``send`` open until it is set."""

    def __init__(self) -> None:
        self.sent: list[tuple] = []
        self.error: str | None = None
        self.gate: asyncio.Event | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, record, context_id: int) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.error is not None:
                raise TransmissionError(self.error)
            self.sent.append((record, context_id))
        finally:
            self.in_flight -= 1


class FakeSessionProvider(SessionProvider):
    def __init__(self, session: Session | None = None) -> None:
        self.session = session

    async def current_session(self) -> Session | None:
        return self.session


class FakeLeaseProvider(LeaseProvider):
    """Hands out leases synchronously and counts releases.

    Attributes:
        refuse:            Raise ExecutionWindowUnavailable on acquire.
        expire_on_acquire: Invoke the expiry callback before acquire returns.
    """

    def __init__(self) -> None:
        self.refuse = False
        self.expire_on_acquire = False
        self.leases: list[ExecutionLease] = []
        self.release_calls = 0
        self._on_expired: Callable[[], None] | None = None

    @property
    def held(self) -> int:
        return sum(1 for lease in self.leases if not lease.released)

    def acquire(self, on_expired: Callable[[], None]) -> ExecutionLease:
        if self.refuse:
            raise ExecutionWindowUnavailable("host refused")
        lease = ExecutionLease(len(self.leases) + 1, self._count_release)
        self.leases.append(lease)
        self._on_expired = on_expired
        if self.expire_on_acquire:
            on_expired()
        return lease

    def expire(self) -> None:
        assert self._on_expired is not None
        self._on_expired()

    def _count_release(self, lease: ExecutionLease) -> None:
        self.release_calls += 1


@dataclass
class Harness:
    """Everything a scheduler or cycle test needs, wired together."""

    source: FakeSource
    transmitter: FakeTransmitter
    sessions: FakeSessionProvider
    leases: FakeLeaseProvider
    timer: ManualTimer
    metrics: dict[str, str]
    cycles: list[CollectionCycle] = field(default_factory=list)

    def make_cycle(self) -> CollectionCycle:
        cycle = CollectionCycle(
            source=self.source,
            transmitter=self.transmitter,
            sessions=self.sessions,
            leases=self.leases,
            metrics=self.metrics,
        )
        self.cycles.append(cycle)
        return cycle

    def make_scheduler(self, initial_delay: float = 60.0, interval: float = 60.0) -> CollectionScheduler:
        return CollectionScheduler(
            cycle_factory=self.make_cycle,
            initial_delay=initial_delay,
            interval=interval,
            timer=self.timer,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def collection_config() -> CollectionConfig:
    """Load the real collection config for tests."""
    return load_collection_config()


@pytest.fixture
def harness(collection_config: CollectionConfig) -> Harness:
    return Harness(
        source=FakeSource([make_sample("step_count", 120), make_sample("heart_rate", 72)]),
        transmitter=FakeTransmitter(),
        sessions=FakeSessionProvider(Session(identity=TEST_EMAIL, context_id=TEST_CONTEXT_ID)),
        leases=FakeLeaseProvider(),
        timer=ManualTimer(),
        metrics=collection_config.metric_sources(),
    )

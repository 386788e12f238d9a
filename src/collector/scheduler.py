"""Background collection scheduler.

Keeps one collection cycle running after another, forever, for as long as it
is started and the device is unlocked:

1. ``start()`` arms a trigger ``initial_delay`` seconds out
2. The trigger fires and launches one CollectionCycle as an asyncio task
3. When that task completes, the next trigger is armed ``interval`` seconds
   from completion (not from the previous trigger), so a slow cycle delays
   the next one instead of overlapping it
4. ``on_device_locked()`` cancels the pending trigger; an in-flight cycle is
   left to finish but does not re-arm.  ``on_device_unlocked()`` re-arms.
5. ``stop()`` cancels the pending trigger, releases any held lease, and
   suppresses the re-arm of an in-flight cycle

All state changes go through ``dispatch()`` on the event loop thread.  Host
callbacks arriving on other threads use ``post()``, which hops onto the loop
with ``call_soon_threadsafe``.

Usage::

    scheduler = CollectionScheduler(
        cycle_factory=lambda: CollectionCycle(source, transmitter, sessions, leases, metrics),
    )
    scheduler.start()
    ...
    scheduler.on_device_locked()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from src.collector.cycle import CollectionCycle, CycleResult

logger = logging.getLogger("healthsync.collector.scheduler")

DEFAULT_DELAY_SECONDS = 60.0


class Cancellable(Protocol):
    def cancel(self) -> None: ...


#: ``timer(delay, callback)`` → handle.  Defaults to ``loop.call_later``.
Timer = Callable[[float, Callable[[], None]], Cancellable]


class SchedulerEvent(str, Enum):
    """Lifecycle events accepted by ``dispatch()``."""

    START = "start"
    STOP = "stop"
    DEVICE_LOCKED = "device_locked"
    DEVICE_UNLOCKED = "device_unlocked"
    ENTERED_BACKGROUND = "entered_background"


class SchedulerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    COLLECTING = "collecting"
    LOCKED = "locked"
    STOPPED = "stopped"


class _Trigger:
    """An armed trigger.  Identity distinguishes it from stale timer callbacks."""

    __slots__ = ("delay", "handle")

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.handle: Cancellable | None = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()


@dataclass
class ScheduleState:
    """Mutable scheduling flags, owned by one CollectionScheduler.

    Invariant: ``pending`` is set only while ``running and not device_locked``.
    """

    running: bool = False
    device_locked: bool = False
    pending: _Trigger | None = None


class CollectionScheduler:
    """Single-flight, lock-aware recurring collection scheduler.

    Args:
        cycle_factory: Builds a fresh CollectionCycle for every trigger.
        initial_delay: Seconds from ``start()`` (or unlock) to the first trigger.
        interval:      Seconds from a cycle's completion to the next trigger.
        timer:         ``timer(delay, callback)`` returning a cancellable handle.
                       Defaults to the running loop's ``call_later``.
        loop:          Event loop the scheduler lives on.  Defaults to the loop
                       running when the first event is dispatched.
    """

    def __init__(
        self,
        cycle_factory: Callable[[], CollectionCycle],
        initial_delay: float = DEFAULT_DELAY_SECONDS,
        interval: float = DEFAULT_DELAY_SECONDS,
        timer: Timer | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._cycle_factory = cycle_factory
        self._initial_delay = initial_delay
        self._interval = interval
        self._timer = timer
        self._loop = loop
        self._state = ScheduleState()
        self._started_once = False
        self._cycle: CollectionCycle | None = None
        self._cycle_task: asyncio.Task | None = None
        self.cycles_completed = 0
        self.last_result: CycleResult | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def device_locked(self) -> bool:
        return self._state.device_locked

    @property
    def has_pending_trigger(self) -> bool:
        return self._state.pending is not None

    @property
    def collecting(self) -> bool:
        return self._cycle_task is not None

    @property
    def state(self) -> SchedulerState:
        if not self._state.running:
            return SchedulerState.STOPPED if self._started_once else SchedulerState.IDLE
        if self._state.device_locked:
            return SchedulerState.LOCKED
        if self._cycle_task is not None:
            return SchedulerState.COLLECTING
        if self._state.pending is not None:
            return SchedulerState.SCHEDULED
        return SchedulerState.IDLE

    # ------------------------------------------------------------------
    # Public lifecycle API
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.dispatch(SchedulerEvent.START)

    def stop(self) -> None:
        self.dispatch(SchedulerEvent.STOP)

    def on_device_locked(self) -> None:
        self.dispatch(SchedulerEvent.DEVICE_LOCKED)

    def on_device_unlocked(self) -> None:
        self.dispatch(SchedulerEvent.DEVICE_UNLOCKED)

    def on_entered_background(self) -> None:
        self.dispatch(SchedulerEvent.ENTERED_BACKGROUND)

    def post(self, event: SchedulerEvent) -> None:
        """Deliver ``event`` from any thread.  It is applied on the loop thread."""
        if self._loop is None:
            raise RuntimeError("Scheduler is not bound to an event loop yet")
        self._loop.call_soon_threadsafe(self.dispatch, SchedulerEvent(event))

    def dispatch(self, event: SchedulerEvent) -> None:
        """Apply one lifecycle event.  Must run on the event loop thread."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        event = SchedulerEvent(event)
        if event is SchedulerEvent.START:
            self._handle_start()
        elif event is SchedulerEvent.STOP:
            self._handle_stop()
        elif event is SchedulerEvent.DEVICE_LOCKED:
            self._handle_locked()
        elif event is SchedulerEvent.DEVICE_UNLOCKED:
            self._handle_unlocked()
        elif event is SchedulerEvent.ENTERED_BACKGROUND:
            self._handle_background()

    async def wait_for_cycle(self) -> CycleResult | None:
        """Wait for the in-flight cycle (if any) and its completion callback."""
        task = self._cycle_task
        if task is None:
            return None
        await asyncio.wait([task])
        # Let the done-callback run before returning.
        await asyncio.sleep(0)
        return self.last_result

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _handle_start(self) -> None:
        if self._state.running:
            logger.debug("start(): already running")
            return
        self._state.running = True
        self._started_once = True
        logger.info("Collection scheduler started")
        if self._state.device_locked:
            logger.info("Device is locked; collection will begin after unlock")
            return
        self._arm(self._initial_delay)

    def _handle_stop(self) -> None:
        if not self._state.running:
            logger.debug("stop(): already stopped")
            return
        self._state.running = False
        self._cancel_pending()
        if self._cycle is not None:
            self._cycle.release_lease()
        logger.info(
            "Collection scheduler stopped%s",
            " (in-flight cycle will not re-arm)" if self._cycle_task else "",
        )

    def _handle_locked(self) -> None:
        if self._state.device_locked:
            return
        self._state.device_locked = True
        self._cancel_pending()
        logger.info("Device locked; scheduling suspended")

    def _handle_unlocked(self) -> None:
        if not self._state.device_locked:
            return
        self._state.device_locked = False
        logger.info("Device unlocked")
        if self._state.running:
            self._arm(self._initial_delay)

    def _handle_background(self) -> None:
        logger.info("Host entered background")
        if self._state.running:
            self._arm(self._interval)

    # ------------------------------------------------------------------
    # Trigger / cycle plumbing
    # ------------------------------------------------------------------

    def _arm(self, delay: float) -> bool:
        """Arm the next trigger unless one is pending or a cycle is in flight."""
        if not self._state.running or self._state.device_locked:
            logger.debug("Not arming: running=%s locked=%s",
                         self._state.running, self._state.device_locked)
            return False
        if self._state.pending is not None or self._cycle_task is not None:
            return False

        trigger = _Trigger(delay)
        trigger.handle = self._call_later(delay, lambda: self._fire(trigger))
        self._state.pending = trigger
        logger.info("Next collection in %.0fs", delay)
        return True

    def _call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        if self._timer is not None:
            return self._timer(delay, callback)
        assert self._loop is not None
        return self._loop.call_later(delay, callback)

    def _cancel_pending(self) -> None:
        trigger = self._state.pending
        if trigger is None:
            return
        self._state.pending = None
        trigger.cancel()
        logger.debug("Pending trigger cancelled")

    def _fire(self, trigger: _Trigger) -> None:
        if self._state.pending is not trigger:
            logger.debug("Ignoring stale trigger")
            return
        self._state.pending = None
        trigger.cancel()
        if not self._state.running or self._state.device_locked or self._cycle_task is not None:
            return

        assert self._loop is not None
        cycle = self._cycle_factory()
        self._cycle = cycle
        self._cycle_task = self._loop.create_task(cycle.run())
        self._cycle_task.add_done_callback(self._on_cycle_done)

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        if task is not self._cycle_task:
            return
        self._cycle_task = None
        self._cycle = None
        self.cycles_completed += 1

        if task.cancelled():
            logger.warning("Collection cycle was cancelled")
        elif (exc := task.exception()) is not None:
            logger.error("Collection cycle crashed: %r", exc, exc_info=exc)
        else:
            self.last_result = task.result()
            logger.info("Collection cycle finished: %s", self.last_result.status.value)

        self._arm(self._interval)

"""Execution leases: time-boxed permission to keep working in the background.

A lease is acquired at the start of every collection cycle and released
exactly once at the end, whatever path the cycle takes.  ``release()`` is
idempotent so that overlapping exit paths (normal completion, expiry callback,
``stop()``) reach the provider only once.

Usage::

    provider = LoopLeaseProvider(budget_seconds=30)
    lease = provider.acquire(on_expired=cycle.abort)
    try:
        ...
    finally:
        lease.release()
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Callable

from src.collector.base import CollectorError

logger = logging.getLogger("healthsync.collector.lease")


class ExecutionWindowUnavailable(CollectorError):
    """The host refused to grant a background execution window."""


class ExecutionLease:
    """A scoped token for one background execution window.

    Attributes:
        lease_id: Identifier assigned by the provider.
    """

    def __init__(self, lease_id: int, on_release: Callable[[ExecutionLease], None]) -> None:
        self.lease_id = lease_id
        self._on_release = on_release
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Hand the window back to the host.

        Returns:
            True if this call performed the release, False if it was already released.
        """
        if self._released:
            return False
        self._released = True
        self._on_release(self)
        logger.debug("Lease %d released", self.lease_id)
        return True

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"<ExecutionLease {self.lease_id} {state}>"


class LeaseProvider(ABC):
    """Grants execution leases on behalf of the host."""

    @abstractmethod
    def acquire(self, on_expired: Callable[[], None]) -> ExecutionLease:
        """Acquire a lease.

        ``on_expired`` is invoked when the host is about to reclaim the window;
        the holder must release the lease immediately.  It may be invoked
        before ``acquire`` returns.

        Raises:
            ExecutionWindowUnavailable: No window can be granted right now.
        """


class LoopLeaseProvider(LeaseProvider):
    """Lease provider backed by the asyncio event loop clock.

    Each lease carries a fixed budget.  When the budget runs out before the
    lease is released, the expiry callback fires.  Only one lease may be held
    at a time.
    """

    def __init__(self, budget_seconds: float = 30.0) -> None:
        if budget_seconds <= 0:
            raise ValueError(f"budget_seconds must be positive, got {budget_seconds}")
        self._budget = budget_seconds
        self._ids = itertools.count(1)
        self._active: ExecutionLease | None = None
        self._expiry_handle: asyncio.TimerHandle | None = None
        self.acquired_count = 0
        self.released_count = 0

    @property
    def active(self) -> ExecutionLease | None:
        return self._active

    def acquire(self, on_expired: Callable[[], None]) -> ExecutionLease:
        if self._active is not None:
            raise ExecutionWindowUnavailable(
                f"Lease {self._active.lease_id} is still held"
            )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise ExecutionWindowUnavailable("No running event loop") from exc

        lease = ExecutionLease(next(self._ids), self._released)
        self._active = lease
        self.acquired_count += 1
        self._expiry_handle = loop.call_later(self._budget, self._expire, lease, on_expired)
        logger.debug("Lease %d acquired (budget=%.1fs)", lease.lease_id, self._budget)
        return lease

    def _expire(self, lease: ExecutionLease, on_expired: Callable[[], None]) -> None:
        if lease.released:
            return
        logger.warning(
            "Execution window expired for lease %d after %.1fs", lease.lease_id, self._budget
        )
        on_expired()
        # The holder must release; enforce it if the callback did not.
        lease.release()

    def _released(self, lease: ExecutionLease) -> None:
        if self._expiry_handle is not None:
            self._expiry_handle.cancel()
            self._expiry_handle = None
        if self._active is lease:
            self._active = None
        self.released_count += 1

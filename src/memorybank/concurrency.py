"""Concurrency gate for per-identity state.

A global semaphore bounds how many operations run at once across all
identities; a per-identity semaphore (one permit by default) makes every
load/recall/merge/save cycle for an identity run alone.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)


@dataclass
class GateConfig:
    """Configuration for the concurrency gate."""
    global_limit: int = 10
    identity_limit: int = 1


class Semaphore:
    """Counting semaphore with strict FIFO hand-off.

    A released permit goes straight to the oldest waiter, so a newcomer can
    never overtake a task that is already queued.
    """

    def __init__(self, max_permits: int = 1):
        self.max_permits = max(1, int(max_permits))
        self._in_use = 0
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    def locked(self) -> bool:
        return self._in_use >= self.max_permits

    async def acquire(self) -> None:
        if self._in_use < self.max_permits and not self._waiters:
            self._in_use += 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Permit was handed over just before cancellation
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # Hand the permit over; usage count stays the same
                fut.set_result(None)
                return
        self._in_use = max(0, self._in_use - 1)

    async def __aenter__(self) -> Semaphore:
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


class ConcurrencyGate:
    """Global admission plus per-identity mutual exclusion.

    Identity semaphores are created on first use and kept for the life of
    the process.
    """

    def __init__(self, config: GateConfig | None = None):
        self.config = config or GateConfig()
        self.global_semaphore = Semaphore(self.config.global_limit)
        self._identity_semaphores: dict[str, Semaphore] = {}

    def for_identity(self, identity: str) -> Semaphore:
        sem = self._identity_semaphores.get(identity)
        if sem is None:
            sem = Semaphore(self.config.identity_limit)
            self._identity_semaphores[identity] = sem
        return sem

    @asynccontextmanager
    async def hold(self, identity: str) -> AsyncIterator[None]:
        """Hold the global and the identity permit for the block.

        Acquired global-then-identity and released identity-then-global on
        every exit path.
        """
        await self.global_semaphore.acquire()
        try:
            identity_sem = self.for_identity(identity)
            await identity_sem.acquire()
            try:
                yield
            finally:
                identity_sem.release()
        finally:
            self.global_semaphore.release()

    def get_stats(self) -> dict[str, Any]:
        return {
            "global_in_use": self.global_semaphore.in_use,
            "global_waiting": self.global_semaphore.waiting,
            "global_limit": self.global_semaphore.max_permits,
            "identities": len(self._identity_semaphores),
            "identities_busy": sum(1 for s in self._identity_semaphores.values() if s.in_use),
        }

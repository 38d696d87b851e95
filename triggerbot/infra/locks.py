"""
Named scoped locks guarding the keeper's shared state.

One asyncio.Lock per resource, created once by MutexFabric and shared by the
scheduler, scanners and refresher. Each lock has a rank; a task may only
acquire locks in increasing rank order:

    single_flight -> snapshot -> account_index -> resync_state -> liveness

Acquisition results are returned as LockOutcome values rather than raised,
so callers branch on ACQUIRED / BUSY / TIMED_OUT explicitly.
"""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from enum import Enum, auto
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple


class LockOutcome(Enum):
    """Result of a lock acquisition attempt."""
    ACQUIRED = auto()
    BUSY = auto()       # non-blocking attempt found the lock held
    TIMED_OUT = auto()  # bounded wait expired


class LockOrderViolation(RuntimeError):
    """A task tried to take a lock ranked at or below one it already holds."""


_DEFAULT = object()


class ScopedLock:
    def __init__(self, name: str, rank: int, fabric: "MutexFabric", timeout: Optional[float] = None) -> None:
        self.name = name
        self.rank = rank
        self.timeout = timeout
        self._fabric = fabric
        self._lock = asyncio.Lock()
        self._stats = {"acquired": 0, "busy": 0, "timeouts": 0}

    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, timeout=_DEFAULT) -> AsyncIterator[LockOutcome]:
        """
        Wait for the lock, bounded by ``timeout`` (defaults to the lock's own).

        Yields ACQUIRED with the lock held, or TIMED_OUT without it.
        """
        if timeout is _DEFAULT:
            timeout = self.timeout
        self._fabric._check_order(self)
        timed_out = False
        try:
            if timeout is None:
                await self._lock.acquire()
            else:
                await asyncio.wait_for(self._lock.acquire(), timeout)
        except asyncio.TimeoutError:
            timed_out = True
        if timed_out:
            self._stats["timeouts"] += 1
            yield LockOutcome.TIMED_OUT
            return
        async with self._held():
            yield LockOutcome.ACQUIRED

    @asynccontextmanager
    async def try_hold(self) -> AsyncIterator[LockOutcome]:
        """Take the lock only if it is free right now; otherwise yield BUSY."""
        self._fabric._check_order(self)
        if self._lock.locked():
            self._stats["busy"] += 1
            yield LockOutcome.BUSY
            return
        await self._lock.acquire()
        async with self._held():
            yield LockOutcome.ACQUIRED

    async def __aenter__(self) -> "ScopedLock":
        self._fabric._check_order(self)
        await self._lock.acquire()
        self._stats["acquired"] += 1
        self._fabric._push(self)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._fabric._pop(self)
        self._lock.release()

    @asynccontextmanager
    async def _held(self) -> AsyncIterator[None]:
        # caller has already acquired self._lock
        self._stats["acquired"] += 1
        self._fabric._push(self)
        try:
            yield
        finally:
            self._fabric._pop(self)
            self._lock.release()

    def get_stats(self) -> dict:
        return {"name": self.name, "locked": self.locked(), **self._stats}


class MutexFabric:
    """
    The keeper's lock set.

    ``snapshot_timeout`` bounds waits on the snapshot lock; every other lock
    waits cooperatively without a bound. Set ``trace=True`` to keep a short
    history of (task name, lock name) acquisitions.
    """

    SINGLE_FLIGHT = 0
    SNAPSHOT = 1
    ACCOUNT_INDEX = 2
    RESYNC_STATE = 3
    LIVENESS = 4

    def __init__(self, snapshot_timeout: Optional[float] = None, trace: bool = False) -> None:
        self.single_flight = ScopedLock("single_flight", self.SINGLE_FLIGHT, self)
        self.snapshot = ScopedLock("snapshot", self.SNAPSHOT, self, timeout=snapshot_timeout)
        self.account_index = ScopedLock("account_index", self.ACCOUNT_INDEX, self)
        self.resync_state = ScopedLock("resync_state", self.RESYNC_STATE, self)
        self.liveness = ScopedLock("liveness", self.LIVENESS, self)
        # task -> stack of locks currently held by that task
        self._held: Dict[asyncio.Task, List[ScopedLock]] = {}
        self.history: Optional[Deque[Tuple[str, str]]] = deque(maxlen=1000) if trace else None

    def held_by_current_task(self) -> List[str]:
        task = asyncio.current_task()
        return [lock.name for lock in self._held.get(task, [])]

    def _check_order(self, lock: ScopedLock) -> None:
        task = asyncio.current_task()
        held = self._held.get(task)
        if held and held[-1].rank >= lock.rank:
            raise LockOrderViolation(
                f"cannot acquire '{lock.name}' while holding '{held[-1].name}'"
            )

    def _push(self, lock: ScopedLock) -> None:
        task = asyncio.current_task()
        self._held.setdefault(task, []).append(lock)
        if self.history is not None:
            name = task.get_name() if task is not None else "-"
            self.history.append((name, lock.name))

    def _pop(self, lock: ScopedLock) -> None:
        task = asyncio.current_task()
        held = self._held.get(task)
        if not held:
            return
        if lock in held:
            held.remove(lock)
        if not held:
            del self._held[task]

    def get_stats(self) -> Dict[str, dict]:
        return {
            lock.name: lock.get_stats()
            for lock in (
                self.single_flight,
                self.snapshot,
                self.account_index,
                self.resync_state,
                self.liveness,
            )
        }

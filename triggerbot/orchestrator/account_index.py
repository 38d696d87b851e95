"""
AccountIndexRefresher: owns the account index and keeps it in sync with the venue.

The index is swapped, never mutated in place: a resync builds and fully
populates a new index in a background task, then swaps it in under the
account-index lock after releasing every entity of the old one. Readers
borrow the index under the same lock, so they never see a half-swapped
index. Resyncs are throttled to one per ``cooldown_slots`` chain slots.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from enum import Enum, auto
from typing import Any, AsyncIterator, Callable, Optional

from triggerbot.infra.locks import MutexFabric
from triggerbot.infra.logging_cfg import log_event
from triggerbot.interfaces import AccountIndex, SlotSource, VenueClient
from triggerbot.monitoring.metrics import TriggerMetrics
from triggerbot.types import ResyncState

log = logging.getLogger("triggerbot")


class ResyncDecision(Enum):
    IN_SYNC = auto()
    DEFERRED = auto()     # mismatch, but still inside the slot cooldown
    STARTED = auto()      # background rebuild spawned
    IN_PROGRESS = auto()  # a rebuild is already running


class AccountIndexRefresher:
    def __init__(
        self,
        index_factory: Callable[[], AccountIndex],
        venue: VenueClient,
        fabric: MutexFabric,
        slot_tracker: Optional[SlotSource] = None,
        cooldown_slots: int = 50,
        log_every_slots: int = 10,
        metrics: Optional[TriggerMetrics] = None,
        bot_name: str = "trigger",
    ) -> None:
        """
        Args:
            index_factory: Builds a new, empty account index
            venue: Source of the authoritative subaccount count
            fabric: Shared lock set
            slot_tracker: Slot source used to throttle resyncs; None resyncs
                as soon as a mismatch is seen
            cooldown_slots: Minimum slots between two resyncs
            log_every_slots: Deferred resyncs log only when the remaining
                slot count is a multiple of this
        """
        self._factory = index_factory
        self.venue = venue
        self.fabric = fabric
        self.slot_tracker = slot_tracker
        self.log_every_slots = log_every_slots
        self.metrics = metrics
        self.bot_name = bot_name
        self.state = ResyncState(cooldown_slots=cooldown_slots)
        self.generation = 0
        self._index: Optional[AccountIndex] = None
        self._rebuild_task: Optional[asyncio.Task] = None

    @property
    def index(self) -> Optional[AccountIndex]:
        return self._index

    def size(self) -> int:
        return self._index.size() if self._index is not None else 0

    async def init(self) -> None:
        """Build and populate the initial index."""
        log.info(f"{self.bot_name} building account index")
        start = time.monotonic()
        async with self.fabric.account_index:
            index = self._factory()
            await index.populate_all()
            self._index = index
            self.generation += 1
        self._observe_size()
        log_event(
            log, "account_index_ready",
            size=self.size(), duration_ms=round((time.monotonic() - start) * 1000, 1),
        )

    @asynccontextmanager
    async def borrow(self) -> AsyncIterator[AccountIndex]:
        """Hold the account-index lock and yield the current index."""
        async with self.fabric.account_index:
            if self._index is None:
                raise RuntimeError("account index not initialised; call init() first")
            yield self._index

    async def get_account(self, account_id: str) -> Any:
        async with self.borrow() as index:
            return await index.must_get(account_id)

    async def apply_event(self, record: Any) -> None:
        # unlocked; an update racing a rebuild is lost until the next resync
        if self._index is not None:
            await self._index.apply_event(record)

    async def is_in_sync(self) -> bool:
        return self.size() == await self.venue.authoritative_subaccount_count()

    async def resync_if_needed(self) -> ResyncDecision:
        """
        Compare the index size against the venue's subaccount count and start
        a background rebuild when they differ and the slot cooldown allows it.
        """
        authoritative = await self.venue.authoritative_subaccount_count()
        if self.size() == authoritative:
            return ResyncDecision.IN_SYNC

        async with self.fabric.resync_state:
            if self.rebuilding:
                return ResyncDecision.IN_PROGRESS

            current_slot = self.slot_tracker.current_slot() if self.slot_tracker is not None else None
            if current_slot is None:
                log.info(f"Resyncing account index immediately (no slot tracking), size {self.size()} != {authoritative}")
            else:
                next_allowed = self.state.next_allowed_slot
                if current_slot < next_allowed:
                    remaining = next_allowed - current_slot
                    if remaining % self.log_every_slots == 0:
                        log.info(f"Resyncing account index in cooldown, {remaining} more slots to go")
                    return ResyncDecision.DEFERRED
                self.state.last_resync_slot = current_slot
                log.info(f"Resyncing account index at slot {current_slot}, size {self.size()} != {authoritative}")

            self._rebuild_task = asyncio.create_task(self._rebuild(), name=f"{self.bot_name}-account-resync")
        return ResyncDecision.STARTED

    @property
    def rebuilding(self) -> bool:
        return self._rebuild_task is not None and not self._rebuild_task.done()

    async def wait_for_rebuild(self) -> None:
        if self._rebuild_task is not None:
            await asyncio.gather(self._rebuild_task, return_exceptions=True)

    async def _rebuild(self) -> None:
        start = time.monotonic()
        new_index = self._factory()
        try:
            try:
                await new_index.populate_all()
            except asyncio.CancelledError:
                await self._release_all(new_index)
                raise
            except Exception as exc:
                log.error(f"Account index resync failed, keeping current index: {exc}")
                await self._release_all(new_index)
                self._record_resync("failed")
                return

            async with self.fabric.account_index:
                old_index = self._index
                if old_index is not None:
                    await self._release_all(old_index)
                self._index = new_index
                self.generation += 1
            self._observe_size()
            self._record_resync("swapped")
        finally:
            log.info(f"Account index resynced in {(time.monotonic() - start) * 1000:.0f}ms")

    async def _release_all(self, index: AccountIndex) -> None:
        for entity in list(index.entities()):
            try:
                await index.release(entity)
            except Exception as exc:
                log_event(log, "account_release_error", level=logging.WARNING, err=str(exc))

    def _observe_size(self) -> None:
        if self.metrics:
            self.metrics.account_index_size.labels(bot=self.bot_name).set(self.size())

    def _record_resync(self, result: str) -> None:
        if self.metrics:
            self.metrics.account_index_resyncs.labels(bot=self.bot_name, result=result).inc()

    async def close(self) -> None:
        if self._rebuild_task is not None:
            self._rebuild_task.cancel()
            await asyncio.gather(self._rebuild_task, return_exceptions=True)
        async with self.fabric.account_index:
            if self._index is not None:
                await self._release_all(self._index)

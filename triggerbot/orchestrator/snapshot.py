"""
SnapshotBuilder: rebuilds and queries the order-book snapshot under the snapshot lock.

Lock order inside rebuild is snapshot -> account_index.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from triggerbot.infra.locks import LockOutcome, MutexFabric
from triggerbot.interfaces import OrderBookSnapshot
from triggerbot.orchestrator.account_index import AccountIndexRefresher
from triggerbot.types import Market, TriggerCandidate

log = logging.getLogger("triggerbot")


@dataclass
class SnapshotResult:
    outcome: LockOutcome
    snapshot: Optional[OrderBookSnapshot] = None
    candidates: List[TriggerCandidate] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome is LockOutcome.ACQUIRED


class SnapshotBuilder:
    def __init__(
        self,
        snapshot_factory: Callable[[], OrderBookSnapshot],
        refresher: AccountIndexRefresher,
        fabric: MutexFabric,
        build_timeout: Optional[float] = None,
    ) -> None:
        self._factory = snapshot_factory
        self.refresher = refresher
        self.fabric = fabric
        self.build_timeout = build_timeout
        self.generation = 0
        self._snapshot: Optional[OrderBookSnapshot] = None

    @property
    def current(self) -> Optional[OrderBookSnapshot]:
        return self._snapshot

    async def rebuild(self) -> SnapshotResult:
        """
        Discard the previous snapshot and build a new one from the current
        account index. Both the lock wait and the build are bounded.
        """
        async with self.fabric.snapshot.hold() as outcome:
            if outcome is not LockOutcome.ACQUIRED:
                return SnapshotResult(outcome)

            if self._snapshot is not None:
                self._snapshot.clear()
                self._snapshot = None

            snapshot = self._factory()
            async with self.refresher.borrow() as index:
                try:
                    await asyncio.wait_for(snapshot.build_from(index), self.build_timeout)
                except asyncio.TimeoutError:
                    log.error(f"Snapshot build exceeded {self.build_timeout}s")
                    snapshot.clear()
                    return SnapshotResult(LockOutcome.TIMED_OUT)

            self._snapshot = snapshot
            self.generation += 1
            return SnapshotResult(LockOutcome.ACQUIRED, snapshot)

    async def find_candidates(self, market: Market, slot: int, price: Any, venue_state: Any) -> SnapshotResult:
        async with self.fabric.snapshot.hold() as outcome:
            if outcome is not LockOutcome.ACQUIRED:
                return SnapshotResult(outcome)
            if self._snapshot is None:
                return SnapshotResult(outcome)
            candidates = self._snapshot.find_trigger_candidates(
                market.market_index, slot, price, market.kind, venue_state
            )
            return SnapshotResult(outcome, self._snapshot, list(candidates))

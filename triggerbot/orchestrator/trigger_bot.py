"""
TriggerBot: periodic, single-flight scan cycles over every market.

One cycle:
    single_flight (try, skip if busy)
      -> rebuild snapshot (snapshot lock, bounded)
      -> account index resync check (may spawn a background rebuild)
      -> scan all perp and spot markets concurrently
    -> mark liveness

The interval loop spawns a cycle per tick and never waits for it, so a slow
cycle makes the following ticks skip rather than queue. Submissions
dispatched by a cycle outlive it; only the in-dispatch flag and the cooldown
registry connect them to later cycles.

Usage:
    bot = TriggerBot("trigger", venue, index_factory, snapshot_factory, slot_source)
    await bot.init()
    await bot.start(1000)
    await bot.wait()   # raises if a cycle hit an unexpected error
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set

from triggerbot.execution.cooldown import CooldownRegistry, now_ms
from triggerbot.execution.dispatcher import TriggerDispatcher
from triggerbot.execution.errors import error_diagnostics
from triggerbot.infra.locks import LockOutcome, MutexFabric
from triggerbot.interfaces import AccountIndex, OrderBookSnapshot, SlotSource, VenueBindings, VenueClient
from triggerbot.monitoring.alerting import AlertManager, AlertSeverity, AlertType
from triggerbot.monitoring.metrics import TriggerMetrics
from triggerbot.orchestrator.account_index import AccountIndexRefresher, ResyncDecision
from triggerbot.orchestrator.scanner import MarketScanner, ScanResult
from triggerbot.orchestrator.snapshot import SnapshotBuilder
from triggerbot.types import LivenessState, Market, MarketKind

log = logging.getLogger("triggerbot")


@dataclass
class TriggerBotConfig:
    """Configuration for TriggerBot."""
    # Scan interval
    interval_ms: int = 1000

    # Snapshot lock wait, in scan intervals
    snapshot_timeout_intervals: int = 10

    # Minimum time between two trigger attempts for the same perp order
    trigger_cooldown_ms: int = 10_000

    # Account index resync throttling
    resync_cooldown_slots: int = 50
    resync_log_every_slots: int = 10

    # Liveness is stale after this many intervals without a completed cycle
    health_stale_intervals: int = 2

    # Time allowed for in-flight submissions to settle on stop()
    dispatch_drain_sec: float = 10.0

    @property
    def snapshot_timeout_sec(self) -> float:
        return self.snapshot_timeout_intervals * self.interval_ms / 1000

    @classmethod
    def from_settings(cls, cfg: Any) -> "TriggerBotConfig":
        return cls(
            interval_ms=cfg.interval_ms,
            snapshot_timeout_intervals=cfg.snapshot_timeout_intervals,
            trigger_cooldown_ms=cfg.trigger_cooldown_ms,
            resync_cooldown_slots=cfg.resync_cooldown_slots,
            resync_log_every_slots=cfg.resync_log_every_slots,
            health_stale_intervals=cfg.health_stale_intervals,
            dispatch_drain_sec=cfg.dispatch_drain_sec,
        )


@dataclass
class CycleResult:
    """Result of a single scan cycle."""
    ran: bool
    outcome: LockOutcome
    duration_ms: float = 0.0
    resync: Optional[ResyncDecision] = None
    scans: List[ScanResult] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def dispatched(self) -> int:
        return sum(s.dispatched for s in self.scans)


class TriggerBot:
    def __init__(
        self,
        name: str,
        venue: VenueClient,
        account_index_factory: Callable[[], AccountIndex],
        snapshot_factory: Callable[[], OrderBookSnapshot],
        slot_source: SlotSource,
        resync_slot_tracker: Optional[SlotSource] = None,
        alerts: Optional[AlertManager] = None,
        metrics: Optional[TriggerMetrics] = None,
        config: Optional[TriggerBotConfig] = None,
        clock: Optional[Callable[[], int]] = None,
        fabric: Optional[MutexFabric] = None,
    ) -> None:
        """
        Args:
            name: Bot name used in logs, metrics and alerts
            venue: Venue client (prices, markets, submissions)
            account_index_factory: Builds an empty account index
            snapshot_factory: Builds an empty order-book snapshot
            slot_source: Current slot for trigger evaluation
            resync_slot_tracker: Slot source throttling account index
                resyncs; None resyncs immediately on mismatch
            alerts: Alert sink (disabled manager if omitted)
            metrics: Prometheus metrics (optional)
            config: Timing configuration
            clock: Millisecond wall clock, injectable for tests
            fabric: Lock set, injectable for tests
        """
        self.name = name
        self.venue = venue
        self.config = config or TriggerBotConfig()
        self.interval_ms = self.config.interval_ms
        self.alerts = alerts or AlertManager()
        self.metrics = metrics
        self._clock = clock or now_ms
        self.fabric = fabric or MutexFabric(snapshot_timeout=self.config.snapshot_timeout_sec)

        self.cooldowns = CooldownRegistry(cooldown_ms=self.config.trigger_cooldown_ms, clock=self._clock)
        self.dispatcher = TriggerDispatcher(venue, self.cooldowns, self.alerts, metrics, bot_name=name)
        self.refresher = AccountIndexRefresher(
            account_index_factory,
            venue,
            self.fabric,
            slot_tracker=resync_slot_tracker,
            cooldown_slots=self.config.resync_cooldown_slots,
            log_every_slots=self.config.resync_log_every_slots,
            metrics=metrics,
            bot_name=name,
        )
        self.snapshots = SnapshotBuilder(
            snapshot_factory, self.refresher, self.fabric, build_timeout=self.config.snapshot_timeout_sec
        )
        self.scanner = MarketScanner(
            venue,
            self.snapshots,
            self.refresher,
            self.cooldowns,
            self.dispatcher,
            slot_source,
            self.alerts,
            metrics=metrics,
            bot_name=name,
        )

        self.liveness = LivenessState(last_pat_ms=self._clock())
        self._loop_task: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()
        self._failure: Optional[asyncio.Future] = None
        self._cycles = 0

    @classmethod
    def from_bindings(
        cls,
        name: str,
        bindings: VenueBindings,
        slot_source: SlotSource,
        resync_slot_tracker: Optional[SlotSource] = None,
        **kwargs: Any,
    ) -> "TriggerBot":
        return cls(
            name,
            bindings.venue,
            bindings.account_index_factory,
            bindings.snapshot_factory,
            slot_source,
            resync_slot_tracker=resync_slot_tracker,
            **kwargs,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Host surface
    # ─────────────────────────────────────────────────────────────────────

    async def init(self) -> None:
        log.info(f"{self.name} initing")
        await self.refresher.init()
        self.dispatcher.start()

    async def start(self, interval_ms: Optional[int] = None) -> None:
        if self._loop_task is not None and not self._loop_task.done():
            log.warning(f"{self.name} already running")
            return
        if interval_ms is not None:
            self.interval_ms = interval_ms
        self.dispatcher.start()
        self._failure = asyncio.get_running_loop().create_future()
        self._loop_task = asyncio.create_task(self._interval_loop(self.interval_ms / 1000), name=f"{self.name}-loop")
        log.info(f"{self.name} Bot started!")

    async def wait(self) -> None:
        """Block until the interval loop ends; re-raises a fatal cycle error."""
        if self._loop_task is not None:
            await self._loop_task

    async def stop(self) -> None:
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None
        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)
        await self.dispatcher.stop(self.config.dispatch_drain_sec)
        await self.refresher.wait_for_rebuild()
        log.info(f"{self.name} stopped")

    async def close(self) -> None:
        """Release the account index. Call after stop()."""
        await self.refresher.close()
        if self.snapshots.current is not None:
            self.snapshots.current.clear()

    async def health_check(self) -> bool:
        async with self.fabric.liveness:
            stale_after = self.config.health_stale_intervals * self.interval_ms
            healthy = self.liveness.last_pat_ms > self._clock() - stale_after
        in_sync = await self.refresher.is_in_sync()
        return healthy and in_sync

    async def on_external_account_event(self, record: Any) -> None:
        await self.refresher.apply_event(record)

    # ─────────────────────────────────────────────────────────────────────
    # Scheduling
    # ─────────────────────────────────────────────────────────────────────

    async def _interval_loop(self, interval_sec: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            self._spawn_tick()
            next_tick += interval_sec
            now = loop.time()
            if next_tick < now - interval_sec:
                # fell more than a tick behind, e.g. after a suspended process
                next_tick = now
            done, _ = await asyncio.wait({self._failure}, timeout=max(0.0, next_tick - now))
            if done:
                raise self._failure.exception()

    def _spawn_tick(self) -> None:
        task = asyncio.create_task(self.run_cycle(), name=f"{self.name}-cycle")
        self._ticks.add(task)
        task.add_done_callback(self._on_tick_done)

    def _on_tick_done(self, task: asyncio.Task) -> None:
        self._ticks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and self._failure is not None and not self._failure.done():
            self._failure.set_exception(exc)

    async def run_cycle(self) -> CycleResult:
        """
        Run one scan cycle unless another is still running.

        Busy and lock-timeout skips return a result with ``ran=False``.
        Anything else that escapes the cycle body is alerted and re-raised.
        """
        start = time.monotonic()
        result = CycleResult(ran=False, outcome=LockOutcome.ACQUIRED)
        try:
            async with self.fabric.single_flight.try_hold() as outcome:
                if outcome is LockOutcome.BUSY:
                    if self.metrics:
                        self.metrics.record_mutex_busy(self.name)
                    log.debug(f"{self.name} previous cycle still running, skipping tick")
                    return CycleResult(ran=False, outcome=outcome, reason="busy")

                rebuilt = await self.snapshots.rebuild()
                if not rebuilt.ok:
                    log.error(f"{self.name} snapshot lock timeout")
                    if self.metrics:
                        self.metrics.lock_timeouts.labels(bot=self.name, lock="snapshot").inc()
                    return CycleResult(ran=False, outcome=rebuilt.outcome, reason="snapshot_timeout")

                result.resync = await self.refresher.resync_if_needed()

                markets = await self._list_markets()
                result.scans = list(await asyncio.gather(*(self.scanner.scan_market(m) for m in markets)))
                result.ran = True
        except Exception as exc:
            self.alerts.notify(
                f":x: Uncaught error in main loop:\n{error_diagnostics(exc)}",
                severity=AlertSeverity.CRITICAL,
                alert_type=AlertType.LOOP_ERROR,
            )
            raise
        finally:
            if result.ran:
                await self._mark_cycle_complete(result, start)
        return result

    async def _list_markets(self) -> List[Market]:
        perps = await self.venue.list_markets(MarketKind.PERP)
        spots = await self.venue.list_markets(MarketKind.SPOT)
        return list(perps) + list(spots)

    async def _mark_cycle_complete(self, result: CycleResult, start: float) -> None:
        result.duration_ms = (time.monotonic() - start) * 1000
        self._cycles += 1
        if self.metrics:
            self.metrics.record_cycle_duration(result.duration_ms, self.name)
            self.metrics.last_cycle_ts.labels(bot=self.name).set(time.time())
        log.debug(f"{self.name} Bot took {result.duration_ms:.0f}ms to run")
        async with self.fabric.liveness:
            self.liveness.last_pat_ms = self._clock()

    def get_stats(self) -> dict:
        return {
            "cycles": self._cycles,
            "interval_ms": self.interval_ms,
            "last_pat_ms": self.liveness.last_pat_ms,
            "account_index_size": self.refresher.size(),
            "account_index_generation": self.refresher.generation,
            "last_resync_slot": self.refresher.state.last_resync_slot,
            "cooldowns": self.cooldowns.get_stats(),
            "dispatch": self.dispatcher.get_stats(),
            "locks": self.fabric.get_stats(),
        }

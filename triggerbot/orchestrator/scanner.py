"""
MarketScanner: finds triggerable orders in one market and dispatches them.

A scan never waits for submissions to resolve. Failures are contained to the
market being scanned; sibling scans running concurrently are unaffected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from triggerbot.execution.cooldown import CooldownRegistry
from triggerbot.execution.dispatcher import TriggerDispatcher
from triggerbot.execution.errors import error_diagnostics
from triggerbot.infra.logging_cfg import log_event
from triggerbot.interfaces import SlotSource, VenueClient
from triggerbot.monitoring.alerting import AlertManager, AlertSeverity, AlertType
from triggerbot.monitoring.metrics import TriggerMetrics
from triggerbot.orchestrator.account_index import AccountIndexRefresher
from triggerbot.orchestrator.snapshot import SnapshotBuilder
from triggerbot.types import Market, MarketKind, TriggerCandidate

log = logging.getLogger("triggerbot")


@dataclass
class ScanResult:
    """Summary of one market scan."""
    market: Market
    candidates: int = 0
    dispatched: int = 0
    skipped_cooldown: int = 0
    skipped_in_dispatch: int = 0
    error: Optional[str] = None


class MarketScanner:
    def __init__(
        self,
        venue: VenueClient,
        snapshots: SnapshotBuilder,
        refresher: AccountIndexRefresher,
        cooldowns: CooldownRegistry,
        dispatcher: TriggerDispatcher,
        slot_source: SlotSource,
        alerts: AlertManager,
        metrics: Optional[TriggerMetrics] = None,
        bot_name: str = "trigger",
    ) -> None:
        self.venue = venue
        self.snapshots = snapshots
        self.refresher = refresher
        self.cooldowns = cooldowns
        self.dispatcher = dispatcher
        self.slot_source = slot_source
        self.alerts = alerts
        self.metrics = metrics
        self.bot_name = bot_name

    async def scan_market(self, market: Market) -> ScanResult:
        result = ScanResult(market=market)
        try:
            price = await self.venue.get_reference_price(market.kind, market.market_index)

            slot = self.slot_source.current_slot()
            if slot is None:
                log.warning(f"No slot observed yet, skipping {market.label()}")
                result.error = "no_slot"
                return result

            found = await self.snapshots.find_candidates(market, slot, price, self.venue.venue_state())
            if not found.ok:
                log.error(f"{self.bot_name} snapshot lock {found.outcome.name.lower()} scanning {market.label()}")
                if self.metrics:
                    self.metrics.lock_timeouts.labels(bot=self.bot_name, lock="snapshot").inc()
                result.error = "snapshot_lock_timeout"
                return result

            result.candidates = len(found.candidates)
            for candidate in found.candidates:
                await self._consider(candidate, result)
        except Exception as exc:
            result.error = str(exc)
            log.error(f"Unexpected error for {market.kind.value} market {market.market_index} during triggers")
            log.error(error_diagnostics(exc))
            if self.metrics:
                self.metrics.market_scan_errors.labels(bot=self.bot_name, market_kind=market.kind.value).inc()
            self.alerts.notify(
                f":x: Uncaught error scanning {market.label()}:\n{error_diagnostics(exc)}",
                severity=AlertSeverity.WARNING,
                alert_type=AlertType.SCAN_ERROR,
            )
        return result

    async def _consider(self, candidate: TriggerCandidate, result: ScanResult) -> None:
        now = self.cooldowns.now()
        signature = candidate.signature

        # spot markets rely on the in-dispatch flag only
        if candidate.market_kind is MarketKind.PERP:
            elapsed = self.cooldowns.in_cooldown(signature, now)
            if elapsed is not None:
                log_event(
                    log, "trigger_cooldown_skip", level=logging.WARNING,
                    signature=signature, since_last_ms=elapsed,
                )
                result.skipped_cooldown += 1
                self._count_skip("cooldown")
                return

        if candidate.node.have_trigger:
            result.skipped_in_dispatch += 1
            self._count_skip("in_dispatch")
            return

        candidate.node.have_trigger = True
        attempt_id = self.cooldowns.claim(signature, now)
        log.info(f"trying to trigger {candidate.describe()}")

        try:
            account = await self.refresher.get_account(candidate.account_id)
        except Exception as exc:
            # nothing was submitted: hand the order back to later cycles
            self.cooldowns.release(signature, attempt_id)
            candidate.node.have_trigger = False
            log_event(
                log, "trigger_account_lookup_failed", level=logging.ERROR,
                signature=signature, account=candidate.account_id, err=str(exc),
            )
            return

        self.dispatcher.dispatch(candidate, account, attempt_id)
        result.dispatched += 1

    def _count_skip(self, reason: str) -> None:
        if self.metrics:
            self.metrics.cooldown_skips.labels(bot=self.bot_name, reason=reason).inc()

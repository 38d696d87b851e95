"""
TriggerDispatcher: fire-and-forget trigger submission with a single outcome loop.

Each dispatch runs the venue call in its own task and reports back over an
asyncio.Queue. One consumer task applies the outcome:
- success: log tx, success alert
- failure: classify error code, meter it per signer, clear the in-dispatch
  flag so a later cycle can retry, log, failure alert with diagnostics
- always: release the cooldown slot owned by the attempt

Scanners never await submissions; they only wait for ``dispatch`` to spawn
the task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional, Set

from triggerbot.execution.cooldown import CooldownRegistry
from triggerbot.execution.errors import error_code_label, error_diagnostics, get_error_code
from triggerbot.infra.logging_cfg import log_event
from triggerbot.interfaces import VenueClient
from triggerbot.monitoring.alerting import AlertManager, AlertSeverity, AlertType
from triggerbot.monitoring.metrics import TriggerMetrics
from triggerbot.types import DispatchOutcome, TriggerCandidate

log = logging.getLogger("triggerbot")


class TriggerDispatcher:
    def __init__(
        self,
        venue: VenueClient,
        cooldowns: CooldownRegistry,
        alerts: AlertManager,
        metrics: Optional[TriggerMetrics] = None,
        bot_name: str = "trigger",
    ) -> None:
        self.venue = venue
        self.cooldowns = cooldowns
        self.alerts = alerts
        self.metrics = metrics
        self.bot_name = bot_name
        self._outcomes: asyncio.Queue[DispatchOutcome] = asyncio.Queue()
        self._in_flight: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._stats = {"dispatched": 0, "succeeded": 0, "failed": 0}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._outcome_loop(), name=f"{self.bot_name}-outcomes")

    def dispatch(self, candidate: TriggerCandidate, account_record: Any, attempt_id: int) -> asyncio.Task:
        """Spawn the submission for ``candidate`` and return immediately."""
        self.start()
        task = asyncio.create_task(
            self._submit(candidate, account_record, attempt_id),
            name=f"trigger-{candidate.signature}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        self._stats["dispatched"] += 1
        if self.metrics:
            self.metrics.triggers_dispatched.labels(bot=self.bot_name, market_kind=candidate.market_kind.value).inc()
        return task

    async def _submit(self, candidate: TriggerCandidate, account_record: Any, attempt_id: int) -> None:
        start = time.monotonic()
        outcome = DispatchOutcome(candidate=candidate, attempt_id=attempt_id)
        try:
            outcome.tx_ref = await self.venue.submit_trigger(
                candidate.account_id, account_record, candidate.node.order
            )
        except asyncio.CancelledError as exc:
            outcome.error = exc
            raise
        except Exception as exc:
            outcome.error = exc
        finally:
            outcome.duration_ms = (time.monotonic() - start) * 1000
            self._outcomes.put_nowait(outcome)

    async def _outcome_loop(self) -> None:
        while True:
            outcome = await self._outcomes.get()
            try:
                self.handle_outcome(outcome)
            except Exception:
                log.exception(f"{self.bot_name} failed to process trigger outcome for {outcome.candidate.signature}")
            finally:
                self._outcomes.task_done()

    def handle_outcome(self, outcome: DispatchOutcome) -> None:
        candidate = outcome.candidate
        if self.metrics:
            self.metrics.record_rpc_duration(
                "venue", "submit_trigger", outcome.duration_ms, not outcome.success, self.bot_name
            )
        try:
            if outcome.success:
                self._on_success(outcome)
            else:
                self._on_failure(outcome)
        finally:
            self.cooldowns.release(candidate.signature, outcome.attempt_id)

    def _on_success(self, outcome: DispatchOutcome) -> None:
        candidate = outcome.candidate
        self._stats["succeeded"] += 1
        log.info(f"Triggered {candidate.describe()}")
        log.info(f"Tx: {outcome.tx_ref}")
        log_event(
            log, "trigger_submitted", level=logging.DEBUG,
            signature=candidate.signature, tx=outcome.tx_ref, duration_ms=round(outcome.duration_ms, 1),
        )
        if self.metrics:
            self.metrics.trigger_outcomes.labels(bot=self.bot_name, outcome="success").inc()
            self.metrics.trigger_latency_ms.labels(bot=self.bot_name).observe(outcome.duration_ms)
        self.alerts.notify(
            f":gear: Triggered {candidate.describe()}, tx: {outcome.tx_ref}",
            severity=AlertSeverity.INFO,
            alert_type=AlertType.TRIGGER_SUCCESS,
        )

    def _on_failure(self, outcome: DispatchOutcome) -> None:
        candidate = outcome.candidate
        error = outcome.error
        code = error_code_label(get_error_code(error))
        self._stats["failed"] += 1
        if self.metrics:
            self.metrics.record_error_code(code, self.venue.signer_id, self.bot_name)
            self.metrics.trigger_outcomes.labels(bot=self.bot_name, outcome="failure").inc()

        candidate.node.have_trigger = False

        diagnostics = error_diagnostics(error)
        log.error(f"Error ({code}) triggering {candidate.describe()}")
        log.error(diagnostics)
        self.alerts.notify(
            f":x: Error ({code}) triggering {candidate.describe()}\n{diagnostics}",
            severity=AlertSeverity.WARNING,
            alert_type=AlertType.TRIGGER_FAILED,
        )

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every in-flight submission has finished and its outcome
        has been handled. Returns False if ``timeout`` expired first.
        """
        self.start()

        async def _wait() -> None:
            # asyncio.wait leaves submissions running if the drain times out
            while self._in_flight:
                await asyncio.wait(list(self._in_flight))
            await self._outcomes.join()

        try:
            await asyncio.wait_for(_wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self, drain_timeout: Optional[float] = 10.0) -> None:
        drained = await self.drain(drain_timeout)
        if not drained:
            log.warning(f"{self.bot_name} cancelling {len(self._in_flight)} unresolved trigger submissions")
            for task in list(self._in_flight):
                task.cancel()
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
            # cancelled submissions still enqueue an outcome; settle them
            await self._outcomes.join()
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

    def get_stats(self) -> dict:
        return {**self._stats, "in_flight": self.in_flight, "pending_outcomes": self._outcomes.qsize()}

"""
Tests for TriggerBot - periodic single-flight scan cycles.

Tests cover:
- Full cycle execution
- Overlapping cycles
- Lock timeout as a benign skip
- Fatal error propagation
- Health check
- Interval loop lifecycle
"""

import asyncio

import pytest

from triggerbot.infra.locks import LockOutcome, MutexFabric
from triggerbot.monitoring.alerting import AlertType
from triggerbot.orchestrator.account_index import ResyncDecision
from triggerbot.orchestrator.trigger_bot import TriggerBotConfig
from triggerbot.types import Market, MarketKind


class TestCycle:
    @pytest.mark.asyncio
    async def test_cycle_dispatches_and_marks_liveness(self, make_bot, venue, clock, metrics):
        bot = make_bot()
        await bot.init()
        clock.advance(500)

        result = await bot.run_cycle()

        assert result.ran
        assert result.outcome is LockOutcome.ACQUIRED
        assert result.resync is ResyncDecision.IN_SYNC
        assert result.dispatched == 1
        assert bot.liveness.last_pat_ms == clock.now
        assert metrics.registry.get_sample_value("cycle_duration_ms_count", {"bot": "trigger"}) == 1.0
        assert await bot.dispatcher.drain(1.0)
        assert len(venue.submissions) == 1
        await bot.stop()

    @pytest.mark.asyncio
    async def test_scans_perp_and_spot_markets(self, make_bot, venue, snapshot_factory):
        venue.markets[MarketKind.SPOT] = [Market(0, MarketKind.SPOT)]
        snapshot_factory.orders = [(1, "alice", 0, MarketKind.PERP), (2, "bob", 0, MarketKind.SPOT)]
        snapshot_factory.triggerable = {1, 2}
        bot = make_bot()
        await bot.init()

        result = await bot.run_cycle()

        assert [s.market.kind for s in result.scans] == [MarketKind.PERP, MarketKind.SPOT]
        assert result.dispatched == 2
        await bot.stop()

    @pytest.mark.asyncio
    async def test_overlapping_cycle_skipped(self, make_bot, snapshot_factory, metrics):
        bot = make_bot()
        await bot.init()
        snapshot_factory.gate = asyncio.Event()

        first = asyncio.create_task(bot.run_cycle())
        # first cycle holds single-flight and is parked inside the snapshot build
        while not snapshot_factory.created:
            await asyncio.sleep(0)

        second = await bot.run_cycle()
        assert not second.ran
        assert second.outcome is LockOutcome.BUSY
        assert metrics.registry.get_sample_value("mutex_busy_total", {"bot": "trigger"}) == 1.0
        # the skipped tick built nothing
        assert len(snapshot_factory.created) == 1

        snapshot_factory.gate.set()
        assert (await first).ran
        await bot.stop()

    @pytest.mark.asyncio
    async def test_snapshot_lock_timeout_is_benign(self, make_bot, alerts, clock):
        bot = make_bot(config=TriggerBotConfig(interval_ms=10, snapshot_timeout_intervals=1))
        await bot.init()
        booted_at = bot.liveness.last_pat_ms
        held = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with bot.fabric.snapshot.hold(timeout=None):
                held.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await held.wait()
        clock.advance(100)

        result = await bot.run_cycle()

        assert not result.ran
        assert result.outcome is LockOutcome.TIMED_OUT
        assert bot.liveness.last_pat_ms == booted_at
        alerts.notify.assert_not_called()
        release.set()
        await task
        await bot.stop()

    @pytest.mark.asyncio
    async def test_unexpected_error_alerted_and_raised(self, make_bot, venue, alerts):
        bot = make_bot()
        await bot.init()
        venue.list_error = RuntimeError("market listing broke")

        with pytest.raises(RuntimeError, match="market listing broke"):
            await bot.run_cycle()

        assert alerts.notify.call_args.kwargs["alert_type"] is AlertType.LOOP_ERROR
        assert "Uncaught error in main loop" in alerts.notify.call_args.args[0]
        assert not bot.fabric.single_flight.locked()
        await bot.stop()

    @pytest.mark.asyncio
    async def test_cycle_starts_resync_on_mismatch(self, make_bot, venue, accounts, slots):
        bot = make_bot()
        await bot.init()
        accounts["carol"] = {"authority": "carol"}
        venue.subaccounts = 3
        slots.slot = 10_000

        result = await bot.run_cycle()

        assert result.resync is ResyncDecision.STARTED
        await bot.refresher.wait_for_rebuild()
        assert bot.refresher.size() == 3
        await bot.stop()

    @pytest.mark.asyncio
    async def test_snapshot_taken_before_account_index(self, venue, index_factory, snapshot_factory, slots, alerts, clock):
        from triggerbot.orchestrator.trigger_bot import TriggerBot

        fabric = MutexFabric(snapshot_timeout=10.0, trace=True)
        bot = TriggerBot(
            "trigger", venue, index_factory, snapshot_factory, slots,
            resync_slot_tracker=slots, alerts=alerts, clock=clock, fabric=fabric,
        )
        await bot.init()
        me = asyncio.current_task().get_name()
        fabric.history.clear()

        await bot.run_cycle()

        mine = [lock for task, lock in fabric.history if task == me]
        assert mine.index("single_flight") < mine.index("snapshot") < mine.index("account_index")
        assert mine[-1] == "liveness"
        await bot.stop()


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy_after_cycle(self, make_bot, clock):
        bot = make_bot()
        await bot.init()
        await bot.run_cycle()
        assert await bot.health_check()
        await bot.stop()

    @pytest.mark.asyncio
    async def test_stale_after_two_intervals(self, make_bot, clock):
        bot = make_bot()
        await bot.init()
        await bot.run_cycle()

        clock.advance(1_999)
        assert await bot.health_check()
        clock.advance(1)
        assert not await bot.health_check()

        await bot.run_cycle()
        assert await bot.health_check()
        await bot.stop()

    @pytest.mark.asyncio
    async def test_unhealthy_when_index_out_of_sync(self, make_bot, venue):
        bot = make_bot()
        await bot.init()
        await bot.run_cycle()
        venue.subaccounts += 1
        assert not await bot.health_check()
        await bot.stop()

    @pytest.mark.asyncio
    async def test_staleness_uses_running_interval(self, make_bot, clock):
        bot = make_bot()
        await bot.init()
        await bot.start(interval_ms=60_000)
        clock.advance(100_000)
        assert await bot.health_check()
        await bot.stop()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_interval_loop_runs_cycles(self, make_bot):
        bot = make_bot()
        await bot.init()
        await bot.start(interval_ms=20)
        await asyncio.sleep(0.15)
        await bot.stop()
        assert bot.get_stats()["cycles"] >= 2

    @pytest.mark.asyncio
    async def test_fatal_cycle_error_surfaces_through_wait(self, make_bot, venue):
        bot = make_bot()
        await bot.init()
        venue.list_error = RuntimeError("fatal")
        await bot.start(interval_ms=20)

        with pytest.raises(RuntimeError, match="fatal"):
            await asyncio.wait_for(bot.wait(), 1.0)
        await bot.stop()

    @pytest.mark.asyncio
    async def test_external_account_event_forwarded(self, make_bot):
        bot = make_bot()
        await bot.init()
        await bot.on_external_account_event({"account": "alice", "kind": "update"})
        assert bot.refresher.index.events == [{"account": "alice", "kind": "update"}]
        await bot.stop()

    @pytest.mark.asyncio
    async def test_close_releases_index(self, make_bot, index_factory, venue):
        bot = make_bot()
        await bot.init()
        await bot.run_cycle()
        await bot.dispatcher.drain(1.0)
        await bot.stop()
        await bot.close()
        assert len(index_factory.created[0].released) == 2

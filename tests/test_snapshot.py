import asyncio

import pytest
import pytest_asyncio

from triggerbot.infra.locks import LockOutcome, MutexFabric
from triggerbot.orchestrator.account_index import AccountIndexRefresher
from triggerbot.orchestrator.snapshot import SnapshotBuilder
from triggerbot.types import Market, MarketKind

from conftest import FakeIndexFactory, FakeSnapshotFactory, FakeVenue


@pytest_asyncio.fixture
async def builder(accounts):
    fabric = MutexFabric(snapshot_timeout=0.05)
    refresher = AccountIndexRefresher(FakeIndexFactory(accounts), FakeVenue(), fabric)
    await refresher.init()
    factory = FakeSnapshotFactory(orders=[(1, "alice", 0, MarketKind.PERP), (2, "bob", 0, MarketKind.SPOT)], triggerable={1, 2})
    return SnapshotBuilder(factory, refresher, fabric, build_timeout=0.05), factory


class TestSnapshotBuilder:
    @pytest.mark.asyncio
    async def test_rebuild_clears_previous(self, builder):
        snapshots, factory = builder
        first = await snapshots.rebuild()
        assert first.ok
        second = await snapshots.rebuild()
        assert second.ok
        assert factory.created[0].cleared
        assert not factory.created[1].cleared
        assert snapshots.current is factory.created[1]
        assert snapshots.generation == 2
        assert factory.created[1].built_from_size == 2

    @pytest.mark.asyncio
    async def test_find_candidates_filters_by_kind(self, builder):
        snapshots, _ = builder
        await snapshots.rebuild()
        found = await snapshots.find_candidates(Market(0, MarketKind.SPOT), 500, 1.5, {"state": "ok"})
        assert found.ok
        assert [c.order_id for c in found.candidates] == [2]
        assert snapshots.current.queries == [(0, 500, 1.5, MarketKind.SPOT, {"state": "ok"})]

    @pytest.mark.asyncio
    async def test_find_before_rebuild_returns_nothing(self, builder):
        snapshots, _ = builder
        found = await snapshots.find_candidates(Market(0, MarketKind.PERP), 500, 1.0, None)
        assert found.ok
        assert found.candidates == []

    @pytest.mark.asyncio
    async def test_lock_wait_bounded(self, builder):
        snapshots, _ = builder
        held = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with snapshots.fabric.snapshot.hold(timeout=None):
                held.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await held.wait()
        result = await snapshots.rebuild()
        assert result.outcome is LockOutcome.TIMED_OUT
        release.set()
        await task

    @pytest.mark.asyncio
    async def test_build_bounded(self, builder):
        snapshots, factory = builder
        factory.gate = asyncio.Event()
        result = await snapshots.rebuild()
        assert result.outcome is LockOutcome.TIMED_OUT
        assert snapshots.current is None
        assert not snapshots.fabric.account_index.locked()

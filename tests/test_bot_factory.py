"""
Tests for venue binding loading and TriggerBot wiring.
"""

import sys
import types

import pytest

from triggerbot.bot_factory import BotDependencies, create_bot, load_bindings, resolve_slot_source
from triggerbot.infra.slot_source import RpcSlotSource
from triggerbot.interfaces import VenueBindings

from conftest import FakeIndexFactory, FakeSlotSource, FakeSnapshotFactory, FakeVenue, make_settings


@pytest.fixture
def bindings(accounts):
    return VenueBindings(
        venue=FakeVenue(subaccounts=len(accounts)),
        account_index_factory=FakeIndexFactory(accounts),
        snapshot_factory=FakeSnapshotFactory(),
    )


@pytest.fixture
def venue_module(monkeypatch, bindings):
    module = types.ModuleType("fake_venue_bindings")
    module.build = lambda cfg: bindings

    async def build_async(cfg):
        return bindings

    module.build_async = build_async
    module.build_wrong = lambda cfg: {"venue": None}
    monkeypatch.setitem(sys.modules, "fake_venue_bindings", module)
    return module


class TestLoadBindings:
    @pytest.mark.asyncio
    async def test_sync_factory(self, venue_module, bindings):
        assert await load_bindings("fake_venue_bindings:build", make_settings()) is bindings

    @pytest.mark.asyncio
    async def test_async_factory(self, venue_module, bindings):
        assert await load_bindings("fake_venue_bindings:build_async", make_settings()) is bindings

    @pytest.mark.asyncio
    async def test_malformed_target(self):
        with pytest.raises(ValueError):
            await load_bindings("fake_venue_bindings", make_settings())

    @pytest.mark.asyncio
    async def test_wrong_return_type(self, venue_module):
        with pytest.raises(TypeError):
            await load_bindings("fake_venue_bindings:build_wrong", make_settings())


class TestWiring:
    def test_bindings_slot_source_preferred(self, bindings):
        own = FakeSlotSource(5)
        bindings.slot_source = own
        assert resolve_slot_source(make_settings(), bindings) is own

    @pytest.mark.asyncio
    async def test_rpc_slot_source_from_settings(self, bindings):
        source = resolve_slot_source(make_settings(rpc_url="http://rpc.local", slot_poll_ms=250), bindings)
        assert isinstance(source, RpcSlotSource)
        assert source.poll_interval == 0.25
        await source.close()

    def test_no_slot_source_rejected(self, bindings):
        with pytest.raises(ValueError):
            resolve_slot_source(make_settings(rpc_url=None), bindings)

    def test_create_bot_with_slot_tracking(self, bindings, alerts):
        slots = FakeSlotSource()
        bot = create_bot(BotDependencies(cfg=make_settings(interval_ms=500), bindings=bindings, slot_source=slots, alerts=alerts))
        assert bot.name == "trigger"
        assert bot.interval_ms == 500
        assert bot.refresher.slot_tracker is slots
        assert bot.scanner.slot_source is slots
        assert bot.fabric.snapshot.timeout == 5.0

    def test_create_bot_without_slot_tracking(self, bindings, alerts):
        cfg = make_settings(resync_slot_tracking=False)
        bot = create_bot(BotDependencies(cfg=cfg, bindings=bindings, slot_source=FakeSlotSource(), alerts=alerts))
        assert bot.refresher.slot_tracker is None

"""
Pytest configuration and shared fakes.

The fakes implement the collaborator protocols in memory so tests drive the
keeper end to end without a venue, an RPC node or a webhook.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from unittest.mock import MagicMock

import pytest

from triggerbot.config.config import Settings
from triggerbot.execution.errors import AccountNotFound
from triggerbot.infra.locks import MutexFabric
from triggerbot.monitoring.metrics import TriggerMetrics
from triggerbot.orchestrator.trigger_bot import TriggerBot, TriggerBotConfig
from triggerbot.types import Market, MarketKind, OrderNode, TriggerCandidate


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeSlotSource:
    def __init__(self, slot: Optional[int] = 1000) -> None:
        self.slot = slot

    def current_slot(self) -> Optional[int]:
        return self.slot


class FakeAccountIndex:
    """Copies ``source`` on populate; records releases and events."""

    def __init__(self, source: Dict[str, Any], fail_populate: bool = False, gate: Optional[asyncio.Event] = None) -> None:
        self.source = source
        self.fail_populate = fail_populate
        self.gate = gate
        self.accounts: Dict[str, Any] = {}
        self.released: List[Any] = []
        self.events: List[Any] = []
        self.on_release = None

    async def populate_all(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_populate:
            raise RuntimeError("getProgramAccounts failed")
        self.accounts = dict(self.source)

    def size(self) -> int:
        return len(self.accounts)

    def entities(self) -> Iterable[Any]:
        return list(self.accounts.values())

    async def release(self, entity: Any) -> None:
        if self.on_release is not None:
            self.on_release(entity)
        self.released.append(entity)

    async def must_get(self, account_id: str) -> Any:
        if account_id not in self.accounts:
            raise AccountNotFound(account_id)
        return self.accounts[account_id]

    async def apply_event(self, record: Any) -> None:
        self.events.append(record)


class FakeIndexFactory:
    def __init__(self, accounts: Dict[str, Any]) -> None:
        self.accounts = accounts
        self.created: List[FakeAccountIndex] = []
        self.fail_next = False
        self.gate: Optional[asyncio.Event] = None

    def __call__(self) -> FakeAccountIndex:
        index = FakeAccountIndex(self.accounts, fail_populate=self.fail_next, gate=self.gate)
        self.fail_next = False
        self.created.append(index)
        return index


class FakeSnapshot:
    """
    Builds fresh OrderNodes from ``orders`` on every build. An order is a
    candidate when its id is in ``triggerable``.
    """

    def __init__(self, orders: List[Tuple[int, str, int, MarketKind]], triggerable: Set[int], gate: Optional[asyncio.Event] = None) -> None:
        self.orders = orders
        self.triggerable = triggerable
        self.gate = gate
        self.nodes: List[OrderNode] = []
        self.built_from_size: Optional[int] = None
        self.cleared = False
        self.queries: List[Tuple[int, int, Any, MarketKind, Any]] = []

    async def build_from(self, account_index: Any) -> None:
        if self.gate is not None:
            await self.gate.wait()
        self.built_from_size = account_index.size()
        self.nodes = [
            OrderNode(order_id=oid, account_id=acct, market_index=idx, market_kind=kind, order={"id": oid})
            for oid, acct, idx, kind in self.orders
        ]

    def find_trigger_candidates(self, market_index, slot, price, kind, venue_state) -> List[TriggerCandidate]:
        self.queries.append((market_index, slot, price, kind, venue_state))
        return [
            TriggerCandidate(node)
            for node in self.nodes
            if node.market_index == market_index and node.market_kind is kind and node.order_id in self.triggerable
        ]

    def clear(self) -> None:
        self.cleared = True
        self.nodes = []


class FakeSnapshotFactory:
    def __init__(self, orders=None, triggerable=None) -> None:
        self.orders = list(orders or [])
        self.triggerable = set(triggerable or ())
        self.created: List[FakeSnapshot] = []
        self.gate: Optional[asyncio.Event] = None

    def __call__(self) -> FakeSnapshot:
        snapshot = FakeSnapshot(self.orders, self.triggerable, gate=self.gate)
        self.created.append(snapshot)
        return snapshot


class FakeVenue:
    signer_id = "signer-1"

    def __init__(self, perps=None, spots=None, subaccounts: int = 0) -> None:
        self.markets = {
            MarketKind.PERP: list(perps if perps is not None else [Market(0, MarketKind.PERP)]),
            MarketKind.SPOT: list(spots or []),
        }
        self.subaccounts = subaccounts
        self.prices: Dict[Tuple[MarketKind, int], float] = {}
        self.price_errors: Dict[Tuple[MarketKind, int], Exception] = {}
        self.list_error: Optional[Exception] = None
        self.submit_error: Optional[BaseException] = None
        self.submit_gate: Optional[asyncio.Event] = None
        self.submissions: List[Tuple[str, Any, Any]] = []

    async def get_reference_price(self, kind: MarketKind, market_index: int) -> Any:
        key = (kind, market_index)
        if key in self.price_errors:
            raise self.price_errors[key]
        return self.prices.get(key, 100.0)

    async def list_markets(self, kind: MarketKind) -> List[Market]:
        if self.list_error is not None:
            raise self.list_error
        return self.markets[kind]

    async def authoritative_subaccount_count(self) -> int:
        return self.subaccounts

    async def submit_trigger(self, account_id: str, account_record: Any, order: Any) -> str:
        self.submissions.append((account_id, account_record, order))
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_error is not None:
            raise self.submit_error
        return f"tx-{len(self.submissions)}"

    def venue_state(self) -> Any:
        return {"state": "ok"}


class ProgramError(Exception):
    """Submission failure carrying program logs, like a simulation error."""

    def __init__(self, message: str, logs: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.logs = logs or []


def make_settings(**overrides) -> Settings:
    values = dict(
        bot_name="trigger",
        interval_ms=1000,
        snapshot_timeout_intervals=10,
        trigger_cooldown_ms=10_000,
        resync_cooldown_slots=50,
        resync_log_every_slots=10,
        health_stale_intervals=2,
        rpc_url="http://localhost:8899",
        slot_poll_ms=400,
        resync_slot_tracking=True,
        http_timeout=5.0,
        venue_factory="venue_pkg.bindings:build",
        metrics_port=9464,
        metrics_token=None,
        alert_webhook_url="https://hooks.example.com/abc",
        alert_webhook_type="generic",
        alert_enabled=True,
        log_level="INFO",
        log_file=None,
        dispatch_drain_sec=10.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def slots():
    return FakeSlotSource()


@pytest.fixture
def accounts():
    return {"alice": {"authority": "alice"}, "bob": {"authority": "bob"}}


@pytest.fixture
def venue(accounts):
    return FakeVenue(subaccounts=len(accounts))


@pytest.fixture
def index_factory(accounts):
    return FakeIndexFactory(accounts)


@pytest.fixture
def snapshot_factory():
    return FakeSnapshotFactory(
        orders=[(1, "alice", 0, MarketKind.PERP)],
        triggerable={1},
    )


@pytest.fixture
def alerts():
    manager = MagicMock()
    manager.notify.return_value = True
    return manager


@pytest.fixture
def metrics():
    return TriggerMetrics()


@pytest.fixture
def make_bot(venue, index_factory, snapshot_factory, slots, alerts, metrics, clock):
    """Build a TriggerBot over the fakes; keyword overrides go to TriggerBot."""
    def _make(**kwargs) -> TriggerBot:
        kwargs.setdefault("resync_slot_tracker", slots)
        kwargs.setdefault("alerts", alerts)
        kwargs.setdefault("metrics", metrics)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("config", TriggerBotConfig())
        return TriggerBot("trigger", venue, index_factory, snapshot_factory, slots, **kwargs)
    return _make


@pytest.fixture
def fabric():
    return MutexFabric(snapshot_timeout=1.0)

"""
Core data model shared by the scheduler, scanners and dispatcher.

Snapshot-produced objects (OrderNode, TriggerCandidate) live for one scan
cycle. Only the cooldown registry outlives a cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class MarketKind(Enum):
    """Market category a resting order belongs to."""
    PERP = "perp"
    SPOT = "spot"


@dataclass(frozen=True)
class Market:
    """A tradable market as listed by the venue."""
    market_index: int
    kind: MarketKind
    name: Optional[str] = None

    def label(self) -> str:
        return self.name or f"{self.kind.value}-{self.market_index}"


def order_signature(order_id: int, account_id: str) -> str:
    """Stable key for an order: owning account plus order id."""
    return f"{account_id}-{order_id}"


@dataclass
class OrderNode:
    """
    Snapshot record for one resting order.

    ``have_trigger`` is the in-dispatch flag. It lives on the record so a
    second scan within the same snapshot never dispatches the same order
    twice. A rebuilt snapshot starts with fresh records.
    """
    order_id: int
    account_id: str
    market_index: int
    market_kind: MarketKind
    order: Any = None
    have_trigger: bool = False


@dataclass(frozen=True)
class TriggerCandidate:
    """A resting order whose trigger condition is currently satisfied."""
    node: OrderNode

    @property
    def order_id(self) -> int:
        return self.node.order_id

    @property
    def account_id(self) -> str:
        return self.node.account_id

    @property
    def market_index(self) -> int:
        return self.node.market_index

    @property
    def market_kind(self) -> MarketKind:
        return self.node.market_kind

    @property
    def signature(self) -> str:
        return order_signature(self.node.order_id, self.node.account_id)

    def describe(self) -> str:
        return (
            f"{self.market_kind.value} order {self.order_id} "
            f"(account: {self.account_id}, market {self.market_index})"
        )


@dataclass
class CooldownEntry:
    """Start time (ms) of the trigger attempt that currently owns a signature."""
    started_ms: int
    attempt_id: int


@dataclass
class ResyncState:
    """Slot bookkeeping for account index resyncs."""
    last_resync_slot: int = 0
    cooldown_slots: int = 50

    @property
    def next_allowed_slot(self) -> int:
        return self.last_resync_slot + self.cooldown_slots


@dataclass
class LivenessState:
    """Time (ms) the last full scan cycle completed."""
    last_pat_ms: int = 0


@dataclass
class DispatchOutcome:
    """Result of one trigger submission, delivered to the outcome loop."""
    candidate: TriggerCandidate
    attempt_id: int
    tx_ref: Optional[str] = None
    error: Optional[BaseException] = None
    duration_ms: float = 0.0
    extra: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

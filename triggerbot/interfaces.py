"""
Contracts for the external collaborators the keeper consumes.

The venue SDK, the account index and the order-book snapshot are owned by
other libraries; the keeper only depends on these protocols. ``VenueBindings``
is what a venue factory (``TB_VENUE_FACTORY``) hands to the bootstrap.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Protocol, runtime_checkable

from triggerbot.types import Market, MarketKind, TriggerCandidate


@runtime_checkable
class AccountIndex(Protocol):
    """In-memory mirror of on-chain user accounts."""

    async def populate_all(self) -> None: ...

    def size(self) -> int: ...

    def entities(self) -> Iterable[Any]: ...

    async def release(self, entity: Any) -> None: ...

    async def must_get(self, account_id: str) -> Any:
        """Return the account record; raise ``AccountNotFound`` if unknown."""
        ...

    async def apply_event(self, record: Any) -> None: ...


@runtime_checkable
class OrderBookSnapshot(Protocol):
    """Point-in-time view of resting orders."""

    async def build_from(self, account_index: AccountIndex) -> None: ...

    def find_trigger_candidates(
        self,
        market_index: int,
        slot: int,
        price: Any,
        kind: MarketKind,
        venue_state: Any,
    ) -> List[TriggerCandidate]: ...

    def clear(self) -> None: ...


@runtime_checkable
class VenueClient(Protocol):
    """Remote venue: prices, markets, account counts and trigger submission."""

    signer_id: str

    async def get_reference_price(self, kind: MarketKind, market_index: int) -> Any: ...

    async def list_markets(self, kind: MarketKind) -> List[Market]: ...

    async def authoritative_subaccount_count(self) -> int: ...

    async def submit_trigger(self, account_id: str, account_record: Any, order: Any) -> str: ...

    def venue_state(self) -> Any: ...


@runtime_checkable
class SlotSource(Protocol):
    """Most recent chain slot observed, or None before the first observation."""

    def current_slot(self) -> Optional[int]: ...


@dataclass
class VenueBindings:
    """Concrete collaborators produced by a venue factory."""
    venue: VenueClient
    account_index_factory: Callable[[], AccountIndex]
    snapshot_factory: Callable[[], OrderBookSnapshot]
    slot_source: Optional[SlotSource] = None

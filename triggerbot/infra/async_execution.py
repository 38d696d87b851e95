"""
Async wrapper around a blocking venue SDK using a shared thread pool.

Presents the async VenueClient surface expected by the keeper; each call is
bounded by a timeout. Submissions are not retried here.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List

from triggerbot.types import Market, MarketKind


class AsyncVenue:
    def __init__(self, venue: Any, timeout: float = 10.0, max_workers: int = 8) -> None:
        self._venue = venue
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="venue-exec")

    @property
    def signer_id(self) -> str:
        return str(self._venue.signer_id)

    def venue_state(self) -> Any:
        # served from the SDK's local account cache, no I/O
        return self._venue.venue_state()

    async def get_reference_price(self, kind: MarketKind, market_index: int) -> Any:
        return await self._call(lambda: self._venue.get_reference_price(kind, market_index))

    async def list_markets(self, kind: MarketKind) -> List[Market]:
        return await self._call(lambda: self._venue.list_markets(kind))

    async def authoritative_subaccount_count(self) -> int:
        return await self._call(self._venue.authoritative_subaccount_count)

    async def submit_trigger(self, account_id: str, account_record: Any, order: Any) -> str:
        return await self._call(lambda: self._venue.submit_trigger(account_id, account_record, order))

    async def close(self, wait: bool = True) -> None:
        # prefer graceful shutdown to avoid leaking threads between restarts
        self._executor.shutdown(wait=wait)

    async def _call(self, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(loop.run_in_executor(self._executor, fn), timeout=self._timeout)

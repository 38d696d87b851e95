"""
Chain slot tracking over JSON-RPC ``getSlot`` using a shared httpx client.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Optional

import httpx

from triggerbot.infra.logging_cfg import log_event

log = logging.getLogger("triggerbot")


class RpcSlotSource:
    """
    Polls the RPC node for the current slot in the background.

    ``current_slot()`` returns the highest slot seen so far (never moves
    backwards across lagging nodes), or None before the first successful poll.
    Poll errors keep the last known value.
    """

    def __init__(
        self,
        rpc_url: str,
        poll_interval: float = 0.4,
        timeout: float = 5.0,
        commitment: str = "confirmed",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.poll_interval = poll_interval
        self.commitment = commitment
        # If a shared client is passed in, we won't close it in close(); otherwise we own the client.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True
        self._slot: Optional[int] = None
        self._ids = itertools.count(1)
        self._task: Optional[asyncio.Task] = None
        self._errors = 0

    def current_slot(self) -> Optional[int]:
        return self._slot

    def observe(self, slot: int) -> None:
        if self._slot is None or slot > self._slot:
            self._slot = slot

    async def fetch_slot(self) -> int:
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "getSlot",
            "params": [{"commitment": self.commitment}],
        }
        resp = await self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RuntimeError(f"getSlot failed: {data['error']}")
        return int(data["result"])

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        # prime the value so the first scan cycle has a slot
        await self._poll_once()
        self._task = asyncio.create_task(self._poll_loop(), name="slot-poller")

    async def _poll_once(self) -> None:
        try:
            self.observe(await self.fetch_slot())
        except (httpx.HTTPError, RuntimeError, ValueError, KeyError) as exc:
            self._errors += 1
            log_event(log, "slot_poll_error", level=logging.WARNING, err=str(exc), errors=self._errors)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self._poll_once()

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._owns_client:
            await self.client.aclose()

"""
CooldownRegistry: per-order record of in-flight trigger attempts.

Handles:
- Deduplication of trigger attempts across scan cycles
- Per-order cooldown window (perp markets)
- Exactly-once release by the attempt that claimed the slot

Single event loop usage: each claim/release is one dict operation with no
await in between, so per-entry updates are atomic without an internal lock.
"""

from __future__ import annotations

import itertools
import logging
import time
from typing import Callable, Dict, Optional

from triggerbot.infra.logging_cfg import log_event as _log_event
from triggerbot.types import CooldownEntry

log = logging.getLogger("triggerbot")


def now_ms() -> int:
    return int(time.time() * 1000)


class CooldownRegistry:
    """
    Signature -> CooldownEntry map shared by all scanners and the dispatcher.

    An entry is created by ``claim`` and removed by ``release`` called with
    the attempt id that ``claim`` returned. A stale release (the slot was
    re-claimed by a newer attempt) leaves the newer entry alone.
    """

    DEFAULT_COOLDOWN_MS = 10_000

    def __init__(
        self,
        cooldown_ms: int = DEFAULT_COOLDOWN_MS,
        clock: Optional[Callable[[], int]] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.cooldown_ms = cooldown_ms
        self._clock = clock or now_ms
        self._entries: Dict[str, CooldownEntry] = {}
        self._attempt_ids = itertools.count(1)
        self._log_event = log_event or self._default_log
        self._stats = {
            "claims": 0,
            "releases": 0,
            "stale_releases": 0,
            "cooldown_hits": 0,
        }

    def _default_log(self, event: str, **kwargs) -> None:
        _log_event(log, event, level=logging.DEBUG, **kwargs)

    def now(self) -> int:
        return self._clock()

    def in_cooldown(self, signature: str, now: Optional[int] = None) -> Optional[int]:
        """
        Return ms elapsed since the current attempt started if that is still
        inside the cooldown window, otherwise None.
        """
        entry = self._entries.get(signature)
        if entry is None:
            return None
        now = self._clock() if now is None else now
        elapsed = now - entry.started_ms
        if elapsed < self.cooldown_ms:
            self._stats["cooldown_hits"] += 1
            return elapsed
        return None

    def claim(self, signature: str, now: Optional[int] = None) -> int:
        """Record a new trigger attempt for ``signature`` and return its attempt id."""
        attempt_id = next(self._attempt_ids)
        started = self._clock() if now is None else now
        self._entries[signature] = CooldownEntry(started_ms=started, attempt_id=attempt_id)
        self._stats["claims"] += 1
        return attempt_id

    def release(self, signature: str, attempt_id: int) -> bool:
        """
        Remove the entry if it still belongs to ``attempt_id``.

        Returns True if an entry was removed.
        """
        entry = self._entries.get(signature)
        if entry is None or entry.attempt_id != attempt_id:
            self._stats["stale_releases"] += 1
            self._log_event("cooldown_stale_release", signature=signature, attempt_id=attempt_id)
            return False
        del self._entries[signature]
        self._stats["releases"] += 1
        return True

    def get(self, signature: str) -> Optional[CooldownEntry]:
        return self._entries.get(signature)

    def __contains__(self, signature: str) -> bool:
        return signature in self._entries

    def size(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        return {
            **self._stats,
            "current_size": self.size(),
            "cooldown_ms": self.cooldown_ms,
        }

"""
Infrastructure package.

Locks, logging configuration, slot tracking and the blocking-SDK adapter.
"""

from triggerbot.infra.async_execution import AsyncVenue
from triggerbot.infra.locks import LockOrderViolation, LockOutcome, MutexFabric, ScopedLock
from triggerbot.infra.logging_cfg import build_logger, log_event
from triggerbot.infra.slot_source import RpcSlotSource

__all__ = [
    "AsyncVenue",
    "LockOrderViolation",
    "LockOutcome",
    "MutexFabric",
    "ScopedLock",
    "build_logger",
    "log_event",
    "RpcSlotSource",
]

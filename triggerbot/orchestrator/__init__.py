"""
Orchestration package.

Account index ownership, snapshot rebuilds, per-market scanning and the
periodic scheduler that ties them together.
"""

from triggerbot.orchestrator.account_index import AccountIndexRefresher, ResyncDecision
from triggerbot.orchestrator.scanner import MarketScanner, ScanResult
from triggerbot.orchestrator.snapshot import SnapshotBuilder, SnapshotResult
from triggerbot.orchestrator.trigger_bot import CycleResult, TriggerBot, TriggerBotConfig

__all__ = [
    "AccountIndexRefresher",
    "ResyncDecision",
    "MarketScanner",
    "ScanResult",
    "SnapshotBuilder",
    "SnapshotResult",
    "CycleResult",
    "TriggerBot",
    "TriggerBotConfig",
]

"""
BotFactory: builds a fully wired TriggerBot from settings and venue bindings.

The venue SDK is not a dependency of this package. ``TB_VENUE_FACTORY`` names
a ``"package.module:callable"`` that takes the Settings and returns (or
resolves to) a ``VenueBindings``.

Usage:
    from triggerbot.bot_factory import create_bot, load_bindings, BotDependencies

    bindings = await load_bindings(cfg.venue_factory, cfg)
    deps = BotDependencies(cfg=cfg, bindings=bindings, slot_source=slots, alerts=alerts)
    bot = create_bot(deps)
"""

from __future__ import annotations

import importlib
import inspect
import logging
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from triggerbot.infra.slot_source import RpcSlotSource
from triggerbot.interfaces import SlotSource, VenueBindings

if TYPE_CHECKING:
    from triggerbot.config.config import Settings
    from triggerbot.monitoring.alerting import AlertManager
    from triggerbot.monitoring.metrics import TriggerMetrics
    from triggerbot.orchestrator.trigger_bot import TriggerBot

log = logging.getLogger("triggerbot")


@dataclass
class BotDependencies:
    """All dependencies needed to create a TriggerBot."""
    cfg: "Settings"
    bindings: VenueBindings
    slot_source: SlotSource
    alerts: "AlertManager"
    metrics: Optional["TriggerMetrics"] = None


async def load_bindings(target: str, cfg: "Settings") -> VenueBindings:
    """
    Import and call a venue factory.

    Args:
        target: ``"package.module:callable"``
        cfg: Settings passed to the factory

    Raises:
        ValueError: target is not ``module:callable``
        TypeError: the factory did not produce VenueBindings
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"venue factory must be 'module:callable', got {target!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    bindings = factory(cfg)
    if inspect.isawaitable(bindings):
        bindings = await bindings
    if not isinstance(bindings, VenueBindings):
        raise TypeError(f"{target} returned {type(bindings).__name__}, expected VenueBindings")
    log.info(f"Loaded venue bindings from {target} (signer {bindings.venue.signer_id})")
    return bindings


def resolve_slot_source(cfg: "Settings", bindings: VenueBindings) -> SlotSource:
    """Prefer the venue's own slot source; otherwise poll TB_RPC_URL."""
    if bindings.slot_source is not None:
        return bindings.slot_source
    if not cfg.rpc_url:
        raise ValueError("no slot source: venue bindings provide none and TB_RPC_URL is unset")
    return RpcSlotSource(
        cfg.rpc_url,
        poll_interval=cfg.slot_poll_ms / 1000,
        timeout=cfg.http_timeout,
    )


def create_bot(deps: BotDependencies) -> "TriggerBot":
    """
    Create a TriggerBot with all services wired together.

    The returned bot still needs ``await bot.init()`` before ``start()``.
    """
    from triggerbot.orchestrator.trigger_bot import TriggerBot, TriggerBotConfig

    cfg = deps.cfg
    tracker = deps.slot_source if cfg.resync_slot_tracking else None
    return TriggerBot.from_bindings(
        cfg.bot_name,
        deps.bindings,
        deps.slot_source,
        resync_slot_tracker=tracker,
        alerts=deps.alerts,
        metrics=deps.metrics,
        config=TriggerBotConfig.from_settings(cfg),
    )

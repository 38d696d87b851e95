"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    bot_name: str
    interval_ms: int
    snapshot_timeout_intervals: int  # snapshot lock wait, in scan intervals
    trigger_cooldown_ms: int
    resync_cooldown_slots: int
    resync_log_every_slots: int
    health_stale_intervals: int
    rpc_url: str | None
    slot_poll_ms: int
    resync_slot_tracking: bool  # False: resync as soon as a mismatch is seen
    http_timeout: float
    venue_factory: str | None  # "package.module:callable" returning VenueBindings
    metrics_port: int
    metrics_token: str | None
    alert_webhook_url: str | None
    alert_webhook_type: str  # generic, slack, discord
    alert_enabled: bool
    log_level: str
    log_file: str | None
    dispatch_drain_sec: float

    @property
    def interval_sec(self) -> float:
        return self.interval_ms / 1000

    @property
    def snapshot_timeout_sec(self) -> float:
        return self.snapshot_timeout_intervals * self.interval_sec

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging."""
        data = self.__dict__.copy()
        if data.get("metrics_token"):
            data["metrics_token"] = "***"
        return data

    @classmethod
    def load(cls) -> "Settings":
        cfg = cls(
            bot_name=os.getenv("TB_BOT_NAME", "trigger"),
            interval_ms=_int_env("TB_INTERVAL_MS", 1000),
            snapshot_timeout_intervals=_int_env("TB_SNAPSHOT_TIMEOUT_INTERVALS", 10),
            trigger_cooldown_ms=_int_env("TB_TRIGGER_COOLDOWN_MS", 10_000),
            resync_cooldown_slots=_int_env("TB_RESYNC_COOLDOWN_SLOTS", 50),
            resync_log_every_slots=_int_env("TB_RESYNC_LOG_EVERY_SLOTS", 10),
            health_stale_intervals=_int_env("TB_HEALTH_STALE_INTERVALS", 2),
            rpc_url=os.getenv("TB_RPC_URL"),
            slot_poll_ms=_int_env("TB_SLOT_POLL_MS", 400),
            resync_slot_tracking=env_bool("TB_RESYNC_SLOT_TRACKING", True),
            http_timeout=_float_env("TB_HTTP_TIMEOUT", 5.0),
            venue_factory=os.getenv("TB_VENUE_FACTORY"),
            metrics_port=_int_env("TB_METRICS_PORT", 9464),
            metrics_token=os.getenv("TB_METRICS_TOKEN"),
            alert_webhook_url=os.getenv("TB_ALERT_WEBHOOK_URL"),
            alert_webhook_type=os.getenv("TB_ALERT_WEBHOOK_TYPE", "generic"),
            alert_enabled=env_bool("TB_ALERT_ENABLED", True),
            log_level=os.getenv("TB_LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("TB_LOG_FILE"),
            dispatch_drain_sec=_float_env("TB_DISPATCH_DRAIN_SEC", 10.0),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def _validate(self) -> None:
        if self.interval_ms <= 0:
            raise ValueError("TB_INTERVAL_MS must be > 0")
        if self.snapshot_timeout_intervals <= 0:
            raise ValueError("TB_SNAPSHOT_TIMEOUT_INTERVALS must be > 0")
        if self.trigger_cooldown_ms < 0:
            raise ValueError("TB_TRIGGER_COOLDOWN_MS must be >= 0")
        if self.resync_cooldown_slots < 0:
            raise ValueError("TB_RESYNC_COOLDOWN_SLOTS must be >= 0")
        if self.resync_log_every_slots <= 0:
            raise ValueError("TB_RESYNC_LOG_EVERY_SLOTS must be > 0")
        if self.health_stale_intervals <= 0:
            raise ValueError("TB_HEALTH_STALE_INTERVALS must be > 0")


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    logger = logging.getLogger("triggerbot")
    payload = {
        "event": "config_loaded",
        "bot_name": cfg.bot_name,
        "interval_ms": cfg.interval_ms,
        "trigger_cooldown_ms": cfg.trigger_cooldown_ms,
        "resync_cooldown_slots": cfg.resync_cooldown_slots,
        "resync_slot_tracking": cfg.resync_slot_tracking,
    }
    logger.info(json.dumps(payload))

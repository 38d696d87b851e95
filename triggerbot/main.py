"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import signal
import sys

from triggerbot.app import run_bot
from triggerbot.bot_factory import BotDependencies, create_bot, load_bindings, resolve_slot_source
from triggerbot.config.config import Settings
from triggerbot.config.config_validator import validate_and_log
from triggerbot.infra.logging_cfg import build_logger
from triggerbot.infra.slot_source import RpcSlotSource
from triggerbot.monitoring.alerting import configure_alerts
from triggerbot.monitoring.metrics import TriggerMetrics, start_metrics_server

log = build_logger("triggerbot")


async def main() -> None:
    cfg = Settings.load()
    build_logger("triggerbot", level=getattr(logging, cfg.log_level, logging.INFO), file_path=cfg.log_file)

    if not validate_and_log(cfg, log):
        log.error("Configuration validation failed, exiting")
        sys.exit(1)

    alert_manager = configure_alerts(
        webhook_url=cfg.alert_webhook_url,
        webhook_type=cfg.alert_webhook_type,
        enabled=cfg.alert_enabled,
        bot_name=cfg.bot_name,
    )

    bindings = await load_bindings(cfg.venue_factory, cfg)
    slot_source = resolve_slot_source(cfg, bindings)
    if isinstance(slot_source, RpcSlotSource):
        await slot_source.start()

    metrics = TriggerMetrics()
    bot = create_bot(BotDependencies(
        cfg=cfg,
        bindings=bindings,
        slot_source=slot_source,
        alerts=alert_manager,
        metrics=metrics,
    ))

    # /health reports liveness and account index sync
    srv = await start_metrics_server(metrics, cfg.metrics_port, health_check=bot.health_check, auth_token=cfg.metrics_token)

    log.info(json.dumps({"event": "startup", "bot": cfg.bot_name, "signer": bindings.venue.signer_id}))
    alert_manager.alert_startup(signer=bindings.venue.signer_id, interval_ms=cfg.interval_ms)

    loop = asyncio.get_running_loop()
    run_task = asyncio.create_task(run_bot(bot, cfg.interval_ms))

    def stop_all() -> None:
        if not run_task.done():
            run_task.cancel()
        srv.close()

    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_all)
        except NotImplementedError:
            pass

    shutdown_reason = "normal"
    try:
        await run_task
    except (asyncio.CancelledError, KeyboardInterrupt):
        log.info("Shutdown signal received, cleaning up...")
        shutdown_reason = "signal_received"
    except Exception as exc:
        shutdown_reason = f"fatal: {exc}"
        raise
    finally:
        alert_manager.alert_shutdown(shutdown_reason)
        await alert_manager.flush()
        log.info("Closing servers and connections...")
        srv.close()
        await srv.wait_closed()
        if isinstance(slot_source, RpcSlotSource):
            await slot_source.close()
        close = getattr(bindings.venue, "close", None)
        if close is not None:
            closing = close()
            if inspect.isawaitable(closing):
                await closing
        log.info("Shutdown complete")


def run() -> None:
    # Windows compatible asyncio runner with proper cleanup
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nBot stopped by user")
    sys.exit(0)


if __name__ == "__main__":
    run()

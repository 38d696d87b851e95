"""
Runner with supervised startup and shutdown.
"""

from __future__ import annotations

import asyncio
import json
import logging
import traceback

from triggerbot.orchestrator.trigger_bot import TriggerBot

log = logging.getLogger("triggerbot")


class BotRunner:
    def __init__(self, bot: TriggerBot) -> None:
        self.bot = bot
        self.task: asyncio.Task | None = None
        self.error: Exception | None = None

    async def start(self, interval_ms: int | None = None) -> None:
        try:
            await self.bot.init()
            await self.bot.start(interval_ms)
            self.task = asyncio.create_task(self.bot.wait(), name=f"{self.bot.name}-runner")
        except Exception as exc:
            self.error = exc
            log.error(json.dumps({
                "event": "bot_init_error",
                "bot": self.bot.name,
                "err": str(exc),
                "traceback": traceback.format_exc(),
            }))
            # cleanup partially started components
            try:
                await self.bot.stop()
            except Exception as cleanup_exc:
                log.warning(json.dumps({"event": "bot_cleanup_error", "bot": self.bot.name, "err": str(cleanup_exc)}))

    async def stop(self) -> None:
        await self.bot.stop()
        if self.task:
            self.task.cancel()
            await asyncio.gather(self.task, return_exceptions=True)
        await self.bot.close()


async def run_bot(bot: TriggerBot, interval_ms: int | None = None) -> None:
    """
    Start the bot and supervise it until cancelled or a cycle fails fatally.

    A fatal error is logged, alerted by the cycle itself and re-raised here.
    """
    runner = BotRunner(bot)
    await runner.start(interval_ms)
    if runner.error is not None:
        raise runner.error
    try:
        await runner.task
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        runner.error = exc
        log.error(json.dumps({"event": "bot_run_error", "bot": bot.name, "err": str(exc)}))
        raise
    finally:
        await runner.stop()

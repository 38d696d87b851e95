"""
Execution package.

Cooldown tracking, trigger dispatch and error classification.
"""

from triggerbot.execution.cooldown import CooldownRegistry
from triggerbot.execution.dispatcher import TriggerDispatcher
from triggerbot.execution.errors import AccountNotFound, error_diagnostics, get_error_code

__all__ = [
    "CooldownRegistry",
    "TriggerDispatcher",
    "AccountNotFound",
    "error_diagnostics",
    "get_error_code",
]

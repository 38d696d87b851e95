"""
Configuration package.

Environment loading and startup validation.
"""

from triggerbot.config.config import Settings
from triggerbot.config.config_validator import ConfigValidator, validate_and_log

__all__ = [
    "Settings",
    "ConfigValidator",
    "validate_and_log",
]

"""
Error taxonomy and submission error classification.
"""

from __future__ import annotations

import re
import traceback
from typing import Iterable, List, Optional

from triggerbot.infra.locks import LockOrderViolation

_CUSTOM_PROGRAM_ERROR = re.compile(r"custom program error: (0x[0-9a-fA-F]+)")
_ERROR_NUMBER = re.compile(r"Error Number: (\d+)")


class AccountNotFound(KeyError):
    """The account index has no record for the requested account."""


def _error_logs(exc: BaseException) -> List[str]:
    logs = getattr(exc, "logs", None)
    if not logs:
        return []
    if isinstance(logs, str):
        return [logs]
    return [str(line) for line in logs]


def _search(pattern: re.Pattern, lines: Iterable[str]) -> Optional[str]:
    for line in lines:
        match = pattern.search(line)
        if match:
            return match.group(1)
    return None


def get_error_code(exc: BaseException) -> Optional[int]:
    """
    Extract the program error code from a failed submission.

    Checks an explicit ``code``/``error_code`` attribute first, then the
    program logs attached to the exception, then the message text.
    """
    for attr in ("code", "error_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value

    lines = _error_logs(exc) + [str(exc)]
    hex_code = _search(_CUSTOM_PROGRAM_ERROR, lines)
    if hex_code is not None:
        return int(hex_code, 16)
    number = _search(_ERROR_NUMBER, lines)
    if number is not None:
        return int(number)
    return None


def error_code_label(code: Optional[int]) -> str:
    return "unknown" if code is None else str(code)


def error_diagnostics(exc: BaseException) -> str:
    """Program logs (if any) followed by the traceback, for alert payloads."""
    parts = _error_logs(exc)
    if exc.__traceback__ is not None:
        parts.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip())
    else:
        parts.append(f"{type(exc).__name__}: {exc}")
    return "\n".join(parts)


__all__ = [
    "AccountNotFound",
    "LockOrderViolation",
    "get_error_code",
    "error_code_label",
    "error_diagnostics",
]

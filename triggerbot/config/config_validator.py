"""
Startup validation of Settings.

- Range checks for numeric parameters
- Dependency validation (e.g., slot tracking requires an RPC URL)
- Warnings for configurations that work but are likely mistakes
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("triggerbot")


class ValidationSeverity(Enum):
    """Severity levels for validation issues."""
    ERROR = auto()    # Blocks startup
    WARNING = auto()  # Logs warning but allows startup


@dataclass
class ValidationIssue:
    """A single validation issue."""
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of config validation."""
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def get_errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def get_warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]


class ConfigValidator:
    """Validates Settings before the keeper starts."""

    # Range definitions: (min, max)
    NUMERIC_RANGES: Dict[str, Tuple[float, float]] = {
        "interval_ms": (100, 60_000),
        "snapshot_timeout_intervals": (1, 100),
        "trigger_cooldown_ms": (0, 600_000),
        "resync_cooldown_slots": (0, 100_000),
        "health_stale_intervals": (1, 100),
        "slot_poll_ms": (50, 60_000),
        "http_timeout": (0.5, 120.0),
        "metrics_port": (0, 65535),
        "dispatch_drain_sec": (0.0, 300.0),
    }

    WEBHOOK_TYPES = ("generic", "slack", "discord")

    def validate(self, cfg) -> ValidationResult:
        issues: List[ValidationIssue] = []
        issues.extend(self._validate_numeric_ranges(cfg))
        issues.extend(self._validate_dependencies(cfg))
        issues.extend(self._check_risky_configs(cfg))
        has_errors = any(i.severity == ValidationSeverity.ERROR for i in issues)
        return ValidationResult(valid=not has_errors, issues=issues)

    def _validate_numeric_ranges(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name, (min_val, max_val) in self.NUMERIC_RANGES.items():
            value = getattr(cfg, field_name, None)
            if value is None:
                continue
            if value < min_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {value} is below minimum {min_val}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                    suggestion=f"Set to at least {min_val}",
                ))
            elif value > max_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {value} is above maximum {max_val}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                    suggestion=f"Set to at most {max_val}",
                ))
        return issues

    def _validate_dependencies(self, cfg) -> List[ValidationIssue]:
        issues = []
        if not getattr(cfg, "venue_factory", None):
            issues.append(ValidationIssue(
                field="venue_factory",
                message="No venue factory configured",
                severity=ValidationSeverity.ERROR,
                suggestion="Set TB_VENUE_FACTORY=package.module:callable",
            ))
        elif ":" not in cfg.venue_factory:
            issues.append(ValidationIssue(
                field="venue_factory",
                message=f"Invalid venue factory '{cfg.venue_factory}', expected 'module:callable'",
                severity=ValidationSeverity.ERROR,
                value=cfg.venue_factory,
            ))
        if getattr(cfg, "resync_slot_tracking", False) and not getattr(cfg, "rpc_url", None):
            issues.append(ValidationIssue(
                field="rpc_url",
                message="Slot tracking enabled but TB_RPC_URL is not set; resyncs will not be throttled",
                severity=ValidationSeverity.WARNING,
                suggestion="Set TB_RPC_URL or TB_RESYNC_SLOT_TRACKING=false",
            ))
        if getattr(cfg, "alert_webhook_type", "generic") not in self.WEBHOOK_TYPES:
            issues.append(ValidationIssue(
                field="alert_webhook_type",
                message=f"Unknown webhook type '{cfg.alert_webhook_type}'",
                severity=ValidationSeverity.ERROR,
                value=cfg.alert_webhook_type,
                suggestion=f"Use one of {', '.join(self.WEBHOOK_TYPES)}",
            ))
        return issues

    def _check_risky_configs(self, cfg) -> List[ValidationIssue]:
        issues = []
        if getattr(cfg, "alert_enabled", False) and not getattr(cfg, "alert_webhook_url", None):
            issues.append(ValidationIssue(
                field="alert_webhook_url",
                message="Alerting enabled without TB_ALERT_WEBHOOK_URL; alerts will only be logged",
                severity=ValidationSeverity.WARNING,
            ))
        cooldown_ms = getattr(cfg, "trigger_cooldown_ms", 10_000)
        interval_ms = getattr(cfg, "interval_ms", 1000)
        if cooldown_ms < interval_ms:
            issues.append(ValidationIssue(
                field="trigger_cooldown_ms",
                message=f"Trigger cooldown ({cooldown_ms}ms) is shorter than the scan interval ({interval_ms}ms)",
                severity=ValidationSeverity.WARNING,
                value=cooldown_ms,
                suggestion="Duplicate submissions become likely for slow confirmations",
            ))
        return issues


def validate_config(cfg) -> ValidationResult:
    return ConfigValidator().validate(cfg)


def validate_and_log(cfg, logger_instance=None) -> bool:
    """
    Validate config and log all issues.

    Returns:
        True if config is valid (no errors), False otherwise
    """
    log = logger_instance or logger
    result = validate_config(cfg)

    for issue in result.get_errors():
        msg = f"CONFIG ERROR: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.error(msg)

    for issue in result.get_warnings():
        msg = f"CONFIG WARNING: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.warning(msg)

    if result.valid:
        log.info("Configuration validation passed")
    else:
        log.error(f"Configuration validation failed with {len(result.get_errors())} error(s)")
    return result.valid

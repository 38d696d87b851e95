"""
Monitoring package.

Prometheus metrics, the /metrics + /health HTTP endpoint and webhook alerting.
"""

from triggerbot.monitoring.alerting import AlertConfig, AlertManager, AlertSeverity, AlertType, configure_alerts
from triggerbot.monitoring.metrics import TriggerMetrics, start_metrics_server

__all__ = [
    "AlertConfig",
    "AlertManager",
    "AlertSeverity",
    "AlertType",
    "configure_alerts",
    "TriggerMetrics",
    "start_metrics_server",
]

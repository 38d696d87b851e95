"""
Prometheus metrics for the trigger keeper and an HTTP server exposing them.

Endpoints:
- GET /metrics - Prometheus text (auth required if token set)
- GET /health  - Liveness probe (no auth, 200 if healthy, 503 otherwise)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional
from urllib.parse import parse_qs, urlparse

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

log = logging.getLogger("triggerbot")


class TriggerMetrics:
    """Keeper metrics, registered on a private registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        reg = registry or CollectorRegistry()

        # === Execution Metrics ===
        self.error_codes = Counter(
            'error_codes_total',
            'Trigger submission errors by program error code',
            labelnames=['code', 'signer', 'bot'],
            registry=reg
        )
        self.triggers_dispatched = Counter(
            'triggers_dispatched_total',
            'Trigger submissions dispatched',
            labelnames=['bot', 'market_kind'],
            registry=reg
        )
        self.trigger_outcomes = Counter(
            'trigger_outcomes_total',
            'Trigger submission outcomes',
            labelnames=['bot', 'outcome'],
            registry=reg
        )
        self.trigger_latency_ms = Histogram(
            'trigger_latency_ms',
            'Time from dispatch to submission result (milliseconds)',
            labelnames=['bot'],
            buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
            registry=reg
        )
        self.cooldown_skips = Counter(
            'cooldown_skips_total',
            'Candidates skipped by cooldown or in-dispatch dedup',
            labelnames=['bot', 'reason'],
            registry=reg
        )

        # === Scheduler Metrics ===
        self.mutex_busy = Counter(
            'mutex_busy_total',
            'Scan ticks skipped because the previous cycle was still running',
            labelnames=['bot'],
            registry=reg
        )
        self.lock_timeouts = Counter(
            'lock_timeouts_total',
            'Lock acquisitions that timed out',
            labelnames=['bot', 'lock'],
            registry=reg
        )
        self.cycle_duration_ms = Histogram(
            'cycle_duration_ms',
            'Full scan cycle duration (milliseconds)',
            labelnames=['bot'],
            buckets=[10, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
            registry=reg
        )
        self.rpc_duration_ms = Histogram(
            'rpc_duration_ms',
            'Duration of remote calls made by the keeper (milliseconds)',
            labelnames=['endpoint', 'method', 'is_error', 'bot'],
            buckets=[10, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
            registry=reg
        )
        self.last_cycle_ts = Gauge(
            'last_cycle_ts',
            'Unix time the last scan cycle completed',
            labelnames=['bot'],
            registry=reg
        )
        self.market_scan_errors = Counter(
            'market_scan_errors_total',
            'Market scans aborted by an error',
            labelnames=['bot', 'market_kind'],
            registry=reg
        )

        # === Account Index Metrics ===
        self.account_index_size = Gauge(
            'account_index_size',
            'Accounts in the current account index',
            labelnames=['bot'],
            registry=reg
        )
        self.account_index_resyncs = Counter(
            'account_index_resyncs_total',
            'Account index rebuilds by result',
            labelnames=['bot', 'result'],
            registry=reg
        )

        self.registry = reg

    def get_registry(self) -> CollectorRegistry:
        """Return the Prometheus registry for export."""
        return self.registry

    def record_error_code(self, code: str, signer: str, bot: str) -> None:
        self.error_codes.labels(code=code, signer=signer, bot=bot).inc()

    def record_mutex_busy(self, bot: str) -> None:
        self.mutex_busy.labels(bot=bot).inc()

    def record_cycle_duration(self, duration_ms: float, bot: str) -> None:
        self.cycle_duration_ms.labels(bot=bot).observe(duration_ms)

    def record_rpc_duration(self, endpoint: str, method: str, duration_ms: float, is_error: bool, bot: str) -> None:
        self.rpc_duration_ms.labels(
            endpoint=endpoint, method=method, is_error=str(is_error).lower(), bot=bot
        ).observe(duration_ms)

    def render(self) -> bytes:
        return generate_latest(self.registry)


async def start_metrics_server(
    metrics: TriggerMetrics,
    port: int,
    health_check: Optional[Callable[[], Awaitable[bool]]] = None,
    auth_token: Optional[str] = None,
    host: str = "0.0.0.0",
) -> asyncio.AbstractServer:
    """
    Start HTTP server for metrics and health endpoints.
    """
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            req = await reader.read(2048)
            header_lines = req.split(b"\r\n") if req else []
            path_raw = b"/"
            if header_lines and b" " in header_lines[0]:
                parts = header_lines[0].split(b" ")
                if len(parts) > 1:
                    path_raw = parts[1]
            headers = {}
            for line in header_lines[1:]:
                if b":" in line:
                    k, v = line.split(b":", 1)
                    headers[k.strip().lower()] = v.strip()

            parsed = urlparse(path_raw.decode("utf-8", errors="ignore"))
            query = parse_qs(parsed.query)

            # Health endpoint - no auth required for load balancers
            if parsed.path == "/health":
                healthy = True
                if health_check is not None:
                    try:
                        healthy = await health_check()
                    except Exception as exc:
                        log.warning(json.dumps({"event": "health_check_error", "err": str(exc)}))
                        healthy = False
                status_code = b"200 OK" if healthy else b"503 Service Unavailable"
                body = json.dumps({"healthy": healthy}).encode()
                writer.write(
                    b"HTTP/1.1 " + status_code + b"\r\n"
                    b"Content-Type: application/json\r\n"
                    b"Connection: close\r\n\r\n" + body
                )
                await writer.drain()
                return

            if auth_token:
                header_auth = headers.get(b"authorization", b"").decode("utf-8", errors="ignore")
                token_ok = header_auth == f"Bearer {auth_token}" or query.get("token", [""])[0] == auth_token
                if not token_ok:
                    writer.write(b"HTTP/1.1 401 Unauthorized\r\nConnection: close\r\n\r\n")
                    await writer.drain()
                    return

            if parsed.path not in ("/", "/metrics"):
                writer.write(b"HTTP/1.1 404 Not Found\r\nConnection: close\r\n\r\n")
                await writer.drain()
                return

            body = metrics.render()
            writer.write(
                b"HTTP/1.1 200 OK\r\n"
                b"Content-Type: " + CONTENT_TYPE_LATEST.encode() + b"\r\n"
                b"Connection: close\r\n\r\n" + body
            )
            await writer.drain()
        finally:
            writer.close()

    return await asyncio.start_server(handle, host, port)

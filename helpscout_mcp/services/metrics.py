"""CloudWatch custom metrics for Help Scout API calls, with background batching.

Every call made through :class:`~helpscout_mcp.services.helpscout_client.HelpScoutClient`
records one request count, its latency and, on failure, the normalized
error kind.

Design
------
* Data points are collected in a thread-safe in-memory buffer.
* With ``METRICS_ENABLED=true`` a daemon thread flushes the buffer to
  CloudWatch every ``FLUSH_INTERVAL_SECONDS``; otherwise the points are only
  logged at DEBUG and dropped on flush.
* Operation labels collapse numeric path segments (``/conversations/123``
  → ``/conversations/{id}``) to keep dimension cardinality bounded.

Usage
-----
>>> from helpscout_mcp.services.metrics import metrics
>>> metrics.record_success("GET", "/mailboxes", latency_ms=123.4)
>>> metrics.record_failure("GET", "/conversations/42", error_kind="NOT_FOUND")
"""

from __future__ import annotations

import atexit
import logging
import os
import re
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "HelpScoutMCP"
SERVICE = "helpscout"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call

_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")


def operation_label(method: str, path: str) -> str:
    """``("GET", "/conversations/42/threads")`` → ``"GET /conversations/{id}/threads"``."""
    return f"{method.upper()} {_NUMERIC_SEGMENT.sub('/{id}', path.split('?', 1)[0])}"


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self, *, enabled: bool | None = None) -> None:
        if enabled is None:
            enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._enabled = enabled
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None  # lazy-init

        if self._enabled:
            self._start_flush_thread()

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ── Lazy CloudWatch client ────────────────────────────────────────

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_success(self, method: str, path: str, latency_ms: float) -> None:
        operation = operation_label(method, path)
        now = datetime.now(UTC)
        self._append(self._count(now, {"Status": "success"}))
        self._append(self._latency(now, operation, latency_ms))
        logger.debug("Metric: %s success latency=%.1fms", operation, latency_ms)

    def record_failure(
        self,
        method: str,
        path: str,
        error_kind: str,
        latency_ms: float = 0,
    ) -> None:
        operation = operation_label(method, path)
        now = datetime.now(UTC)
        self._append(self._count(now, {"Status": "failure"}))
        self._append(
            {
                "MetricName": "HelpScoutAPI/ErrorCount",
                "Dimensions": self._dimensions({"ErrorKind": error_kind}),
                "Timestamp": now,
                "Value": 1,
                "Unit": "Count",
            }
        )
        if latency_ms > 0:
            self._append(self._latency(now, operation, latency_ms))
        logger.debug(
            "Metric: %s failure kind=%s latency=%.1fms", operation, error_kind, latency_ms,
        )

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    @staticmethod
    def _dimensions(extra: dict[str, str]) -> list[dict[str, str]]:
        dims = [{"Name": "Service", "Value": SERVICE}]
        dims.extend({"Name": name, "Value": value} for name, value in extra.items())
        return dims

    def _count(self, now: datetime, extra: dict[str, str]) -> dict[str, Any]:
        return {
            "MetricName": "HelpScoutAPI/RequestCount",
            "Dimensions": self._dimensions(extra),
            "Timestamp": now,
            "Value": 1,
            "Unit": "Count",
        }

    def _latency(self, now: datetime, operation: str, latency_ms: float) -> dict[str, Any]:
        return {
            "MetricName": "HelpScoutAPI/Latency",
            "Dimensions": self._dimensions({"Operation": operation}),
            "Timestamp": now,
            "Value": latency_ms,
            "Unit": "Milliseconds",
        }

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()

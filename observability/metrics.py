"""
Prometheus metrics for staged execution.

Each ExecutionMetrics owns its own CollectorRegistry so tests and multiple
controllers never collide on metric names.

Usage:
    >>> from observability.metrics import ExecutionMetrics
    >>> metrics = ExecutionMetrics()
    >>> metrics.record_execution(mode="paper", status="filled")
    >>> metrics.set_kill_switch(False)
    >>> metrics.export()
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Venue round-trips are dominated by polling, so buckets go up to a minute
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)

_PREFIX = "staged_exec"


class ExecutionMetrics:
    """
    Execution counters, risk gauges and latency histogram.

    Metrics tracked:
    - executions_total{mode,status}
    - venue_errors_total{type}
    - risk_gate_rejections_total{gate}
    - kill_switch_active, daily_pnl_usd
    - execution_latency_seconds
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.executions = Counter(
            f"{_PREFIX}_executions_total",
            "Executions reaching a terminal status",
            ["mode", "status"],
            registry=self.registry,
        )
        self.venue_errors = Counter(
            f"{_PREFIX}_venue_errors_total",
            "Classified venue errors",
            ["type"],
            registry=self.registry,
        )
        self.gate_rejections = Counter(
            f"{_PREFIX}_risk_gate_rejections_total",
            "Risk gate failures by gate",
            ["gate"],
            registry=self.registry,
        )
        self.kill_switch = Gauge(
            f"{_PREFIX}_kill_switch_active",
            "1 while the kill switch is active",
            registry=self.registry,
        )
        self.daily_pnl = Gauge(
            f"{_PREFIX}_daily_pnl_usd",
            "Realised PnL for the current UTC day",
            registry=self.registry,
        )
        self.execution_latency = Histogram(
            f"{_PREFIX}_execution_latency_seconds",
            "Time from execute() to terminal status",
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )
        logger.debug("ExecutionMetrics initialized")

    def record_execution(self, mode: str, status: str) -> None:
        self.executions.labels(mode=mode, status=status).inc()

    def record_venue_error(self, error_type: str) -> None:
        self.venue_errors.labels(type=error_type).inc()

    def record_gate_rejections(self, gates: list[str]) -> None:
        for gate in gates:
            self.gate_rejections.labels(gate=gate).inc()

    def set_kill_switch(self, active: bool) -> None:
        self.kill_switch.set(1 if active else 0)

    def set_daily_pnl(self, value: float) -> None:
        self.daily_pnl.set(value)

    def record_execution_latency(self, seconds: float) -> None:
        self.execution_latency.observe(seconds)

    def get_value(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current sample value, 0.0 if the series was never touched."""
        value = self.registry.get_sample_value(f"{_PREFIX}_{name}", labels or {})
        return 0.0 if value is None else value

    def export(self) -> dict[str, Any]:
        """Snapshot of every sample in the registry as a plain dict."""
        samples: dict[str, Any] = {}
        for family in self.registry.collect():
            for sample in family.samples:
                if sample.labels:
                    key = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                    samples.setdefault(sample.name, {})[key] = sample.value
                else:
                    samples[sample.name] = sample.value
        return {"timestamp": datetime.now(timezone.utc).isoformat(), "samples": samples}

    def exposition(self) -> bytes:
        """Prometheus text format."""
        return generate_latest(self.registry)


class LatencyTimer:
    """
    Context manager for timing operations.

    Usage:
        >>> with LatencyTimer(metrics.record_execution_latency):
        ...     fill = simulate_fill(decision)
    """

    def __init__(self, callback: Callable[[float], None]):
        self.callback = callback
        self.start_time = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.callback(time.perf_counter() - self.start_time)
        return False

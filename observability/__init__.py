"""
Observability for staged execution.

Public API:
    - ExecutionMetrics: Prometheus counters, gauges and latency histogram
    - LatencyTimer: Context manager feeding a latency callback
    - execution_logger: Structured EXECUTION_EVENT sink
"""

from observability.execution_logging import ExecutionLogger, execution_logger
from observability.metrics import ExecutionMetrics, LatencyTimer

__all__ = [
    "ExecutionMetrics",
    "LatencyTimer",
    "ExecutionLogger",
    "execution_logger",
]

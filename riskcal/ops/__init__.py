"""Operational helpers: logging and metrics."""

from riskcal.ops.logging import configure_logging
from riskcal.ops.metrics import InMemoryMetricsRecorder, MetricsRecorder, get_metrics_recorder

__all__ = [
    "configure_logging",
    "InMemoryMetricsRecorder",
    "MetricsRecorder",
    "get_metrics_recorder",
]

"""Observability layer - logging and metrics."""

from staticomment.observability.logging import setup_logging
from staticomment.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]

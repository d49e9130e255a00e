"""
Prometheus metrics for the comment publishing pipeline.

Defines and exposes metrics for:
- Submission outcomes
- Guard rejections by reason
- Git operation latency
- Push attempts and conflicts

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    start_http_server,
)

logger = logging.getLogger(__name__)

# Git operations range from sub-second local commands to slow pushes
GIT_LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


class MetricsCollector:
    """
    Prometheus metrics collector for staticomment.

    Usage:
        metrics = get_metrics()
        metrics.record_submission("published")
        metrics.record_git_operation("push", 0.8)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.submissions = Counter(
            "staticomment_submissions_total",
            "Total comment submissions by outcome",
            ["outcome"],  # published, rejected, write_failed, publish_failed
        )

        self.rejections = Counter(
            "staticomment_rejections_total",
            "Total submissions rejected by the guard pipeline",
            ["status_code"],
        )

        self.git_latency = Histogram(
            "staticomment_git_operation_seconds",
            "Time spent in git subprocesses",
            ["operation"],  # clone, pull, add, commit, push, ...
            buckets=GIT_LATENCY_BUCKETS,
        )

        self.git_errors = Counter(
            "staticomment_git_errors_total",
            "Total failed git subprocesses",
            ["operation"],
        )

        self.push_attempts = Counter(
            "staticomment_push_attempts_total",
            "Total push attempts by result",
            ["result"],  # success, rejected
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on
        """
        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_submission(self, outcome: str) -> None:
        self.submissions.labels(outcome=outcome).inc()

    def record_rejection(self, status_code: int) -> None:
        self.submissions.labels(outcome="rejected").inc()
        self.rejections.labels(status_code=str(status_code)).inc()

    def record_git_operation(self, operation: str, latency: float, success: bool = True) -> None:
        """
        Record a finished git subprocess.

        Args:
            operation: git subcommand (clone, pull, push, ...)
            latency: Wall time in seconds
            success: Whether the command exited zero
        """
        self.git_latency.labels(operation=operation).observe(latency)
        if not success:
            self.git_errors.labels(operation=operation).inc()

    def record_push_attempt(self, success: bool) -> None:
        self.push_attempts.labels(result="success" if success else "rejected").inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics

"""
Structured logging configuration using structlog.

Provides JSON-formatted logs for production and pretty console
logs for development. Supports contextual logging with bound
fields (e.g., request_id, slug).
"""

import logging
import sys

import structlog
from structlog.types import Processor

from staticomment.config.settings import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structured logging for the application.

    In production: JSON-formatted logs (easy to parse in log aggregators)
    In development: Pretty console output with colors

    Usage:
        setup_logging()
        logger = structlog.get_logger()
        logger.info("Comment published", slug="my-post")
    """
    settings = settings or get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_production:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    # Set log levels for noisy libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def log_startup_summary(settings: Settings) -> None:
    """Log the effective configuration once at startup."""
    from staticomment.sync.backend import redact

    logger = structlog.get_logger("staticomment")
    logger.info(
        "staticomment starting",
        port=settings.port,
        repo=redact(settings.git_repo),
        branch=settings.branch,
        comments_path=settings.comments_path,
        allowed_origins=settings.allowed_origin_list,
    )
    if settings.post_validation_enabled:
        logger.info("Post existence validation enabled", posts_path=settings.posts_path)
    if settings.honeypot_field:
        logger.info("Honeypot enabled", field=settings.honeypot_field)
    if settings.rate_limit_enabled:
        logger.info(
            "Rate limit enabled",
            max_requests=settings.rate_limit_max,
            window_seconds=settings.rate_limit_window,
        )
    if settings.max_links > 0:
        logger.info("Link limit enabled", max_links=settings.max_links)
    if settings.blocked_pattern_list:
        logger.info("Blocked patterns loaded", count=len(settings.blocked_pattern_list))
    if settings.min_submit_time > 0:
        logger.info("Minimum submit time enabled", seconds=settings.min_submit_time)
    if settings.ssh_insecure:
        logger.warning("SSH strict host key checking is disabled")


def bind_context(**kwargs) -> None:
    """
    Bind context variables to all subsequent log messages.

    Args:
        **kwargs: Key-value pairs to bind
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()

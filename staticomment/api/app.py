"""
FastAPI application factory.
"""

import asyncio
import contextlib
import time
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from staticomment import __version__
from staticomment.api.middleware.timeout import TimeoutMiddleware
from staticomment.api.routes import comments, health
from staticomment.comments.writer import CommentWriter
from staticomment.config.settings import Settings, get_settings
from staticomment.guard.pipeline import GuardPipeline
from staticomment.guard.rate_limit import SlidingWindowRateLimiter
from staticomment.observability.logging import bind_context, clear_context, log_startup_summary
from staticomment.observability.metrics import get_metrics
from staticomment.services.submission_service import SubmissionService
from staticomment.sync.backend import GitBackend, SubprocessGitBackend, build_ssh_command
from staticomment.sync.synchronizer import RepositorySynchronizer
from staticomment.sync.trust import HostTrustStore, KeyScanner, KnownHostsFile, ssh_keyscan

logger = structlog.get_logger(__name__)


@dataclass
class Components:
    """Long-lived objects shared by every request."""

    synchronizer: RepositorySynchronizer
    rate_limiter: SlidingWindowRateLimiter
    submission_service: SubmissionService


def build_synchronizer(
    settings: Settings,
    backend: GitBackend | None = None,
    key_scanner: KeyScanner | None = None,
) -> RepositorySynchronizer:
    """Create the working copy owner and its host trust store from settings."""
    metrics = get_metrics()
    if backend is None:
        backend = SubprocessGitBackend(
            ssh_command=build_ssh_command(
                settings.ssh_key_path, settings.known_hosts_path, settings.ssh_insecure
            ),
            metrics=metrics,
        )
    trust = HostTrustStore(
        repo_url=settings.git_repo,
        known_hosts=KnownHostsFile(settings.known_hosts_path),
        strict=not settings.ssh_insecure,
        scanner=key_scanner or ssh_keyscan,
    )
    return RepositorySynchronizer(
        backend=backend,
        trust=trust,
        repo_url=settings.git_repo,
        branch=settings.branch,
        repo_dir=settings.repo_dir,
        user_name=settings.git_user_name,
        user_email=settings.git_user_email,
        push_max_retries=settings.push_max_retries,
        comments_path=settings.comments_path,
        metrics=metrics,
    )


def build_components(
    settings: Settings,
    backend: GitBackend | None = None,
    key_scanner: KeyScanner | None = None,
    clock: Callable[[], float] | None = None,
) -> Components:
    """
    Wire the guard pipeline, writer, synchronizer and service together.

    Args:
        settings: Resolved configuration
        backend: Git backend override (defaults to the git binary)
        key_scanner: Host key scanner override (defaults to ssh-keyscan)
        clock: Wall-clock override for the submit-time check
    """
    synchronizer = build_synchronizer(settings, backend, key_scanner)
    rate_limiter = SlidingWindowRateLimiter(
        window_seconds=settings.rate_limit_window,
        max_requests=settings.rate_limit_max,
    )
    guard = GuardPipeline(
        settings,
        rate_limiter,
        resolve=synchronizer.resolve,
        clock=clock,
    )
    writer = CommentWriter(synchronizer.resolve, settings.comments_path)
    service = SubmissionService(guard, writer, synchronizer, metrics=get_metrics())
    return Components(
        synchronizer=synchronizer,
        rate_limiter=rate_limiter,
        submission_service=service,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    The initial clone must succeed; an exception here aborts startup,
    since the server is useless without a working copy.
    """
    components: Components = app.state.components
    log_startup_summary(app.state.settings)

    await components.synchronizer.clone()

    sweeper = asyncio.create_task(components.rate_limiter.run_sweeper())
    logger.info("staticomment ready")

    yield

    logger.info("staticomment shutting down")
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper


def create_app(
    settings: Settings | None = None,
    backend: GitBackend | None = None,
    key_scanner: KeyScanner | None = None,
    clock: Callable[[], float] | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    components = build_components(settings, backend, key_scanner, clock)

    app = FastAPI(
        title="staticomment",
        description="""
Receives comment form posts from a static site and publishes each one as a
YAML file committed to the site's git repository.
        """,
        version=__version__,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Service health checks"},
            {"name": "comments", "description": "Comment submission"},
        ],
    )
    app.state.settings = settings
    app.state.components = components
    app.state.submission_service = components.submission_service

    if settings.request_timeout_seconds > 0:
        app.add_middleware(
            TimeoutMiddleware,
            timeout_seconds=settings.request_timeout_seconds,
        )

    # Request logging and correlation ID middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("X-Correlation-ID")
            or str(uuid.uuid4())
        )
        bind_context(request_id=request_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            duration = time.perf_counter() - start_time
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
            return response
        finally:
            clear_context()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return PlainTextResponse("Internal server error", status_code=500)

    app.include_router(health.router, tags=["health"])
    app.include_router(comments.router, tags=["comments"])

    return app

"""
Submission service - turns one comment form post into a published commit.

Flow per request:
1. Guard pipeline (reject early, no disk or git work)
2. Comment writer (file lands in the working copy)
3. Synchronizer commit-and-push (serialized, bounded retry)
4. Redirect back to the page

A publish failure leaves the written file in the working copy. When the
failure happens after the commit, the commit stays on the local branch
and goes out with the next successful push.
"""

import asyncio

import structlog
from starlette.requests import Request
from starlette.responses import Response

from staticomment.comments.schemas import CommentRecord
from staticomment.comments.writer import CommentWriteError, CommentWriter
from staticomment.guard.pipeline import GuardPipeline, Rejection
from staticomment.observability.metrics import MetricsCollector
from staticomment.services.responses import (
    error_redirect,
    rejection_response,
    success_redirect,
)
from staticomment.sync.synchronizer import GitSyncError, RepositorySynchronizer

logger = structlog.get_logger(__name__)

MSG_SAVE_FAILED = "Failed to save comment"
MSG_PUBLISH_FAILED = "Failed to publish comment"


class SubmissionService:
    """
    Wires the guard pipeline, comment writer and synchronizer together.

    Usage:
        service = SubmissionService(guard, writer, synchronizer)
        response = await service.submit(request)
    """

    def __init__(
        self,
        guard: GuardPipeline,
        writer: CommentWriter,
        synchronizer: RepositorySynchronizer,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._guard = guard
        self._writer = writer
        self._synchronizer = synchronizer
        self._metrics = metrics

    async def submit(self, request: Request) -> Response:
        """Handle one submission and build the HTTP response."""
        try:
            submission = await self._guard.evaluate(request)
        except Rejection as rejection:
            logger.info(
                "Submission rejected",
                status_code=rejection.status_code,
                reason=rejection.message,
                redirected=rejection.redirect_url is not None,
            )
            if self._metrics is not None:
                self._metrics.record_rejection(rejection.status_code)
            return rejection_response(rejection)

        log = logger.bind(slug=submission.slug, client_ip=submission.client_ip)
        record = CommentRecord.from_submission(submission)

        try:
            relative_path = self._writer.write(record)
        except CommentWriteError as e:
            log.error("Error writing comment", error=str(e))
            self._record("write_failed")
            return error_redirect(submission.redirect_url, MSG_SAVE_FAILED)

        try:
            # Shielded: a request timeout must not cancel an in-flight git subprocess
            await asyncio.shield(
                self._synchronizer.commit_and_push(relative_path, submission.slug)
            )
        except GitSyncError as e:
            log.error("Error committing comment", path=relative_path, error=str(e))
            self._record("publish_failed")
            return error_redirect(submission.redirect_url, MSG_PUBLISH_FAILED)

        log.info("Comment saved and pushed", path=relative_path)
        self._record("published")
        return success_redirect(submission.redirect_url)

    def _record(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_submission(outcome)

"""
Repository synchronizer: the single owner of the git working copy.

State machine: UNINITIALIZED → CLONED ⇄ SYNCED.

- clone(): clone-or-reuse the working copy, configure the commit identity
- pull(): rebase onto the remote branch
- commit_and_push(): pull, stage, commit, push with bounded conflict retry

Every public operation holds one asyncio.Lock for its whole duration, so
concurrent submissions queue up and never interleave git subprocesses.
Pulling right before the commit and before every retried push keeps the
window in which two writers race as short as possible.
"""

import asyncio
import enum
import shutil
from pathlib import Path

import structlog

from staticomment.observability.metrics import MetricsCollector
from staticomment.sync.backend import GitBackend, GitCommandError
from staticomment.sync.trust import HostKeyError, HostTrustStore

logger = structlog.get_logger(__name__)

DEFAULT_PUSH_MAX_RETRIES = 3


class SyncState(enum.Enum):
    """Working copy lifecycle states."""

    UNINITIALIZED = "uninitialized"
    CLONED = "cloned"
    SYNCED = "synced"


class GitSyncError(Exception):
    """Base exception for repository synchronization failures."""


class CloneError(GitSyncError):
    """The working copy could not be created. Fatal at startup."""


class PublishError(GitSyncError):
    """A commit could not be published to the remote."""


class RepositorySynchronizer:
    """
    Serializes all git operations on one working copy.

    Args:
        backend: Git implementation (subprocess in production)
        trust: Host key trust store for the remote
        repo_url: Remote repository URL
        branch: Branch to clone, pull and push
        repo_dir: Fixed location of the working copy
        user_name: Commit author name for this working copy
        user_email: Commit author email for this working copy
        push_max_retries: Push attempts before giving up
        comments_path: Repository-relative directory staged on every commit,
            so records left behind by a failed publish go out with the next one.
            When unset only the submitted file is staged.
        metrics: Optional collector for push attempt counts
    """

    def __init__(
        self,
        backend: GitBackend,
        trust: HostTrustStore,
        repo_url: str,
        branch: str,
        repo_dir: str | Path,
        user_name: str = "staticomment",
        user_email: str = "staticomment@localhost",
        push_max_retries: int = DEFAULT_PUSH_MAX_RETRIES,
        comments_path: str | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        if push_max_retries < 1:
            raise ValueError("push_max_retries must be at least 1")
        self._backend = backend
        self._trust = trust
        self._repo_url = repo_url
        self._branch = branch
        self._repo_dir = Path(repo_dir)
        self._user_name = user_name
        self._user_email = user_email
        self._push_max_retries = push_max_retries
        self._comments_path = comments_path
        self._metrics = metrics
        self._lock = asyncio.Lock()
        self._state = SyncState.UNINITIALIZED

    @property
    def state(self) -> SyncState:
        """Current lifecycle state."""
        return self._state

    @property
    def busy(self) -> bool:
        """Whether a git operation is in flight."""
        return self._lock.locked()

    def resolve(self, relative_path: str) -> Path:
        """
        Location on disk of a repository-relative path.

        Raises:
            ValueError: If the path is absolute or escapes the working copy
        """
        if Path(relative_path).is_absolute():
            raise ValueError(f"path must be relative to the repository: {relative_path}")
        root = self._repo_dir.resolve()
        candidate = (root / relative_path).resolve()
        if candidate != root and root not in candidate.parents:
            raise ValueError(f"path escapes the repository: {relative_path}")
        return candidate

    async def clone(self) -> None:
        """
        Create the working copy, or pull if one already exists.

        On a failed clone with strict host checking, host keys are
        refreshed and the clone is retried exactly once from a clean
        directory.

        Raises:
            CloneError: If the working copy cannot be created or updated
        """
        async with self._lock:
            await self._ensure_host_keys()

            if (self._repo_dir / ".git").exists():
                logger.info("Repository already cloned, pulling instead", path=str(self._repo_dir))
                try:
                    await self._pull_locked()
                except GitCommandError as e:
                    raise CloneError(f"git pull of existing working copy: {e}") from e
                self._state = SyncState.SYNCED
                return

            self._repo_dir.mkdir(parents=True, exist_ok=True)
            try:
                await self._backend.clone(self._repo_url, self._branch, self._repo_dir)
            except GitCommandError as e:
                if not self._trust.strict:
                    raise CloneError(f"git clone: {e}") from e
                logger.warning("git clone failed, refreshing SSH host keys and retrying")
                await self._retry_clone_after_refresh(e)

            try:
                await self._backend.configure_identity(
                    self._repo_dir, self._user_name, self._user_email
                )
            except GitCommandError as e:
                raise CloneError(f"git config identity: {e}") from e

            self._state = SyncState.CLONED
            logger.info("Repository cloned", branch=self._branch, path=str(self._repo_dir))

    async def _retry_clone_after_refresh(self, first_error: GitCommandError) -> None:
        try:
            await self._trust.refresh_host_keys()
        except HostKeyError as scan_error:
            logger.error("ssh-keyscan failed", error=str(scan_error))
            raise CloneError(f"git clone: {first_error}") from first_error

        shutil.rmtree(self._repo_dir, ignore_errors=True)
        self._repo_dir.mkdir(parents=True, exist_ok=True)
        try:
            await self._backend.clone(self._repo_url, self._branch, self._repo_dir)
        except GitCommandError as e:
            raise CloneError(f"git clone after host key refresh: {e}") from e

    async def _ensure_host_keys(self) -> None:
        try:
            await self._trust.ensure_host_keys()
        except HostKeyError as e:
            logger.warning("Could not ensure host keys", error=str(e))

    async def pull(self) -> None:
        """
        Rebase the working copy onto the remote branch.

        Raises:
            GitSyncError: If the working copy has not been cloned
            GitCommandError: If the pull fails
        """
        async with self._lock:
            self._require_initialized()
            await self._pull_locked()
            self._state = SyncState.SYNCED

    async def _pull_locked(self) -> None:
        await self._backend.pull_rebase(self._repo_dir)

    async def commit_and_push(self, path: str, slug: str) -> int:
        """
        Commit a new comment file and publish it.

        With a comments path configured the whole comments directory is
        staged, which also picks up records whose earlier publish failed.
        A failed commit resets those index entries so later pulls still work.

        Args:
            path: New file, relative to the working copy root
            slug: Page identifier, used in the commit message

        Returns:
            The push attempt (1-based) that succeeded

        Raises:
            PublishError: If pull, add or commit fail, if a retry rebase
                fails (the rebase is aborted first), or if every push
                attempt is rejected
        """
        async with self._lock:
            self._require_initialized()
            log = logger.bind(path=path, slug=slug)

            try:
                await self._pull_locked()
            except GitCommandError as e:
                raise PublishError(f"git pull before commit: {e}") from e

            staged = self._comments_path or path
            try:
                await self._backend.add(self._repo_dir, staged)
            except GitCommandError as e:
                raise PublishError(f"git add: {e}") from e

            try:
                await self._backend.commit(self._repo_dir, f"Add comment on {slug}")
            except GitCommandError as e:
                # A dirty index would make every later pull --rebase fail
                await self._unstage(staged)
                raise PublishError(f"git commit: {e}") from e
            self._state = SyncState.CLONED

            for attempt in range(1, self._push_max_retries + 1):
                try:
                    await self._backend.push(self._repo_dir)
                except GitCommandError as e:
                    self._record_push(success=False)
                    log.warning(
                        "git push failed, retrying after pull --rebase",
                        attempt=attempt,
                        max_attempts=self._push_max_retries,
                        error=str(e),
                    )
                    await self._rebase_after_rejected_push()
                    continue

                self._record_push(success=True)
                self._state = SyncState.SYNCED
                log.info("Comment pushed", attempt=attempt)
                return attempt

            raise PublishError(f"git push failed after {self._push_max_retries} attempts")

    async def _unstage(self, path: str) -> None:
        try:
            await self._backend.unstage(self._repo_dir, path)
        except GitCommandError as e:
            logger.warning("git reset of staged comments failed", path=path, error=str(e))

    async def _rebase_after_rejected_push(self) -> None:
        try:
            await self._pull_locked()
        except GitCommandError as pull_error:
            # The rebase may have stopped on a conflict; leave a clean tree behind
            try:
                await self._backend.abort_rebase(self._repo_dir)
            except GitCommandError as abort_error:
                logger.warning("git rebase --abort failed", error=str(abort_error))
            raise PublishError(f"git pull during push retry: {pull_error}") from pull_error

    def _require_initialized(self) -> None:
        if self._state is SyncState.UNINITIALIZED:
            raise GitSyncError("working copy has not been cloned")

    def _record_push(self, success: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_push_attempt(success)

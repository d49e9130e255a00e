"""
Repository backend interface and its subprocess implementation.

The synchronizer only needs a handful of git verbs, expressed by the
GitBackend interface. SubprocessGitBackend shells out to the git binary
with GIT_SSH_COMMAND pointing at the configured key and known-hosts file.
Arguments and error output are redacted before logging so credentials
embedded in remote URLs never reach the logs.
"""

import asyncio
import os
import re
import shlex
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import Path

import structlog

from staticomment.observability.metrics import MetricsCollector

logger = structlog.get_logger(__name__)

_URL_USERINFO = re.compile(r"([A-Za-z][A-Za-z0-9+.-]*://)[^/@\s]+@")

# Keep only the end of stderr in errors and logs
_STDERR_TAIL = 2000


def redact(text: str) -> str:
    """Strip ``user[:password]@`` from any URL in the text."""
    return _URL_USERINFO.sub(r"\1", text)


def redact_args(args: Sequence[str]) -> list[str]:
    return [redact(arg) for arg in args]


def build_ssh_command(key_path: str, known_hosts_path: str, insecure: bool) -> str:
    """GIT_SSH_COMMAND for the configured key and host checking mode."""
    if insecure:
        return (
            f"ssh -i {shlex.quote(key_path)} "
            "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"
        )
    return f"ssh -i {shlex.quote(key_path)} -o UserKnownHostsFile={shlex.quote(known_hosts_path)}"


class CommandError(Exception):
    """A subprocess exited non-zero or could not be started."""

    def __init__(
        self,
        program: str,
        args: Sequence[str],
        cwd: str | None,
        returncode: int | None,
        stderr: str = "",
    ) -> None:
        self.program = program
        self.args_redacted = redact_args(args)
        self.cwd = cwd
        self.returncode = returncode
        self.stderr = redact(stderr)[-_STDERR_TAIL:]
        super().__init__(
            f"{program} {' '.join(self.args_redacted)} failed "
            f"(exit {returncode}) in {cwd}"
        )


class GitCommandError(CommandError):
    """A git subprocess failed."""


async def run_command(
    program: str,
    args: Sequence[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    error_class: type[CommandError] = CommandError,
) -> str:
    """
    Run a subprocess to completion and return its stdout.

    The call blocks the awaiting task until the process exits; there is
    no timeout and no cancellation of the child.

    Raises:
        CommandError (or error_class): On non-zero exit or spawn failure
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            program,
            *args,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise error_class(program, args, cwd, None, str(e)) from e

    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise error_class(
            program, args, cwd, proc.returncode, stderr.decode("utf-8", "replace")
        )
    return stdout.decode("utf-8", "replace")


class GitBackend(ABC):
    """
    The git operations the synchronizer relies on.

    Every method raises GitCommandError on failure. Implementations are
    not expected to be safe for concurrent use; the synchronizer
    serializes all calls.
    """

    @abstractmethod
    async def clone(self, url: str, branch: str, dest: Path) -> None:
        """Single-branch clone of `branch` into `dest`."""

    @abstractmethod
    async def pull_rebase(self, workdir: Path) -> None:
        """Fetch and rebase local commits onto the upstream branch."""

    @abstractmethod
    async def add(self, workdir: Path, path: str) -> None:
        """Stage a path relative to the working copy root."""

    @abstractmethod
    async def commit(self, workdir: Path, message: str) -> None:
        """Commit staged changes."""

    @abstractmethod
    async def push(self, workdir: Path) -> None:
        """Push the current branch to its upstream."""

    @abstractmethod
    async def unstage(self, workdir: Path, path: str) -> None:
        """Reset the index entries under a path back to HEAD, keeping the files."""

    @abstractmethod
    async def abort_rebase(self, workdir: Path) -> None:
        """Abandon an in-progress rebase, restoring the pre-rebase state."""

    @abstractmethod
    async def configure_identity(self, workdir: Path, name: str, email: str) -> None:
        """Set the commit author for this working copy only."""


class SubprocessGitBackend(GitBackend):
    """
    GitBackend that runs the git binary.

    Args:
        ssh_command: Value for GIT_SSH_COMMAND
        git_binary: Executable to run
        metrics: Optional collector for per-operation latency
    """

    def __init__(
        self,
        ssh_command: str,
        git_binary: str = "git",
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._ssh_command = ssh_command
        self._git_binary = git_binary
        self._metrics = metrics

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["GIT_SSH_COMMAND"] = self._ssh_command
        env["GIT_TERMINAL_PROMPT"] = "0"
        return env

    async def _run(self, cwd: Path, *args: str) -> str:
        operation = args[0] if args else "git"
        log = logger.bind(command=self._git_binary, args=redact_args(args), cwd=str(cwd))
        log.info("Running git")

        start = time.perf_counter()
        try:
            output = await run_command(
                self._git_binary,
                args,
                cwd=str(cwd),
                env=self._env(),
                error_class=GitCommandError,
            )
        except GitCommandError as e:
            if self._metrics is not None:
                self._metrics.record_git_operation(
                    operation, time.perf_counter() - start, success=False
                )
            log.warning("Git command failed", returncode=e.returncode, stderr=e.stderr)
            raise

        if self._metrics is not None:
            self._metrics.record_git_operation(operation, time.perf_counter() - start)
        return output

    async def clone(self, url: str, branch: str, dest: Path) -> None:
        await self._run(
            dest.parent, "clone", "--branch", branch, "--single-branch", url, str(dest)
        )

    async def pull_rebase(self, workdir: Path) -> None:
        await self._run(workdir, "pull", "--rebase")

    async def add(self, workdir: Path, path: str) -> None:
        await self._run(workdir, "add", "--", path)

    async def commit(self, workdir: Path, message: str) -> None:
        await self._run(workdir, "commit", "-m", message)

    async def push(self, workdir: Path) -> None:
        await self._run(workdir, "push")

    async def unstage(self, workdir: Path, path: str) -> None:
        await self._run(workdir, "reset", "-q", "--", path)

    async def abort_rebase(self, workdir: Path) -> None:
        await self._run(workdir, "rebase", "--abort")

    async def configure_identity(self, workdir: Path, name: str, email: str) -> None:
        await self._run(workdir, "config", "user.email", email)
        await self._run(workdir, "config", "user.name", name)

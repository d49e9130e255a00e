"""Pytest fixtures for staticomment tests."""

import asyncio
from pathlib import Path

import pytest

from staticomment.config.settings import Settings
from staticomment.sync.backend import GitBackend, GitCommandError
from staticomment.sync.trust import RemoteHost

ALLOWED_ORIGIN = "https://example.com"
REPO_URL = "git@git.example.com:site/blog.git"
SCANNED_KEY = "git.example.com ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIFakeKeyMaterialForTests"


class FakeGitBackend(GitBackend):
    """
    In-memory GitBackend that records every call.

    Failures are scripted per operation with fail(op, times); times=-1
    fails forever. An optional delay makes operations yield to the loop
    so tests can observe interleaving.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.calls: list[tuple] = []
        self.failures: dict[str, int] = {}
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    def fail(self, op: str, times: int = -1) -> None:
        self.failures[op] = times

    def ops(self) -> list[str]:
        return [call[0] for call in self.calls]

    def count(self, op: str) -> int:
        return self.ops().count(op)

    async def _call(self, op: str, *args) -> None:
        self.calls.append((op, *args))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            remaining = self.failures.get(op, 0)
            if remaining:
                if remaining > 0:
                    self.failures[op] = remaining - 1
                raise GitCommandError("git", [op], None, 1, f"{op} rejected")
        finally:
            self.in_flight -= 1

    async def clone(self, url: str, branch: str, dest: Path) -> None:
        await self._call("clone", url, branch, dest)
        (dest / ".git").mkdir(parents=True, exist_ok=True)

    async def pull_rebase(self, workdir: Path) -> None:
        await self._call("pull", workdir)

    async def add(self, workdir: Path, path: str) -> None:
        await self._call("add", workdir, path)

    async def commit(self, workdir: Path, message: str) -> None:
        await self._call("commit", workdir, message)

    async def push(self, workdir: Path) -> None:
        await self._call("push", workdir)

    async def unstage(self, workdir: Path, path: str) -> None:
        await self._call("unstage", workdir, path)

    async def abort_rebase(self, workdir: Path) -> None:
        await self._call("rebase_abort", workdir)

    async def configure_identity(self, workdir: Path, name: str, email: str) -> None:
        await self._call("config", workdir, name, email)


class FakeKeyScanner:
    """Stands in for ssh-keyscan; records the hosts it was asked about."""

    def __init__(self, material: str = SCANNED_KEY, error: Exception | None = None) -> None:
        self.material = material
        self.error = error
        self.scanned: list[RemoteHost] = []

    async def __call__(self, remote: RemoteHost) -> str:
        self.scanned.append(remote)
        if self.error is not None:
            raise self.error
        return self.material


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "git_repo": REPO_URL,
        "allowed_origins": ALLOWED_ORIGIN,
        "repo_dir": str(tmp_path / "repo"),
        "known_hosts_path": str(tmp_path / "ssh" / "known_hosts"),
        "rate_limit_max": 0,
        "min_submit_time": 0,
        "request_timeout_seconds": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def base_settings(tmp_path) -> Settings:
    """Settings pointing at a temporary working copy with spam limits relaxed."""
    return make_settings(tmp_path)


@pytest.fixture
def fake_backend() -> FakeGitBackend:
    return FakeGitBackend()


@pytest.fixture
def fake_scanner() -> FakeKeyScanner:
    return FakeKeyScanner()


@pytest.fixture
def settings_factory(tmp_path):
    """Build Settings for the temporary working copy with field overrides."""

    def _factory(**overrides) -> Settings:
        return make_settings(tmp_path, **overrides)

    return _factory


@pytest.fixture
def backend_factory():
    return FakeGitBackend


@pytest.fixture
def scanner_factory():
    return FakeKeyScanner

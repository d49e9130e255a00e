"""
SSH host key trust for the configured git remote.

The first time a remote host is used its keys are fetched with
ssh-keyscan and appended to the known-hosts file, so any git host works
without baking its keys into the image. When a git operation fails and
stale keys are suspected, the file is rewritten with freshly scanned keys.
"""

import os
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import NamedTuple
from urllib.parse import urlsplit

import structlog

from staticomment.sync.backend import CommandError, run_command

logger = structlog.get_logger(__name__)

DEFAULT_SSH_PORT = 22


class HostKeyError(Exception):
    """Host could not be resolved from the remote URL, or its keys could not be fetched."""


class RemoteHost(NamedTuple):
    """Host (and optional port) a git remote URL points at."""

    host: str
    port: int | None = None

    @property
    def known_hosts_name(self) -> str:
        """Name the SSH client looks up in known_hosts."""
        if self.port is None or self.port == DEFAULT_SSH_PORT:
            return self.host
        return f"[{self.host}]:{self.port}"


def parse_remote(url: str) -> RemoteHost:
    """
    Extract the host from a git remote URL.

    Handles scp-like ``git@host:owner/repo.git`` as well as
    ``ssh://git@host:2222/repo.git`` and ``https://host/repo.git``.

    Raises:
        HostKeyError: If no host can be found
    """
    url = url.strip()
    if "://" not in url and ":" in url:
        host = url.split(":", 1)[0].rpartition("@")[2]
        if host:
            return RemoteHost(host=host)
        raise HostKeyError(f"could not extract host from repo URL: {url}")

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise HostKeyError(f"could not extract host from repo URL: {url}") from e
    if not parts.hostname:
        raise HostKeyError(f"could not extract host from repo URL: {url}")
    return RemoteHost(host=parts.hostname, port=port)


def extract_host(url: str) -> str:
    return parse_remote(url).host


class KnownHostsFile:
    """
    A known_hosts file with explicit load / append / overwrite operations.

    The parent directory is created with mode 0700 and the file is kept
    at 0600, matching what the SSH client expects.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> list[str]:
        """Non-empty lines of the file; a missing file is empty."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return [line for line in text.splitlines() if line.strip()]

    def contains(self, name: str) -> bool:
        """Whether any entry lists `name` among its host patterns."""
        for line in self.load():
            if line.startswith("#") or line.startswith("@"):
                continue
            hosts = line.split(None, 1)[0]
            if name in hosts.split(","):
                return True
        return False

    def append(self, material: str) -> None:
        self._ensure_dir()
        existing = self.path.read_text(encoding="utf-8") if self.path.exists() else ""
        prefix = "\n" if existing and not existing.endswith("\n") else ""
        fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as fh:
            fh.write(prefix + _with_trailing_newline(material))

    def overwrite(self, material: str) -> None:
        """Replace the whole file atomically."""
        self._ensure_dir()
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".known_hosts.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(_with_trailing_newline(material))
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _ensure_dir(self) -> None:
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)


def _with_trailing_newline(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"


KeyScanner = Callable[[RemoteHost], Awaitable[str]]


async def ssh_keyscan(remote: RemoteHost) -> str:
    """Fetch a host's public keys in known_hosts format."""
    args = [remote.host]
    if remote.port is not None and remote.port != DEFAULT_SSH_PORT:
        args = ["-p", str(remote.port), remote.host]
    try:
        output = await run_command("ssh-keyscan", args)
    except CommandError as e:
        raise HostKeyError(f"ssh-keyscan {remote.known_hosts_name}: {e}") from e
    if not output.strip():
        raise HostKeyError(f"ssh-keyscan {remote.known_hosts_name} returned no keys")
    return output


class HostTrustStore:
    """
    Ensures the git remote's host is trusted before SSH operations.

    Only consulted while the synchronizer lock is held, so it needs no
    locking of its own.

    Args:
        repo_url: Configured git remote URL
        known_hosts: Backing known_hosts file
        strict: False when host key checking is disabled (insecure mode)
        scanner: Coroutine returning key material for a host
    """

    def __init__(
        self,
        repo_url: str,
        known_hosts: KnownHostsFile,
        strict: bool = True,
        scanner: KeyScanner = ssh_keyscan,
    ) -> None:
        self._repo_url = repo_url
        self._known_hosts = known_hosts
        self._strict = strict
        self._scanner = scanner

    @property
    def strict(self) -> bool:
        return self._strict

    async def ensure_host_keys(self) -> bool:
        """
        Install keys for the remote host if none are present.

        Returns:
            True if keys were fetched and appended

        Raises:
            HostKeyError: If the host cannot be parsed or scanned
        """
        if not self._strict:
            return False
        remote = parse_remote(self._repo_url)
        name = remote.known_hosts_name
        if self._known_hosts.contains(name):
            logger.info("Host key already trusted", host=name)
            return False

        logger.info("Host key not found, scanning", host=name)
        material = await self._scanner(remote)
        self._known_hosts.append(material)
        return True

    async def refresh_host_keys(self) -> None:
        """Re-scan the remote host and replace the known_hosts file with the result."""
        remote = parse_remote(self._repo_url)
        logger.info("Refreshing SSH host keys", host=remote.known_hosts_name)
        material = await self._scanner(remote)
        self._known_hosts.overwrite(material)

"""Repository synchronization: git backend, host key trust and the working copy owner.

Components:
- GitBackend / SubprocessGitBackend: The git verbs the publish pipeline needs
- HostTrustStore / KnownHostsFile: Trust-on-first-use SSH host keys for the remote
- RepositorySynchronizer: Serialized clone / pull / commit-and-push with retry
"""

from staticomment.sync.backend import (
    CommandError,
    GitBackend,
    GitCommandError,
    SubprocessGitBackend,
    build_ssh_command,
)
from staticomment.sync.synchronizer import (
    CloneError,
    GitSyncError,
    PublishError,
    RepositorySynchronizer,
    SyncState,
)
from staticomment.sync.trust import (
    HostKeyError,
    HostTrustStore,
    KnownHostsFile,
    RemoteHost,
    parse_remote,
)

__all__ = [
    "CloneError",
    "CommandError",
    "GitBackend",
    "GitCommandError",
    "GitSyncError",
    "HostKeyError",
    "HostTrustStore",
    "KnownHostsFile",
    "PublishError",
    "RemoteHost",
    "RepositorySynchronizer",
    "SubprocessGitBackend",
    "SyncState",
    "build_ssh_command",
    "parse_remote",
]

"""
Comment writer: serializes a record into the working copy.

Files land at ``<comments_path>/<slug>/<YYYYmmddHHMMSS>-<hex>.yml`` and are
created exclusively, so an existing record is never overwritten. The
writer runs before the synchronizer lock is taken; the file only has to
exist by the time ``git add`` runs.
"""

import logging
import posixpath
import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import yaml

from staticomment.comments.schemas import CommentRecord

logger = logging.getLogger(__name__)

RECORD_EXTENSION = "yml"
FILENAME_TIME_FORMAT = "%Y%m%d%H%M%S"


class CommentWriteError(Exception):
    """Raised when a comment record cannot be written."""


def generate_filename(now: datetime | None = None) -> str:
    """``<UTC timestamp>-<4 random bytes as hex>.yml``"""
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime(FILENAME_TIME_FORMAT)
    return f"{stamp}-{secrets.token_hex(4)}.{RECORD_EXTENSION}"


def dump_record(record: CommentRecord) -> str:
    return yaml.safe_dump(
        record.to_dict(),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


class CommentWriter:
    """
    Writes comment records into the repository working copy.

    Args:
        resolve: Maps a repository-relative path to its location on disk.
        comments_path: Repository-relative directory holding comment folders.
    """

    def __init__(self, resolve: Callable[[str], Path], comments_path: str) -> None:
        self._resolve = resolve
        self._comments_path = comments_path

    def write(self, record: CommentRecord, now: datetime | None = None) -> str:
        """
        Write a record to a fresh file.

        Args:
            record: Comment to persist. Its slug must already be validated.
            now: Timestamp used for the filename (defaults to current UTC time).

        Returns:
            Path of the new file relative to the working-copy root.

        Raises:
            CommentWriteError: If the directory or file cannot be created,
                including the (practically impossible) name collision.
        """
        directory = posixpath.join(self._comments_path, record.slug)
        relative_path = posixpath.join(directory, generate_filename(now))

        try:
            self._resolve(directory).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CommentWriteError(f"creating comment dir {directory}: {e}") from e

        payload = dump_record(record)
        full_path = self._resolve(relative_path)
        try:
            with open(full_path, "x", encoding="utf-8") as fh:
                fh.write(payload)
        except FileExistsError as e:
            raise CommentWriteError(f"comment file already exists: {relative_path}") from e
        except OSError as e:
            raise CommentWriteError(f"writing comment file {relative_path}: {e}") from e

        logger.debug("Wrote comment record %s", relative_path)
        return relative_path

"""Transactional editing of text configuration files.

Files edited here are live system configuration read by other privileged
tools at any moment, so a commit never writes in place: the new content goes
to a temporary file in the same directory, is flushed to disk and renamed
over the original. A reader sees either the old or the new file, never a mix.

Before writing, commit() checks that the file on disk still has the checksum
and modification time captured when it was opened. If another process changed
it in the meantime the commit is refused with ConflictError and nothing is
written.
"""

from __future__ import annotations

import contextlib
import hashlib
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from .errors import ConflictError, NotFound, PermissionDenied, WriteError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger(__name__)

ENCODING = "utf-8"
# Bytes that are not valid UTF-8 survive a round trip as lone surrogates
DECODE_ERRORS = "surrogateescape"


def checksum(data: bytes) -> str:
    """Return the SHA-256 hex digest of data."""
    return hashlib.sha256(data).hexdigest()


@dataclass
class ConfigDocument:
    """In-memory copy of one configuration file.

    Attributes:
        path: Absolute path of the file
        content: Current (possibly edited) text
        original: Text as loaded or last committed
        checksum: SHA-256 of the on-disk bytes at open/commit time
        mtime_ns: Modification time of the file at open/commit time
    """

    path: Path
    content: str
    original: str
    checksum: str
    mtime_ns: int
    discarded: bool = field(default=False, repr=False)

    @property
    def dirty(self) -> bool:
        """Whether the content differs from what is on disk."""
        return self.content != self.original

    @property
    def is_text(self) -> bool:
        """Whether the content is valid UTF-8 text (no undecodable bytes)."""
        try:
            self.content.encode(ENCODING)
        except UnicodeEncodeError:
            return False
        return True

    def update(self, content: str) -> None:
        """Replace the edited content."""
        self.content = content


class ConfigFileTransaction:
    """Opens, commits and discards ConfigDocument objects."""

    def __init__(self) -> None:
        self._log = logger.bind(component="config_transaction")

    def open(self, path: str | Path) -> ConfigDocument:
        """Load a file into a new document.

        Args:
            path: Path of the file to edit.

        Returns:
            ConfigDocument with staleness metadata captured.

        Raises:
            NotFound: If the file does not exist.
            PermissionDenied: If the file cannot be read.
        """
        target = Path(path)
        data, mtime_ns = self._read(target)
        text = data.decode(ENCODING, errors=DECODE_ERRORS)
        self._log.info("config_opened", path=str(target), size=len(data))
        return ConfigDocument(
            path=target,
            content=text,
            original=text,
            checksum=checksum(data),
            mtime_ns=mtime_ns,
        )

    def commit(self, document: ConfigDocument) -> None:
        """Atomically replace the file with the document's content.

        On success the document's original, checksum and mtime are refreshed
        so that further edits can be committed.

        Args:
            document: Document returned by open().

        Raises:
            ConflictError: If the file changed on disk since open().
            WriteError: If the new content cannot be written (disk full,
                permission denied).
        """
        if document.discarded:
            raise WriteError(f"{document.path}: document was discarded")

        target = document.path
        log = self._log.bind(path=str(target))

        try:
            current, mtime_ns = self._read(target)
        except NotFound as e:
            log.warning("config_conflict", reason="deleted")
            raise ConflictError(f"{target} was removed since it was opened") from e

        if mtime_ns != document.mtime_ns or checksum(current) != document.checksum:
            log.warning("config_conflict", reason="modified")
            raise ConflictError(f"{target} was changed by another program since it was opened")

        data = document.content.encode(ENCODING, errors=DECODE_ERRORS)
        self._replace(target, data)

        stat = target.stat()
        document.original = document.content
        document.checksum = checksum(data)
        document.mtime_ns = stat.st_mtime_ns
        log.info("config_committed", size=len(data))

    def discard(self, document: ConfigDocument) -> None:
        """Drop the in-memory copy without touching the disk."""
        document.content = document.original
        document.discarded = True
        self._log.debug("config_discarded", path=str(document.path))

    def apply(self, path: str | Path, transform: Callable[[str], str]) -> ConfigDocument:
        """Run open, transform and commit as one step.

        Args:
            path: File to edit.
            transform: Function mapping the old text to the new text.

        Returns:
            The committed document.

        Raises:
            NotFound, PermissionDenied, ConflictError, WriteError: As for open/commit.
        """
        document = self.open(path)
        document.update(transform(document.content))
        if document.dirty:
            self.commit(document)
        else:
            self._log.debug("config_unchanged", path=str(document.path))
        return document

    def _read(self, target: Path) -> tuple[bytes, int]:
        try:
            with target.open("rb") as fh:
                data = fh.read()
                mtime_ns = os.fstat(fh.fileno()).st_mtime_ns
        except FileNotFoundError as e:
            raise NotFound(f"{target} does not exist") from e
        except IsADirectoryError as e:
            raise NotFound(f"{target} is a directory") from e
        except PermissionError as e:
            raise PermissionDenied(f"Permission denied reading {target}") from e
        return data, mtime_ns

    def _replace(self, target: Path, data: bytes) -> None:
        directory = target.parent
        try:
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{target.name}.", suffix=".tmp")
        except OSError as e:
            raise WriteError(f"Cannot create temporary file in {directory}: {e.strerror}") from e

        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            self._copy_metadata(target, tmp_name)
            os.replace(tmp_name, target)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise WriteError(f"Cannot write {target}: {e.strerror or e}") from e

        self._sync_directory(directory)

    def _copy_metadata(self, target: Path, tmp_name: str) -> None:
        st = target.stat()
        os.chmod(tmp_name, st.st_mode & 0o7777)
        if os.geteuid() == 0:
            os.chown(tmp_name, st.st_uid, st.st_gid)

    def _sync_directory(self, directory: Path) -> None:
        try:
            dir_fd = os.open(directory, os.O_RDONLY)
        except OSError as e:
            self._log.debug("directory_sync_skipped", path=str(directory), error=str(e))
            return
        try:
            os.fsync(dir_fd)
        except OSError as e:
            self._log.debug("directory_sync_skipped", path=str(directory), error=str(e))
        finally:
            os.close(dir_fd)

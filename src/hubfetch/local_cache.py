"""Local content-addressed blob store and snapshot index for one repo.

Blobs are keyed by the registry's content tag, so identical bytes served
under several revisions are stored once. Each commit gets a snapshot folder
whose entries point at blobs (symlinks where supported, copies otherwise).

Key Features:
- One physical file per content tag, shared by every snapshot
- Cross-process per-tag locking via portalocker
- Atomic promotion of a finished temp file into the blob store
- Pointers created only after their blob is complete

Directory Structure:
    <cache_dir>/<repo folder>/blobs/<tag>
    <cache_dir>/<repo folder>/snapshots/<commit>/<filename>
    <cache_dir>/.locks/<repo folder>/<tag>.lock

Technical Considerations:
- Temp files live inside blobs/ so the final rename never crosses filesystems
- Lock files persist after use (the OS releases the lock on crash)
- A second writer for a tag that is already stored discards its temp file
"""

from __future__ import annotations
import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional, Tuple, BinaryIO

import portalocker

from .constants import BLOBS_DIR, DEFAULT_LOCK_TIMEOUT, INCOMPLETE_SUFFIX, REPO_TYPE_MODEL
from .paths import (
    get_blob_path,
    get_lock_path,
    get_pointer_path,
    get_snapshot_dir,
    storage_folder,
)
from .symlinks import SymlinkCapabilityCache, create_symlink, default_capability_cache

logger = logging.getLogger(__name__)


def _fsync_file(path: Path) -> None:
    """Fsync a file to ensure durability."""
    with open(path, "r+b") as f:
        os.fsync(f.fileno())


def _fsync_dir(path: Path) -> None:
    """Best-effort fsync of a directory entry (unsupported on Windows)."""
    try:
        flags = os.O_RDONLY
        if hasattr(os, "O_DIRECTORY"):
            flags |= os.O_DIRECTORY
        fd = os.open(str(path), flags)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        logger.debug("Directory fsync not supported for %s", path)


class HubCache:
    """Blob store and snapshot index for one repository in a cache root.

    Attributes:
        cache_dir: Cache root shared by all repos
        storage: This repo's folder (blobs/, refs/, snapshots/)
        capability: Symlink capability cache handle

    Thread Safety:
        Writes to a blob happen under a per-tag file lock; everything else is
        either read-only or an atomic rename.
    """

    def __init__(
        self,
        cache_dir: Path,
        repo_id: str,
        repo_type: str = REPO_TYPE_MODEL,
        capability: Optional[SymlinkCapabilityCache] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        self.cache_dir = Path(cache_dir)
        self.repo_id = repo_id
        self.repo_type = repo_type
        self.storage = storage_folder(self.cache_dir, repo_id, repo_type)
        self.capability = capability or default_capability_cache()
        self.lock_timeout = lock_timeout

    @property
    def blobs_dir(self) -> Path:
        return self.storage / BLOBS_DIR

    def blob_path(self, tag: str) -> Path:
        return get_blob_path(self.storage, tag)

    def snapshot_dir(self, commit_hash: str) -> Path:
        return get_snapshot_dir(self.storage, commit_hash)

    def pointer_path(self, commit_hash: str, relative_filename: str) -> Path:
        return get_pointer_path(self.storage, commit_hash, relative_filename)

    def lock_path(self, tag: str) -> Path:
        return get_lock_path(self.cache_dir, self.repo_id, tag, self.repo_type)

    @contextlib.contextmanager
    def lock(self, tag: str) -> Iterator[None]:
        """Hold the advisory lock serializing writes of one content tag.

        The lock is released on every exit path, including exceptions.

        Raises:
            portalocker.exceptions.LockException: If not acquired within lock_timeout
        """
        path = self.lock_path(tag)
        path.parent.mkdir(parents=True, exist_ok=True)
        with portalocker.Lock(str(path), "a", timeout=self.lock_timeout):
            logger.debug("Acquired lock %s", path)
            yield
        logger.debug("Released lock %s", path)

    @contextlib.contextmanager
    def temp_file(self, tag: str) -> Iterator[Tuple[BinaryIO, Path]]:
        """Create an exclusive temp file next to the blob it will become.

        Yields (open binary file, path). The file is closed on exit and removed
        if the block raised; on success the caller owns the path.
        """
        self.blobs_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=f".{tag}.", suffix=INCOMPLETE_SUFFIX, dir=self.blobs_dir)
        tmppath = Path(name)
        try:
            with os.fdopen(fd, "wb") as f:
                yield f, tmppath
        except BaseException:
            with contextlib.suppress(OSError):
                tmppath.unlink()
            raise

    def commit(self, temp_path: Path, tag: str, replace: bool = False) -> Path:
        """Promote a finished temp file to the blob for tag.

        If the blob already exists and replace is False, the temp file is
        discarded: the stored bytes for a tag are never rewritten.

        Args:
            temp_path: Fully written temp file
            tag: Normalized content tag
            replace: Overwrite an existing blob (force download)

        Returns:
            Path to the blob
        """
        dst = self.blob_path(tag)
        dst.parent.mkdir(parents=True, exist_ok=True)

        if dst.exists() and not replace:
            logger.debug("Blob %s already stored, discarding %s", dst, temp_path)
            with contextlib.suppress(OSError):
                temp_path.unlink()
            return dst

        try:
            _fsync_file(temp_path)
            _apply_umask_mode(temp_path)
            os.replace(str(temp_path), str(dst))
            _fsync_dir(dst.parent)
        except BaseException:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            raise

        logger.debug("Blob promoted: %s", dst)
        return dst

    def link(self, blob_path: Path, pointer_path: Path, new_blob: bool = False) -> Path:
        """Create (or replace) a snapshot pointer to a complete blob.

        Returns:
            The pointer path
        """
        create_symlink(blob_path, pointer_path, new_blob=new_blob, capability=self.capability)
        return pointer_path

    def clean_incomplete(self) -> int:
        """Remove temp files left behind by interrupted transfers.

        Only safe when no transfer for this repo is running.

        Returns:
            Number of files removed
        """
        removed = 0
        if not self.blobs_dir.exists():
            return 0
        for path in self.blobs_dir.glob(f".*{INCOMPLETE_SUFFIX}"):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.debug("Could not remove %s: %s", path, e)
        return removed


def _apply_umask_mode(path: Path) -> None:
    """Give a mkstemp file (0o600) the mode a normal file would get.

    The umask is read by creating a throwaway file next to the target,
    since os.umask() is not thread-safe to query.
    """
    probe = path.with_name(f".{path.name}.mode")
    try:
        probe.touch()
        mode = probe.stat().st_mode & 0o777
    except OSError:
        return
    finally:
        with contextlib.suppress(OSError):
            probe.unlink()
    os.chmod(path, mode)

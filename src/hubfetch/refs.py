"""Revision to commit resolution backed by ref files.

A branch or tag name is mutable on the registry; the commit it pointed at
the last time we were online is stored in <storage>/refs/<revision> so the
cache can still be used offline.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from .constants import COMMIT_HASH_REGEX
from .paths import get_ref_path
from .utils import atomic_write_text

logger = logging.getLogger(__name__)


def is_commit_hash(revision: str) -> bool:
    """Whether revision is a full commit hash rather than a branch or tag."""
    return bool(COMMIT_HASH_REGEX.fullmatch(revision))


def resolve_commit(storage_folder: Union[str, Path], revision: str) -> Optional[str]:
    """Resolve a revision to a commit hash using only local state.

    Args:
        storage_folder: Repo storage folder inside the cache
        revision: Branch, tag or commit hash

    Returns:
        The commit hash, or None if revision is not a commit and no ref is cached
    """
    if is_commit_hash(revision):
        return revision

    ref_path = get_ref_path(storage_folder, revision)
    if not ref_path.is_file():
        return None
    commit_hash = ref_path.read_text().strip()
    return commit_hash or None


def cache_ref(storage_folder: Union[str, Path], revision: str, commit_hash: str) -> None:
    """Record that revision currently points at commit_hash.

    Does nothing if revision is already that commit hash or the stored ref
    already matches. Concurrent writers are safe: the write is atomic and
    the last writer wins.
    """
    if revision == commit_hash:
        return

    ref_path = get_ref_path(storage_folder, revision)
    if ref_path.is_file() and ref_path.read_text().strip() == commit_hash:
        return

    atomic_write_text(ref_path, commit_hash)
    logger.debug("Cached ref %s -> %s", revision, commit_hash)

"""On-disk naming for the cache and for local-directory publication.

Layout under a cache root:

    <cache_dir>/<type>--<owner>--<name>/blobs/<content_tag>
    <cache_dir>/<type>--<owner>--<name>/refs/<revision>
    <cache_dir>/<type>--<owner>--<name>/snapshots/<commit>/<relative_filename>
    <cache_dir>/.locks/<type>--<owner>--<name>/<content_tag>.lock

Every path built from registry-supplied names goes through a containment
check; a name that would land outside its root raises PathEscapeError and is
never rewritten into something "safe".
"""

import os
from pathlib import Path, PurePosixPath
from typing import Union

from .constants import (
    BLOBS_DIR,
    LOCKS_DIR,
    REFS_DIR,
    REPO_ID_SEPARATOR,
    REPO_TYPE_MODEL,
    SNAPSHOTS_DIR,
)
from .errors import PathEscapeError

PathLike = Union[str, Path]


def repo_folder_name(repo_id: str, repo_type: str = REPO_TYPE_MODEL) -> str:
    """Serialize a repo id and type into a single, non-nested folder name.

    Example:
        >>> repo_folder_name("openai/clip-vit-base-patch16")
        'model--openai--clip-vit-base-patch16'
    """
    parts = [repo_type, *repo_id.split("/")]
    return REPO_ID_SEPARATOR.join(parts)


def validate_relative_filename(filename: str) -> str:
    """Reject filenames that are absolute or contain parent traversal.

    Both forward and back slashes are treated as separators so a name that is
    harmless on POSIX cannot become a traversal on Windows.

    Args:
        filename: Repository-relative filename (POSIX separators)

    Returns:
        The normalized POSIX relative filename

    Raises:
        PathEscapeError: If the name is empty, absolute, or has a '..' segment
    """
    if not filename or not filename.strip():
        raise PathEscapeError(filename, "<relative path>")

    if (filename.startswith(("/", "\\")) or
            ".." in filename.split("/") or
            ".." in filename.split("\\") or
            PurePosixPath(filename).is_absolute() or
            (len(filename) > 1 and filename[1] == ":")):  # Windows drive letter
        raise PathEscapeError(filename, "<relative path>")

    normalized = PurePosixPath(filename).as_posix()
    if normalized in (".", ""):
        raise PathEscapeError(filename, "<relative path>")
    return normalized


def _contained(root: Path, candidate: Path, relative: str) -> Path:
    """Return candidate if it normalizes to a path strictly inside root."""
    root_abs = Path(os.path.abspath(root))
    candidate_abs = Path(os.path.abspath(candidate))
    try:
        rel = candidate_abs.relative_to(root_abs)
    except ValueError:
        raise PathEscapeError(relative, str(root)) from None
    if str(rel) in ("", "."):
        raise PathEscapeError(relative, str(root))
    return candidate


def storage_folder(cache_dir: PathLike, repo_id: str, repo_type: str = REPO_TYPE_MODEL) -> Path:
    """Folder holding blobs, refs and snapshots for one repo."""
    return Path(cache_dir) / repo_folder_name(repo_id, repo_type)


def get_blob_path(storage: PathLike, tag: str) -> Path:
    """Blob location for an already-normalized content tag."""
    blobs = Path(storage) / BLOBS_DIR
    return _contained(blobs, blobs / tag, tag)


def get_ref_path(storage: PathLike, revision: str) -> Path:
    """Ref file recording which commit a branch or tag pointed to."""
    refs = Path(storage) / REFS_DIR
    return _contained(refs, refs / revision, revision)


def get_snapshot_dir(storage: PathLike, commit_hash: str) -> Path:
    """Snapshot folder for one commit."""
    snapshots = Path(storage) / SNAPSHOTS_DIR
    return _contained(snapshots, snapshots / commit_hash, commit_hash)


def get_pointer_path(storage: PathLike, revision: str, relative_filename: str) -> Path:
    """Pointer location for a file inside a commit's snapshot.

    Raises:
        PathEscapeError: If the result is not inside <storage>/snapshots
    """
    snapshots = Path(storage) / SNAPSHOTS_DIR
    pointer = snapshots / revision / Path(*PurePosixPath(relative_filename).parts)
    return _contained(snapshots, pointer, f"{revision}/{relative_filename}")


def get_local_dir_path(local_dir: PathLike, relative_filename: str) -> Path:
    """Publication target for a file inside a caller-chosen directory.

    Raises:
        PathEscapeError: If the result is not inside local_dir
    """
    root = Path(local_dir)
    target = root / Path(*PurePosixPath(relative_filename).parts)
    return _contained(root, target, relative_filename)


def get_lock_path(cache_dir: PathLike, repo_id: str, tag: str, repo_type: str = REPO_TYPE_MODEL) -> Path:
    """Advisory lock file serializing writes of one content tag."""
    locks = Path(cache_dir) / LOCKS_DIR / repo_folder_name(repo_id, repo_type)
    return _contained(locks, locks / f"{tag}.lock", tag)

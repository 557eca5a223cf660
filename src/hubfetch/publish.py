"""Publication of cached files into a caller-chosen directory.

Large files are symlinked to avoid doubling disk usage; small files are
duplicated so that a working directory holds ordinary files that do not
change when the cache is cleaned. Callers can force either behaviour.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from .constants import LOCAL_DIR_AUTO_SYMLINK_THRESHOLD
from .paths import get_local_dir_path, validate_relative_filename
from .symlinks import SymlinkCapabilityCache, copy_file_atomic, remove_entry, create_symlink

logger = logging.getLogger(__name__)


def should_symlink(size: int, use_symlinks: Optional[bool], threshold: int) -> bool:
    """Decide symlink vs. copy: explicit choice wins, else size >= threshold."""
    if use_symlinks is not None:
        return use_symlinks
    return size >= threshold


def publish_to_local_dir(
    source: Union[str, Path],
    local_dir: Union[str, Path],
    relative_filename: str,
    use_symlinks: Optional[bool] = None,
    threshold: int = LOCAL_DIR_AUTO_SYMLINK_THRESHOLD,
    capability: Optional[SymlinkCapabilityCache] = None,
) -> Path:
    """Place a cached file at local_dir/relative_filename.

    Args:
        source: Snapshot pointer or blob (symlinks are resolved to the blob)
        local_dir: Destination root
        relative_filename: Repository-relative filename
        use_symlinks: True to always symlink, False to always copy, None for auto
        threshold: Size at or above which auto mode symlinks
        capability: Symlink capability cache handle

    Returns:
        Path of the published entry

    Raises:
        PathEscapeError: If the destination would fall outside local_dir
        FileNotFoundError: If source does not resolve to an existing file
    """
    relative_filename = validate_relative_filename(relative_filename)
    dest = get_local_dir_path(local_dir, relative_filename)

    real_source = Path(os.path.realpath(source))
    if not real_source.is_file():
        raise FileNotFoundError(f"Cannot publish missing file: {source}")

    dest.parent.mkdir(parents=True, exist_ok=True)
    size = real_source.stat().st_size

    if should_symlink(size, use_symlinks, threshold):
        logger.debug("Symlinking %s into local dir at %s", real_source, dest)
        create_symlink(real_source, dest, new_blob=False, capability=capability)
    else:
        logger.debug("Duplicating %s into local dir at %s", real_source, dest)
        # Drop any previous symlink first so the copy never writes through it
        remove_entry(dest)
        copy_file_atomic(real_source, dest)

    return dest

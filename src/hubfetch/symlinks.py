"""Symlink capability detection and pointer creation.

Whether a directory supports symbolic links depends on the OS, the
filesystem and (on Windows) developer mode, so it is probed at runtime
instead of branching on the platform. Callers only ever see the boolean.

Lifecycle of the capability cache: an entry is recorded on the first probe
of a root and is never recomputed for the lifetime of the cache object. The
process-wide default instance lives until process exit; tests create their
own instances or call clear().
"""

import contextlib
import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)


class SymlinkCapabilityCache:
    """Per-root memo of whether symlinks can be created.

    Thread Safety:
        Probes for the same root are serialized so a root is probed at most
        once even when many downloads start together.
    """

    def __init__(self):
        self._supported: Dict[str, bool] = {}
        self._lock = threading.Lock()
        self.probe_count = 0

    def are_symlinks_supported(self, root: Union[str, Path]) -> bool:
        """Return whether symlinks work inside root, probing on first call.

        Args:
            root: Directory to test; created if absent

        Returns:
            True if a relative symlink could be created there
        """
        key = os.path.normcase(os.path.abspath(os.path.expanduser(os.path.expandvars(str(root)))))

        with self._lock:
            cached = self._supported.get(key)
            if cached is not None:
                return cached

            supported = self._probe(Path(key))
            self._supported[key] = supported
            return supported

    def _probe(self, root: Path) -> bool:
        self.probe_count += 1
        scratch = None
        try:
            root.mkdir(parents=True, exist_ok=True)
            scratch = Path(tempfile.mkdtemp(prefix=".symlink-probe-", dir=root))
            src = scratch / "dummy_file_src"
            src.touch()
            dst = scratch / "dummy_file_dst"
            os.symlink(os.path.relpath(src, start=dst.parent), dst)
            supported = dst.is_symlink()
        except Exception as e:
            logger.debug("Symlinks not supported in %s: %s", root, e)
            supported = False
        finally:
            if scratch is not None:
                shutil.rmtree(scratch, ignore_errors=True)

        if not supported:
            logger.warning(
                "Cache at %s does not support symlinks; files will be duplicated, "
                "which uses more disk space.",
                root,
            )
        return supported

    def clear(self) -> None:
        """Forget every probe result."""
        with self._lock:
            self._supported.clear()


_default_cache = SymlinkCapabilityCache()


def default_capability_cache() -> SymlinkCapabilityCache:
    """The process-scoped capability cache used when none is passed in."""
    return _default_cache


def remove_entry(path: Path) -> None:
    """Remove a file or symlink (broken or not) if present."""
    with contextlib.suppress(FileNotFoundError):
        path.unlink()


def copy_file_atomic(src: Path, dst: Path) -> None:
    """Copy src to dst via a temp file so dst is never seen half-written."""
    fd, tmp = tempfile.mkstemp(prefix=f".{dst.name}.", suffix=".copy", dir=dst.parent)
    os.close(fd)
    try:
        shutil.copyfile(src, tmp)
        os.replace(tmp, dst)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


def create_symlink(
    src: Union[str, Path],
    dst: Union[str, Path],
    new_blob: bool = False,
    capability: Optional[SymlinkCapabilityCache] = None,
) -> None:
    """Place src at dst as a relative symlink, or move/copy it when unsupported.

    Any existing entry at dst is replaced. When the filesystem shared by src
    and dst cannot hold symlinks, a freshly downloaded blob (new_blob) is
    moved, giving up deduplication; an existing blob is copied.

    Args:
        src: Existing file (usually a blob)
        dst: Pointer or publication path
        new_blob: Whether src was just downloaded and may be consumed
        capability: Capability cache handle (default: process-wide)

    Raises:
        FileNotFoundError: If src does not exist
        OSError: If the link, move or copy fails for another reason
    """
    capability = capability or default_capability_cache()
    abs_src = Path(os.path.abspath(src))
    abs_dst = Path(os.path.abspath(dst))

    if not abs_src.exists():
        raise FileNotFoundError(f"Cannot link missing file: {abs_src}")

    abs_dst.parent.mkdir(parents=True, exist_ok=True)
    remove_entry(abs_dst)

    try:
        relative_src = os.path.relpath(abs_src, start=abs_dst.parent)
    except ValueError:
        # Different drives on Windows
        relative_src = None

    try:
        common = os.path.commonpath([str(abs_src), str(abs_dst)])
        supported = capability.are_symlinks_supported(common)
    except ValueError:
        supported = False

    if supported:
        target = relative_src or str(abs_src)
        try:
            os.symlink(target, abs_dst)
            logger.debug("Symlinked %s -> %s", abs_dst, target)
            return
        except FileExistsError:
            # Another resolver created the same pointer concurrently
            if abs_dst.is_symlink() and os.path.realpath(abs_dst) == os.path.realpath(abs_src):
                logger.debug("Pointer %s already links to %s", abs_dst, abs_src)
                return
            raise

    if new_blob:
        logger.debug("Symlinks unsupported, moving %s -> %s", abs_src, abs_dst)
        shutil.move(str(abs_src), str(abs_dst))
    else:
        logger.debug("Symlinks unsupported, copying %s -> %s", abs_src, abs_dst)
        copy_file_atomic(abs_src, abs_dst)

"""Utility functions for hubfetch."""

import logging
import os
import platform
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional, Union

from .constants import HUBFETCH_VERSION

logger = logging.getLogger(__name__)


def humanize_size(size: float) -> str:
    """Convert bytes to human-readable format."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def build_headers(
    token: Optional[str] = None,
    user_agent: Optional[Union[str, Dict[str, str]]] = None,
) -> Dict[str, str]:
    """Build the headers sent on every registry call.

    Args:
        token: Bearer token; no authorization header is sent when None
        user_agent: Extra user-agent info, as a string or a dict of name/version

    Returns:
        Header dict (lowercase names)
    """
    ua = f"hubfetch/{HUBFETCH_VERSION}; python/{platform.python_version()}"
    if isinstance(user_agent, dict):
        ua += "; " + "; ".join(f"{k}/{v}" for k, v in user_agent.items())
    elif isinstance(user_agent, str) and user_agent:
        ua += "; " + user_agent

    headers = {"user-agent": ua}
    if token:
        headers["authorization"] = f"Bearer {token}"
    return headers


def check_disk_space(expected_size: int, target_dir: Path) -> bool:
    """Warn when a directory's filesystem lacks room for a download.

    Never raises: a failed check is logged, not enforced.

    Returns:
        False if the shortfall was detected, True otherwise
    """
    # Walk up to an existing directory; disk_usage needs a real path
    probe = Path(target_dir)
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent

    try:
        free = shutil.disk_usage(probe).free
    except OSError as e:
        logger.debug("Could not check disk space for %s: %s", target_dir, e)
        return True

    if free < expected_size:
        logger.warning(
            "Not enough free disk space to download the file. "
            "The expected file size is: %s. The target location %s only has %s free.",
            humanize_size(expected_size), target_dir, humanize_size(free),
        )
        return False
    return True


def atomic_write_text(path: Path, text: str) -> None:
    """Atomically write text to a file (temp file, fsync, rename).

    Args:
        path: Target file path
        text: Text content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        mode="w",
        delete=False,
        dir=path.parent,
        prefix=f".{path.name}.tmp-",
    ) as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
        tmp = Path(f.name)

    try:
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

"""Whole-revision downloads with a bounded worker pool."""

import fnmatch
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import requests

from .config import HubSettings, SymlinkMode, get_settings
from .constants import DEFAULT_MAX_WORKERS, REPO_TYPE_MODEL
from .download import hub_download
from .errors import (
    ConfigurationError,
    NotFoundOfflineError,
    NotFoundOnlineError,
    UpstreamUnreachableError,
)
from .paths import get_snapshot_dir, storage_folder
from .progress import GroupedProgress, GroupedProgressAggregator
from .publish import publish_to_local_dir
from .refs import cache_ref, resolve_commit
from .remote import get_repo_info
from .symlinks import SymlinkCapabilityCache
from .utils import build_headers

logger = logging.getLogger(__name__)


def _as_list(patterns: Optional[Union[str, Sequence[str]]]) -> List[str]:
    if patterns is None:
        return []
    if isinstance(patterns, str):
        return [patterns]
    return list(patterns)


def filter_repo_files(
    filenames: Iterable[str],
    allow_patterns: Optional[Union[str, Sequence[str]]] = None,
    ignore_patterns: Optional[Union[str, Sequence[str]]] = None,
) -> List[str]:
    """Keep files matching any allow pattern and no ignore pattern.

    No allow patterns means everything is allowed. A pattern ending in "/"
    matches the whole folder.

    Example:
        >>> filter_repo_files(["a.json", "b.bin"], ignore_patterns="*.bin")
        ['a.json']
    """
    def _expand(p: str) -> str:
        return p + "*" if p.endswith("/") else p

    allow = [_expand(p) for p in _as_list(allow_patterns)]
    ignore = [_expand(p) for p in _as_list(ignore_patterns)]

    selected = []
    for name in filenames:
        if allow and not any(fnmatch.fnmatch(name, p) for p in allow):
            continue
        if any(fnmatch.fnmatch(name, p) for p in ignore):
            continue
        selected.append(name)
    return selected


def _publish_snapshot(
    snapshot_dir: Path,
    local_dir: Path,
    use_symlinks: Optional[bool],
    threshold: int,
    capability: Optional[SymlinkCapabilityCache],
) -> None:
    """Publish every file already in a snapshot folder into local_dir."""
    for entry in sorted(snapshot_dir.rglob("*")):
        if entry.is_dir():
            continue
        relative = entry.relative_to(snapshot_dir).as_posix()
        publish_to_local_dir(
            entry, local_dir, relative,
            use_symlinks=use_symlinks, threshold=threshold, capability=capability,
        )


def snapshot_download(
    repo_id: str,
    *,
    revision: Optional[str] = None,
    cache_dir: Optional[Union[str, Path]] = None,
    local_dir: Optional[Union[str, Path]] = None,
    local_dir_use_symlinks: Union[bool, str] = "auto",
    max_workers: int = DEFAULT_MAX_WORKERS,
    allow_patterns: Optional[Union[str, Sequence[str]]] = None,
    ignore_patterns: Optional[Union[str, Sequence[str]]] = None,
    force_download: bool = False,
    local_files_only: bool = False,
    etag_timeout: Optional[float] = None,
    endpoint: Optional[str] = None,
    token: Optional[str] = None,
    user_agent: Optional[Union[str, Dict[str, str]]] = None,
    proxies: Optional[Dict[str, str]] = None,
    progress: Optional[GroupedProgress] = None,
    session: Optional[requests.Session] = None,
    capability: Optional[SymlinkCapabilityCache] = None,
    settings: Optional[HubSettings] = None,
) -> Path:
    """Download every file of a repo revision.

    The file list and commit come from the model info API; each file is then
    resolved with hub_download at that commit, at most max_workers at a
    time. The first failure cancels the files not yet started and is raised.

    Args:
        repo_id: "owner/name" of the repository
        revision: Branch, tag or commit hash (default: settings.default_revision)
        max_workers: Maximum number of concurrent file downloads
        allow_patterns: Only files matching one of these globs are downloaded
        ignore_patterns: Files matching one of these globs are skipped
        progress: Receives report(filename, percent) for every file
        (other arguments as for hub_download)

    Returns:
        The snapshot folder, or local_dir when given

    Raises:
        ConfigurationError: If max_workers < 1, or offline with force_download
        NotFoundOfflineError: If offline-only and the revision is not cached
        NotFoundOnlineError: If the registry is unreachable and the revision is not cached
    """
    if max_workers < 1:
        raise ConfigurationError(f"max_workers must be at least 1, got {max_workers}")

    settings = settings or get_settings()
    revision = revision or settings.default_revision
    cache_root = Path(cache_dir) if cache_dir else settings.cache_dir
    storage = storage_folder(cache_root, repo_id, REPO_TYPE_MODEL)
    local_files_only = local_files_only or settings.offline
    description = f"{repo_id}@{revision}"

    error: Optional[UpstreamUnreachableError] = None
    if not local_files_only:
        try:
            info = get_repo_info(
                repo_id,
                endpoint or settings.endpoint,
                revision=revision,
                headers=build_headers(token, user_agent),
                timeout=etag_timeout if etag_timeout is not None else settings.etag_timeout,
                session=session,
                proxies=proxies,
            )
        except UpstreamUnreachableError as e:
            logger.warning("Could not reach the registry for %s, trying the local cache: %s", description, e)
            error = e
        else:
            if not info.sha:
                raise ConfigurationError(f"Registry did not return a commit for {description}")
            cache_ref(storage, revision, info.sha)

            filenames = filter_repo_files(
                (s.rfilename for s in info.siblings), allow_patterns, ignore_patterns
            )
            logger.info("Fetching %d files of %s at %s", len(filenames), repo_id, info.sha)
            aggregator = GroupedProgressAggregator(progress) if progress is not None else None

            def fetch_one(filename: str) -> Path:
                path = hub_download(
                    repo_id,
                    filename,
                    revision=info.sha,
                    cache_dir=cache_root,
                    local_dir=local_dir,
                    local_dir_use_symlinks=local_dir_use_symlinks,
                    force_download=force_download,
                    etag_timeout=etag_timeout,
                    endpoint=endpoint,
                    token=token,
                    user_agent=user_agent,
                    proxies=proxies,
                    progress=aggregator.callback_for(filename) if aggregator else None,
                    session=session,
                    capability=capability,
                    settings=settings,
                )
                if aggregator is not None:
                    aggregator.complete(filename)
                return path

            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = [executor.submit(fetch_one, name) for name in filenames]
                try:
                    for future in futures:
                        future.result()
                except BaseException:
                    for future in futures:
                        future.cancel()
                    raise

            if local_dir is not None:
                return Path(local_dir)
            return get_snapshot_dir(storage, info.sha)

    if force_download:
        raise ConfigurationError(
            "There is no connection or local_files_only was passed, "
            "so force_download is not an accepted option."
        ) from error

    commit_hash = resolve_commit(storage, revision)
    if commit_hash is not None:
        snapshot_dir = get_snapshot_dir(storage, commit_hash)
        if snapshot_dir.is_dir():
            logger.debug("Serving %s from cache at commit %s", description, commit_hash)
            if local_dir is None:
                return snapshot_dir
            _publish_snapshot(
                snapshot_dir,
                Path(local_dir),
                SymlinkMode.parse(local_dir_use_symlinks).as_override(),
                settings.local_dir_auto_symlink_threshold,
                capability,
            )
            return Path(local_dir)

    if local_files_only:
        raise NotFoundOfflineError(description)
    raise NotFoundOnlineError(description) from error

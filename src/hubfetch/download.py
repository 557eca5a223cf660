"""Single-file resolution: from (repo, revision, filename) to a local path.

Resolution runs through a fixed sequence of states:

1. Shortcut: a commit-hash revision whose pointer already exists is
   returned without any network call.
2. Metadata fetch (skipped when offline): one HEAD request gives the commit
   the revision points at, the content tag of the file, where its bytes live
   and its size. If the registry cannot be reached, resolution continues
   offline.
3. Online resolve: record the revision -> commit ref, then reuse the
   existing pointer, or link an existing blob, or download.
4. Offline resolve: use the last cached ref for the revision and its pointer.
5. Link or download: under the per-tag lock, link a stored blob, or stream
   into a temp file, promote it to a blob and create the snapshot pointer.
6. Publish: return the pointer, or place the file in the caller's local_dir.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

import requests

from .config import DownloadOptions, HubSettings, ResolvedOptions, get_settings
from .errors import (
    ConfigurationError,
    NotFoundOfflineError,
    NotFoundOnlineError,
    UpstreamUnreachableError,
)
from .local_cache import HubCache
from .paths import validate_relative_filename
from .progress import ProgressCallback
from .publish import publish_to_local_dir
from .refs import cache_ref, is_commit_hash, resolve_commit
from .remote import FileMetadata, get_file_metadata, hub_file_url
from .symlinks import SymlinkCapabilityCache
from .transfer import http_get, strip_authorization
from .utils import build_headers, check_disk_space

logger = logging.getLogger(__name__)


class FileResolver:
    """Resolve one file of one repo revision into the cache.

    Construction validates the filename and computes the request URL;
    nothing touches the filesystem or network until resolve() is called.
    """

    def __init__(
        self,
        options: ResolvedOptions,
        session: Optional[requests.Session] = None,
        capability: Optional[SymlinkCapabilityCache] = None,
    ):
        self.options = options
        self.session = session
        self.relative_filename = validate_relative_filename(options.filename)
        self.cache = HubCache(
            options.cache_dir,
            options.repo_id,
            options.repo_type,
            capability=capability,
            lock_timeout=options.lock_timeout,
        )
        self.headers = build_headers(options.token, options.user_agent)
        self.url = hub_file_url(
            options.repo_id, self.relative_filename, options.endpoint, revision=options.revision
        )

    @property
    def description(self) -> str:
        return f"{self.options.repo_id}/{self.relative_filename}@{self.options.revision}"

    def resolve(self, progress: Optional[ProgressCallback] = None) -> Path:
        """Run the resolution and return the final path.

        Raises:
            PathEscapeError: If a computed path would leave its root
            ConfigurationError: On contradictory options or a non-registry remote
            NotFoundOfflineError: If offline-only and nothing is cached
            NotFoundOnlineError: If the registry is unreachable and nothing is cached
            TransferError: If the content transfer is truncated
            UpstreamUnreachableError: If the content transfer cannot connect
        """
        opts = self.options

        if is_commit_hash(opts.revision) and not opts.force_download:
            pointer = self.cache.pointer_path(opts.revision, self.relative_filename)
            if pointer.exists():
                logger.debug("Cache hit for commit %s: %s", opts.revision, pointer)
                return self._publish(pointer)

        if opts.local_files_only:
            return self._resolve_offline(None)

        try:
            metadata = get_file_metadata(
                self.url,
                headers=self.headers,
                timeout=opts.etag_timeout,
                session=self.session,
                proxies=opts.proxies,
            )
        except UpstreamUnreachableError as e:
            logger.warning("Could not reach the registry for %s, trying the local cache: %s", self.description, e)
            return self._resolve_offline(e)

        return self._resolve_online(metadata, progress)

    def _resolve_online(self, metadata: FileMetadata, progress: Optional[ProgressCallback]) -> Path:
        opts = self.options
        if not metadata.commit_hash:
            raise ConfigurationError(
                f"Distant resource {self.url} does not seem to be on a model registry: "
                f"no commit hash was returned. Check your endpoint, firewall and proxy settings."
            )
        if not metadata.etag:
            raise ConfigurationError(
                f"Distant resource {self.url} does not have an ETag; "
                f"reproducibility cannot be ensured."
            )

        commit_hash = metadata.commit_hash
        tag = metadata.etag
        pointer = self.cache.pointer_path(commit_hash, self.relative_filename)
        blob = self.cache.blob_path(tag)

        cache_ref(self.cache.storage, opts.revision, commit_hash)

        if not opts.force_download and pointer.exists():
            logger.debug("Pointer already cached: %s", pointer)
            return self._publish(pointer)

        self._link_or_download(metadata, blob, pointer, progress)
        return self._publish(pointer)

    def _resolve_offline(self, error: Optional[UpstreamUnreachableError]) -> Path:
        opts = self.options
        if opts.force_download:
            raise ConfigurationError(
                "There is no connection or local_files_only was passed, "
                "so force_download is not an accepted option."
            ) from error

        commit_hash = resolve_commit(self.cache.storage, opts.revision)
        if commit_hash is not None:
            pointer = self.cache.pointer_path(commit_hash, self.relative_filename)
            if pointer.exists():
                logger.debug("Serving %s from cache at commit %s", self.description, commit_hash)
                return self._publish(pointer)

        if opts.local_files_only:
            raise NotFoundOfflineError(self.description)
        raise NotFoundOnlineError(self.description) from error

    def _link_or_download(
        self,
        metadata: FileMetadata,
        blob: Path,
        pointer: Path,
        progress: Optional[ProgressCallback],
    ) -> None:
        """Create the pointer from a stored blob, or download the blob first.

        Both happen under the per-tag lock. Without symlink support, a new
        blob is moved onto its pointer, so a blob seen outside the lock may
        be gone by the time it is linked.
        """
        opts = self.options
        tag = metadata.etag

        download_url = metadata.location
        headers: Dict[str, str] = self.headers
        if download_url != self.url:
            headers = strip_authorization(headers)

        with self.cache.lock(tag):
            # Another worker may have finished while we waited for the lock
            if not opts.force_download:
                if pointer.exists():
                    return
                if blob.exists():
                    logger.debug("Blob %s already cached, linking %s", tag, pointer)
                    self.cache.link(blob, pointer, new_blob=False)
                    return

            if metadata.size is not None:
                targets = [self.cache.blobs_dir, blob.parent]
                if opts.local_dir is not None:
                    targets.append(opts.local_dir)
                for target in dict.fromkeys(targets):
                    check_disk_space(metadata.size, target)

            logger.info("Downloading %s to %s", self.url, blob)
            with self.cache.temp_file(tag) as (f, tmppath):
                http_get(
                    download_url,
                    f,
                    headers=headers,
                    on_progress=progress,
                    timeout=opts.download_timeout,
                    session=self.session,
                    proxies=opts.proxies,
                    min_chunk_size=opts.min_chunk_size,
                )

            self.cache.commit(tmppath, tag, replace=opts.force_download)
            self.cache.link(blob, pointer, new_blob=True)

    def _publish(self, path: Path) -> Path:
        opts = self.options
        if opts.local_dir is None:
            return path
        return publish_to_local_dir(
            path,
            opts.local_dir,
            self.relative_filename,
            use_symlinks=opts.symlink_mode.as_override(),
            threshold=opts.symlink_threshold,
            capability=self.cache.capability,
        )


def hub_download(
    repo_id: str,
    filename: str,
    *,
    subfolder: Optional[str] = None,
    revision: Optional[str] = None,
    cache_dir: Optional[Union[str, Path]] = None,
    local_dir: Optional[Union[str, Path]] = None,
    local_dir_use_symlinks: Union[bool, str] = "auto",
    force_download: bool = False,
    local_files_only: bool = False,
    etag_timeout: Optional[float] = None,
    endpoint: Optional[str] = None,
    token: Optional[str] = None,
    user_agent: Optional[Union[str, Dict[str, str]]] = None,
    proxies: Optional[Dict[str, str]] = None,
    progress: Optional[ProgressCallback] = None,
    session: Optional[requests.Session] = None,
    capability: Optional[SymlinkCapabilityCache] = None,
    settings: Optional[HubSettings] = None,
) -> Path:
    """Download a file if it is not already in the local cache.

    The cache is content-addressed: identical files are stored once and each
    revision's snapshot points at them. The returned path is the snapshot
    pointer, or the published file when local_dir is given.

    Args:
        repo_id: "owner/name" of the repository
        filename: Repository-relative filename
        subfolder: Folder inside the repo, prefixed onto filename
        revision: Branch, tag or commit hash (default: settings.default_revision)
        cache_dir: Cache root (default: settings.cache_dir)
        local_dir: Directory to place the file into, outside the cache
        local_dir_use_symlinks: "auto" (by size), True (always) or False (never)
        force_download: Download even if the file is cached
        local_files_only: Never touch the network
        etag_timeout: Seconds to wait for the metadata request
        endpoint: Registry base URL (default: settings.endpoint)
        token: Bearer token sent to the registry (never to redirect targets)
        user_agent: Extra user-agent information
        proxies: requests-style proxy mapping
        progress: Called with the fraction of the file transferred
        session: requests session to use
        capability: Symlink capability cache handle
        settings: Settings to resolve defaults from (default: process-wide)

    Returns:
        Path to the file

    Example:
        >>> path = hub_download("openai/clip-vit-base-patch16", "config.json")
    """
    options = DownloadOptions(
        repo_id=repo_id,
        filename=filename,
        subfolder=subfolder,
        revision=revision,
        cache_dir=cache_dir,
        local_dir=local_dir,
        local_dir_use_symlinks=local_dir_use_symlinks,
        force_download=force_download,
        local_files_only=local_files_only,
        etag_timeout=etag_timeout,
        endpoint=endpoint,
        token=token,
        user_agent=user_agent,
        proxies=proxies,
    ).resolve(settings or get_settings())

    return FileResolver(options, session=session, capability=capability).resolve(progress)

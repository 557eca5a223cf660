"""Registry metadata requests.

Two read-only calls are made against the registry:

- a HEAD on a file's resolve URL, returning the commit the revision points
  at, the content tag of the file, where its bytes live and how big it is;
- a GET on the model info API, returning the commit and the file listing
  of a revision (used to download a whole snapshot).

Neither call retries. Transport failures and server-side errors raise
UpstreamUnreachableError, which the resolver treats as "go offline"; a 404
raises EntryNotFoundError since the registry did answer.
"""

import logging
from typing import Dict, List, Optional
from urllib.parse import quote, urljoin, urlparse

import requests
from pydantic import BaseModel, ConfigDict, Field

from .constants import (
    DEFAULT_ETAG_TIMEOUT,
    DEFAULT_REVISION,
    HEADER_X_LINKED_ETAG,
    HEADER_X_LINKED_SIZE,
    HEADER_X_REPO_COMMIT,
    MAX_RELATIVE_REDIRECTS,
)
from .errors import EntryNotFoundError, UpstreamUnreachableError

logger = logging.getLogger(__name__)


class FileMetadata(BaseModel):
    """Result of a freshness check; never persisted."""

    commit_hash: Optional[str] = None
    etag: Optional[str] = None      # normalized content tag
    location: str                   # where the bytes can be fetched from
    size: Optional[int] = None


class RepoSibling(BaseModel):
    """One file listed in a repo revision."""

    model_config = ConfigDict(extra="ignore")

    rfilename: str
    size: Optional[int] = None


class RepoInfo(BaseModel):
    """Subset of the model info API used for snapshot downloads."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    repo_id: str = Field(alias="id")
    sha: Optional[str] = None
    siblings: List[RepoSibling] = Field(default_factory=list)


def normalize_etag(etag: Optional[str]) -> Optional[str]:
    """Strip the weak marker and surrounding quotes from an entity tag.

    Example:
        >>> normalize_etag('W/"abc"')
        'abc'
    """
    if not etag:
        return None
    value = etag.strip()
    if value.startswith("W/"):
        value = value[2:]
    value = value.strip('"')
    return value or None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def hub_file_url(
    repo_id: str,
    filename: str,
    endpoint: str,
    subfolder: Optional[str] = None,
    revision: Optional[str] = None,
) -> str:
    """Construct the resolve URL of a file.

    Example:
        >>> hub_file_url("openai/clip-vit-base-patch16", "config.json", "https://huggingface.co")
        'https://huggingface.co/openai/clip-vit-base-patch16/resolve/main/config.json'
    """
    if subfolder:
        filename = f"{subfolder.strip('/')}/{filename}"
    revision = revision or DEFAULT_REVISION
    return (
        f"{endpoint.rstrip('/')}/{repo_id}/resolve/"
        f"{quote(revision, safe='')}/{quote(filename)}"
    )


def _request(
    session: requests.Session,
    method: str,
    url: str,
    headers: Dict[str, str],
    timeout: float,
    proxies: Optional[Dict[str, str]],
    **kwargs,
) -> requests.Response:
    """Issue one request, translating transport errors."""
    try:
        return session.request(method, url, headers=headers, timeout=timeout, proxies=proxies, **kwargs)
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
        raise UpstreamUnreachableError(f"Cannot reach {url}: {e}") from e
    except requests.exceptions.RequestException as e:
        raise UpstreamUnreachableError(f"Request to {url} failed: {e}") from e


def _check_status(response: requests.Response, url: str) -> None:
    """Map HTTP error statuses onto hubfetch errors."""
    if response.status_code == 404:
        raise EntryNotFoundError(url)
    try:
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        raise UpstreamUnreachableError(f"Registry error {response.status_code}: {url}") from e


def get_file_metadata(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_ETAG_TIMEOUT,
    session: Optional[requests.Session] = None,
    proxies: Optional[Dict[str, str]] = None,
) -> FileMetadata:
    """Fetch metadata of a file versioned on the registry.

    Issues a HEAD without following redirects, so that a redirect to a CDN
    reports the CDN location instead of being followed. Relative redirects
    (same host, e.g. a renamed repo) are followed.

    Args:
        url: Resolve URL of the file
        headers: Request headers (authorization, user-agent)
        timeout: Seconds to wait for the server
        session: requests session to use (a new one if None)
        proxies: requests-style proxy mapping

    Returns:
        FileMetadata (commit hash and etag may be None if the server omitted them)

    Raises:
        UpstreamUnreachableError: On transport failure, timeout or server error
        EntryNotFoundError: If the registry answers 404
    """
    request_headers = dict(headers or {})
    # Prevent compression so Content-Length is the real file size
    request_headers["Accept-Encoding"] = "identity"

    own_session = session is None
    session = session or requests.Session()
    try:
        current = url
        for _ in range(MAX_RELATIVE_REDIRECTS + 1):
            response = _request(
                session, "HEAD", current, request_headers, timeout, proxies, allow_redirects=False
            )
            with response:
                location = response.headers.get("Location")
                if 300 <= response.status_code < 400 and location and not urlparse(location).netloc:
                    current = urljoin(current, location)
                    logger.debug("Following relative redirect to %s", current)
                    continue

                _check_status(response, current)

                etag = response.headers.get(HEADER_X_LINKED_ETAG) or response.headers.get("ETag")
                size = _parse_int(response.headers.get(HEADER_X_LINKED_SIZE))
                if size is None:
                    size = _parse_int(response.headers.get("Content-Length"))

                return FileMetadata(
                    commit_hash=response.headers.get(HEADER_X_REPO_COMMIT),
                    etag=normalize_etag(etag),
                    location=location if response.is_redirect else (response.url or current),
                    size=size,
                )
        raise UpstreamUnreachableError(f"Too many relative redirects for {url}")
    finally:
        if own_session:
            session.close()


def get_repo_info(
    repo_id: str,
    endpoint: str,
    revision: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_ETAG_TIMEOUT,
    session: Optional[requests.Session] = None,
    proxies: Optional[Dict[str, str]] = None,
) -> RepoInfo:
    """Get the commit and file listing of one revision of a model repo.

    Raises:
        UpstreamUnreachableError: On transport failure, timeout or server error
        EntryNotFoundError: If the repo or revision does not exist
    """
    revision = revision or DEFAULT_REVISION
    url = f"{endpoint.rstrip('/')}/api/models/{repo_id}"
    if revision != DEFAULT_REVISION:
        url += f"/revision/{quote(revision, safe='')}"

    own_session = session is None
    session = session or requests.Session()
    try:
        response = _request(session, "GET", url, dict(headers or {}), timeout, proxies)
        with response:
            _check_status(response, url)
            try:
                payload = response.json()
            except ValueError as e:
                raise UpstreamUnreachableError(
                    f"Registry returned invalid response for {url}: expected JSON"
                ) from e
        return RepoInfo.model_validate(payload)
    finally:
        if own_session:
            session.close()

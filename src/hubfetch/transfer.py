"""Streaming content transfer into a temporary file.

The transfer reads the response in chunks sized to roughly one percent of
the file (with a floor), reports progress after every chunk, and accounts
bytes against the declared Content-Length: a stream that ends early is an
error even if the transport considered the response complete. There is no
resume; a failed transfer is restarted from byte zero by the caller.
"""

import logging
from typing import BinaryIO, Dict, Optional

import requests
import urllib3

from .constants import DEFAULT_DOWNLOAD_TIMEOUT, MIN_DOWNLOAD_CHUNK_SIZE
from .errors import EntryNotFoundError, TransferError, UpstreamUnreachableError
from .progress import ProgressCallback

logger = logging.getLogger(__name__)


def strip_authorization(headers: Dict[str, str]) -> Dict[str, str]:
    """Return a copy of headers without any authorization header.

    Used when the download URL is a redirect to another host (e.g. a CDN
    fronting large-object storage) that must not receive the credentials.
    """
    return {k: v for k, v in headers.items() if k.lower() != "authorization"}


def chunk_size_for(total: int, min_chunk_size: int = MIN_DOWNLOAD_CHUNK_SIZE) -> int:
    """Chunk size giving about a hundred progress updates per file."""
    return max(min_chunk_size, total // 100)


def http_get(
    url: str,
    temp_file: BinaryIO,
    headers: Optional[Dict[str, str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
    session: Optional[requests.Session] = None,
    proxies: Optional[Dict[str, str]] = None,
    min_chunk_size: int = MIN_DOWNLOAD_CHUNK_SIZE,
) -> int:
    """Download url into temp_file.

    Args:
        url: URL to GET (redirects are followed)
        temp_file: Open binary file, created exclusively for this transfer
        headers: Request headers
        on_progress: Called with bytes_so_far / total after each chunk
        timeout: Per-request deadline in seconds
        session: requests session to use (a new one if None)
        proxies: requests-style proxy mapping
        min_chunk_size: Lower bound for the read size

    Returns:
        Number of bytes written

    Raises:
        TransferError: If Content-Length is missing/unparsable or the stream is short
        UpstreamUnreachableError: On transport failure or an HTTP error status
        EntryNotFoundError: If the content URL answers 404
    """
    own_session = session is None
    session = session or requests.Session()
    try:
        try:
            response = session.request(
                "GET", url, headers=dict(headers or {}), timeout=timeout,
                proxies=proxies, stream=True, allow_redirects=True,
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamUnreachableError(f"Cannot download {url}: {e}") from e

        with response:
            if response.status_code == 404:
                raise EntryNotFoundError(url)
            try:
                response.raise_for_status()
            except requests.exceptions.HTTPError as e:
                raise UpstreamUnreachableError(f"Download failed with {response.status_code}: {url}") from e

            raw_length = response.headers.get("Content-Length")
            try:
                total = int(raw_length) if raw_length is not None else None
            except ValueError:
                total = None
            if total is None or total < 0:
                raise TransferError(f"Missing or invalid Content-Length ({raw_length!r}) for {url}")

            chunk_size = chunk_size_for(total, min_chunk_size)
            written = 0
            try:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if not chunk:
                        continue
                    temp_file.write(chunk)
                    written += len(chunk)
                    if on_progress is not None:
                        on_progress(min(written / total, 1.0) if total else 1.0)
            except (requests.exceptions.ChunkedEncodingError, urllib3.exceptions.ProtocolError) as e:
                # urllib3 enforces Content-Length itself and reports a short body here
                raise TransferError(
                    f"Download of {url} ended early: got {written} of {total} bytes"
                ) from e
            except requests.exceptions.RequestException as e:
                raise UpstreamUnreachableError(f"Connection lost while downloading {url}: {e}") from e

            if written < total:
                raise TransferError(
                    f"Download of {url} ended early: got {written} of {total} bytes"
                )
            if total == 0 and on_progress is not None:
                on_progress(1.0)

        temp_file.flush()
        logger.debug("Downloaded %d bytes from %s", written, url)
        return written
    finally:
        if own_session:
            session.close()

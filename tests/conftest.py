"""Shared test fixtures and utilities."""

import hashlib
import http.server
import io
import json
import os
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

import pytest
import requests
import urllib3
from requests.structures import CaseInsensitiveDict

from hubfetch.config import HubSettings, set_settings
from hubfetch.symlinks import SymlinkCapabilityCache

ENDPOINT = "https://hub.test"
CDN = "https://cdn.test"


class StreamedBody(io.BytesIO):
    """In-memory response body that can be slow and reports when it is closed.

    urllib3 closes the body once it reads the end of the stream, and
    requests closes it when an unconsumed response is closed.
    """

    def __init__(self, data: bytes, delay: float = 0.0, on_close: Optional[Callable[[], None]] = None):
        super().__init__(data)
        self.delay = delay
        self.on_close = on_close

    def read(self, *args):
        if self.delay:
            time.sleep(self.delay)
            self.delay = 0.0
        return super().read(*args)

    def close(self):
        callback, self.on_close = self.on_close, None
        if callback is not None:
            callback()
        super().close()


def make_response(status: int, body: bytes = b"", headers: Optional[Dict[str, str]] = None,
                  url: str = "", delay: float = 0.0,
                  on_close: Optional[Callable[[], None]] = None) -> requests.Response:
    """Build a real requests.Response streaming from a urllib3 response.

    The urllib3 layer enforces Content-Length exactly as it does for a
    socket, so a body shorter than declared fails mid-stream.
    """
    headers = headers or {}
    response = requests.Response()
    response.status_code = status
    response.headers = CaseInsensitiveDict(headers)
    response.raw = urllib3.HTTPResponse(
        body=StreamedBody(body, delay=delay, on_close=on_close),
        headers=headers,
        status=status,
        preload_content=False,
        enforce_content_length=True,
    )
    response.url = url
    return response


class FakeRegistry:
    """In-memory registry answering like requests.Session.

    Files are stored per (repo, commit, filename); revisions map names to
    commits. Every request is recorded in `calls` as (method, url, headers).
    """

    def __init__(self, endpoint: str = ENDPOINT):
        self.endpoint = endpoint
        self.files: Dict[Tuple[str, str, str], Tuple[str, bytes]] = {}
        self.revisions: Dict[Tuple[str, str], str] = {}
        self.calls: List[Tuple[str, str, Dict[str, str]]] = []
        self.extra_siblings: List[str] = []

        # Behaviour switches
        self.unreachable = False
        self.redirect_to_cdn = False
        self.omit_commit = False
        self.truncate = False
        self.get_delay = 0.0

        self._lock = threading.Lock()
        self.active_gets = 0
        self.max_active_gets = 0

    def add_file(self, repo_id: str, filename: str, content: bytes, commit: str,
                 revision: str = "main", etag: Optional[str] = None) -> str:
        """Publish a file at commit (and point revision at it). Returns the etag."""
        etag = etag or hashlib.sha256(content).hexdigest()
        self.files[(repo_id, commit, filename)] = (etag, content)
        self.revisions[(repo_id, revision)] = commit
        self.revisions[(repo_id, commit)] = commit
        return etag

    # Request accounting

    def count(self, method: str) -> int:
        with self._lock:
            return sum(1 for m, _, _ in self.calls if m == method)

    def close(self) -> None:
        pass

    def request(self, method, url, headers=None, timeout=None, proxies=None,
                allow_redirects=True, stream=False, **kwargs):
        with self._lock:
            self.calls.append((method, url, dict(headers or {})))
        if self.unreachable:
            raise requests.exceptions.ConnectionError(f"Cannot connect to {url}")

        if method == "GET":
            # Held until the response body is read to the end or closed
            with self._lock:
                self.active_gets += 1
                self.max_active_gets = max(self.max_active_gets, self.active_gets)
        return self._route(method, url)

    def _finish_get(self) -> None:
        with self._lock:
            self.active_gets -= 1

    def _respond(self, method: str, status: int, body: bytes = b"",
                 headers: Optional[Dict[str, str]] = None, url: str = "") -> requests.Response:
        if method != "GET":
            return make_response(status, body, headers, url)
        return make_response(status, body, headers, url, delay=self.get_delay, on_close=self._finish_get)

    # Routing

    def _route(self, method: str, url: str) -> requests.Response:
        parsed = urlparse(url)
        base = f"{parsed.scheme}://{parsed.netloc}"

        if base == CDN and parsed.path.startswith("/blobs/"):
            etag = parsed.path[len("/blobs/"):]
            for tag, content in self.files.values():
                if tag == etag:
                    return self._content(method, content, url)
            return self._respond(method, 404, url=url)

        if base != self.endpoint:
            return self._respond(method, 404, url=url)

        if parsed.path.startswith("/api/models/"):
            return self._repo_info(method, parsed.path[len("/api/models/"):], url)

        if "/resolve/" in parsed.path:
            repo_id, rest = parsed.path[1:].split("/resolve/", 1)
            raw_revision, raw_filename = rest.split("/", 1)
            return self._resolve(method, repo_id, unquote(raw_revision), unquote(raw_filename), url)

        return self._respond(method, 404, url=url)

    def _repo_info(self, method: str, path: str, url: str) -> requests.Response:
        if "/revision/" in path:
            repo_id, raw_revision = path.split("/revision/", 1)
            revision = unquote(raw_revision)
        else:
            repo_id, revision = path, "main"
        commit = self.revisions.get((repo_id, revision))
        if commit is None:
            return self._respond(method, 404, url=url)
        siblings = [name for (r, c, name) in self.files if r == repo_id and c == commit]
        payload = {
            "id": repo_id,
            "sha": commit,
            "siblings": [{"rfilename": name} for name in siblings + self.extra_siblings],
        }
        return self._respond(method, 200, json.dumps(payload).encode(), {"Content-Type": "application/json"}, url)

    def _resolve(self, method: str, repo_id: str, revision: str, filename: str, url: str):
        commit = self.revisions.get((repo_id, revision))
        entry = self.files.get((repo_id, commit, filename)) if commit else None
        if entry is None:
            return self._respond(method, 404, url=url)
        etag, content = entry

        headers = {
            "X-Linked-Etag": f'"{etag}"',
            "X-Linked-Size": str(len(content)),
        }
        if not self.omit_commit:
            headers["X-Repo-Commit"] = commit

        if method == "HEAD":
            if self.redirect_to_cdn:
                headers["Location"] = f"{CDN}/blobs/{etag}"
                return self._respond(method, 302, headers=headers, url=url)
            headers["Content-Length"] = str(len(content))
            return self._respond(method, 200, headers=headers, url=url)
        return self._content(method, content, url)

    def _content(self, method: str, content: bytes, url: str) -> requests.Response:
        length = len(content) + (10 if self.truncate else 0)
        body = content if method == "GET" else b""
        return self._respond(method, 200, body, {"Content-Length": str(length)}, url)


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Keep HUBFETCH_* variables from the host out of every test."""
    for var in ("HUBFETCH_CONFIG", "HUBFETCH_ENDPOINT", "HUBFETCH_CACHE", "HUBFETCH_OFFLINE",
                "HUBFETCH_ETAG_TIMEOUT", "HUBFETCH_DOWNLOAD_TIMEOUT", "HUBFETCH_LOCK_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)
    set_settings(None)
    yield
    set_settings(None)


@pytest.fixture
def registry():
    """Empty in-memory registry."""
    return FakeRegistry()


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def settings(cache_dir):
    """Settings pointing at the fake registry and a temp cache."""
    return HubSettings(endpoint=ENDPOINT, cache_dir=cache_dir)


@pytest.fixture
def capability():
    """Fresh symlink capability cache per test."""
    return SymlinkCapabilityCache()


@pytest.fixture
def response_factory():
    """Factory for requests.Response objects."""
    return make_response


@pytest.fixture
def no_symlinks(monkeypatch):
    """Make every symlink attempt fail as on a filesystem without support."""
    def _fail(*args, **kwargs):
        raise OSError("symlinks not supported")
    monkeypatch.setattr(os, "symlink", _fail)


SHORT_COMMIT = "5" * 40
SHORT_ETAG = "short-etag"


class _ShortBodyHandler(http.server.BaseHTTPRequestHandler):
    """Registry whose content responses declare 20 bytes but send 5."""

    protocol_version = "HTTP/1.1"

    def _send_headers(self):
        self.send_response(200)
        self.send_header("Content-Length", "20")
        self.send_header("X-Repo-Commit", SHORT_COMMIT)
        self.send_header("X-Linked-Etag", f'"{SHORT_ETAG}"')
        self.send_header("Connection", "close")
        self.end_headers()

    def do_HEAD(self):
        self._send_headers()

    def do_GET(self):
        self._send_headers()
        self.wfile.write(b"12345")
        self.wfile.flush()

    def log_message(self, format, *args):
        pass


@pytest.fixture
def short_body_server(monkeypatch):
    """Loopback HTTP server cutting every body short. Yields its base URL."""
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")
    server = http.server.ThreadingHTTPServer(("127.0.0.1", 0), _ShortBodyHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()
    thread.join()

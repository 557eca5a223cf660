"""Constants for hubfetch."""

import re

# Registry
DEFAULT_ENDPOINT = "https://huggingface.co"
DEFAULT_REVISION = "main"
REPO_TYPE_MODEL = "model"

# Response headers set by the registry
HEADER_X_REPO_COMMIT = "X-Repo-Commit"
HEADER_X_LINKED_ETAG = "X-Linked-Etag"
HEADER_X_LINKED_SIZE = "X-Linked-Size"

# Cache layout
REPO_ID_SEPARATOR = "--"
BLOBS_DIR = "blobs"
REFS_DIR = "refs"
SNAPSHOTS_DIR = "snapshots"
LOCKS_DIR = ".locks"
INCOMPLETE_SUFFIX = ".incomplete"

# A full commit hash, as opposed to a branch or tag name
COMMIT_HASH_REGEX = re.compile(r"^[0-9a-f]{40}$")

# Timeouts (seconds)
DEFAULT_ETAG_TIMEOUT = 10.0
DEFAULT_DOWNLOAD_TIMEOUT = 10.0
DEFAULT_LOCK_TIMEOUT = 600.0

# Transfer tuning
MIN_DOWNLOAD_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB
LOCAL_DIR_AUTO_SYMLINK_THRESHOLD = 5 * 1024 * 1024  # 5MB
MAX_RELATIVE_REDIRECTS = 10

DEFAULT_MAX_WORKERS = 8

# Version
HUBFETCH_VERSION = "0.1.0"

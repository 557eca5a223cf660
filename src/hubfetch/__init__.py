"""Download files from a model registry into a local, deduplicated cache.

Example:
    >>> from hubfetch import hub_download
    >>> path = hub_download("openai/clip-vit-base-patch16", "config.json")
"""

from .config import HubSettings, SymlinkMode, get_settings, set_settings
from .constants import HUBFETCH_VERSION as __version__
from .download import hub_download
from .errors import (
    ConfigurationError,
    EntryNotFoundError,
    HubError,
    NotFoundOfflineError,
    NotFoundOnlineError,
    PathEscapeError,
    TransferError,
    UpstreamUnreachableError,
)
from .progress import GroupedProgress, GroupedProgressAggregator, ProgressCallback
from .remote import FileMetadata, get_file_metadata, hub_file_url
from .snapshot import snapshot_download
from .symlinks import SymlinkCapabilityCache

__all__ = [
    "ConfigurationError",
    "EntryNotFoundError",
    "FileMetadata",
    "GroupedProgress",
    "GroupedProgressAggregator",
    "HubError",
    "HubSettings",
    "NotFoundOfflineError",
    "NotFoundOnlineError",
    "PathEscapeError",
    "ProgressCallback",
    "SymlinkCapabilityCache",
    "SymlinkMode",
    "TransferError",
    "UpstreamUnreachableError",
    "get_file_metadata",
    "get_settings",
    "hub_download",
    "hub_file_url",
    "set_settings",
    "snapshot_download",
]

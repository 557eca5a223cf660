"""Settings and per-call option resolution.

Process-wide defaults live in a HubSettings instance, loaded from an optional
YAML file and HUBFETCH_* environment variables. Each download call builds a
DownloadOptions from its keyword arguments and resolves it against the
settings once, so the rest of the pipeline only ever sees concrete values.
"""

import logging
import os
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import platformdirs
import yaml
from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_DOWNLOAD_TIMEOUT,
    DEFAULT_ENDPOINT,
    DEFAULT_ETAG_TIMEOUT,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_REVISION,
    LOCAL_DIR_AUTO_SYMLINK_THRESHOLD,
    MIN_DOWNLOAD_CHUNK_SIZE,
    REPO_TYPE_MODEL,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "HUBFETCH_CONFIG"

_TRUE_VALUES = ("true", "1", "yes", "on")


def _default_cache_dir() -> Path:
    """Platform-appropriate cache root (e.g. ~/.cache/hubfetch on Linux)."""
    return Path(platformdirs.user_cache_dir("hubfetch"))


class SymlinkMode(str, Enum):
    """How a cached file is placed into a caller-chosen local directory."""
    AUTO = "auto"      # Symlink large files, duplicate small ones
    ALWAYS = "always"  # Always symlink
    NEVER = "never"    # Always duplicate the bytes

    @classmethod
    def parse(cls, value: Union[bool, str, "SymlinkMode", None]) -> "SymlinkMode":
        """Accept True/False/"auto" (and the enum names) as used by callers."""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.AUTO
        if isinstance(value, bool):
            return cls.ALWAYS if value else cls.NEVER
        lowered = str(value).strip().lower()
        if lowered in _TRUE_VALUES or lowered == "always":
            return cls.ALWAYS
        if lowered in ("false", "0", "no", "off", "never"):
            return cls.NEVER
        if lowered == "auto":
            return cls.AUTO
        raise ConfigurationError(f"Invalid local_dir_use_symlinks value: {value!r}")

    def as_override(self) -> Optional[bool]:
        """Explicit symlink choice, or None when the size threshold decides."""
        if self is SymlinkMode.AUTO:
            return None
        return self is SymlinkMode.ALWAYS


class HubSettings(BaseModel):
    """Process-wide defaults."""

    endpoint: str = DEFAULT_ENDPOINT
    cache_dir: Path = Field(default_factory=_default_cache_dir)
    default_revision: str = DEFAULT_REVISION
    etag_timeout: float = DEFAULT_ETAG_TIMEOUT
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    offline: bool = False
    min_chunk_size: int = MIN_DOWNLOAD_CHUNK_SIZE
    local_dir_auto_symlink_threshold: int = LOCAL_DIR_AUTO_SYMLINK_THRESHOLD

    @field_validator("endpoint")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("min_chunk_size")
    @classmethod
    def positive_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("min_chunk_size must be positive")
        return v

    @classmethod
    def load(cls, config_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> "HubSettings":
        """Load settings from YAML (if any), then apply environment overrides.

        Args:
            config_path: YAML file; defaults to $HUBFETCH_CONFIG when set
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Validated HubSettings
        """
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {}

        path = config_path or (Path(env[CONFIG_ENV_VAR]) if env.get(CONFIG_ENV_VAR) else None)
        if path is not None:
            if not path.exists():
                raise ConfigurationError(f"Config file not found: {path}")
            loaded = yaml.safe_load(path.read_text()) or {}
            if not isinstance(loaded, dict):
                raise ConfigurationError(f"Config file must contain a mapping: {path}")
            data.update(loaded.get("hubfetch", loaded))

        overrides = {
            "endpoint": env.get("HUBFETCH_ENDPOINT"),
            "cache_dir": env.get("HUBFETCH_CACHE"),
            "etag_timeout": env.get("HUBFETCH_ETAG_TIMEOUT"),
            "download_timeout": env.get("HUBFETCH_DOWNLOAD_TIMEOUT"),
            "lock_timeout": env.get("HUBFETCH_LOCK_TIMEOUT"),
        }
        data.update({k: v for k, v in overrides.items() if v})

        offline = env.get("HUBFETCH_OFFLINE")
        if offline:
            data["offline"] = offline.lower() in _TRUE_VALUES

        return cls(**data)


_settings: Optional[HubSettings] = None
_settings_lock = threading.Lock()


def get_settings() -> HubSettings:
    """Process-wide settings, loaded on first use."""
    global _settings
    with _settings_lock:
        if _settings is None:
            _settings = HubSettings.load()
            logger.debug("Loaded settings: endpoint=%s cache_dir=%s", _settings.endpoint, _settings.cache_dir)
        return _settings


def set_settings(settings: Optional[HubSettings]) -> None:
    """Replace the process-wide settings (None reloads them on next use)."""
    global _settings
    with _settings_lock:
        _settings = settings


class ResolvedOptions(BaseModel):
    """Concrete options for a single request; nothing here is left unset."""

    repo_id: str
    repo_type: str
    filename: str  # with subfolder already prefixed
    revision: str
    cache_dir: Path
    local_dir: Optional[Path]
    symlink_mode: SymlinkMode
    force_download: bool
    local_files_only: bool
    endpoint: str
    etag_timeout: float
    download_timeout: float
    lock_timeout: float
    min_chunk_size: int
    symlink_threshold: int
    token: Optional[str]
    user_agent: Optional[Union[str, Dict[str, str]]]
    proxies: Optional[Dict[str, str]]


class DownloadOptions(BaseModel):
    """Options accepted by hub_download; None means "use the default"."""

    repo_id: str
    filename: str
    subfolder: Optional[str] = None
    repo_type: Literal["model"] = REPO_TYPE_MODEL
    revision: Optional[str] = None
    cache_dir: Optional[Union[str, Path]] = None
    local_dir: Optional[Union[str, Path]] = None
    local_dir_use_symlinks: Union[bool, str] = "auto"
    force_download: bool = False
    local_files_only: bool = False
    etag_timeout: Optional[float] = None
    endpoint: Optional[str] = None
    token: Optional[str] = None
    user_agent: Optional[Union[str, Dict[str, str]]] = None
    proxies: Optional[Dict[str, str]] = None

    @field_validator("repo_id")
    @classmethod
    def validate_repo_id(cls, v: str) -> str:
        parts = v.split("/")
        if not v or len(parts) > 2 or any(not p or p in (".", "..") for p in parts):
            raise ValueError(f"Repo id must be 'name' or 'owner/name', got {v!r}")
        return v

    def resolve(self, settings: HubSettings) -> ResolvedOptions:
        """Fill every unset option from settings."""
        filename = self.filename
        if self.subfolder:
            filename = f"{self.subfolder.strip('/')}/{filename}"

        return ResolvedOptions(
            repo_id=self.repo_id,
            repo_type=self.repo_type,
            filename=filename,
            revision=self.revision or settings.default_revision,
            cache_dir=Path(self.cache_dir) if self.cache_dir else settings.cache_dir,
            local_dir=Path(self.local_dir) if self.local_dir else None,
            symlink_mode=SymlinkMode.parse(self.local_dir_use_symlinks),
            force_download=self.force_download,
            local_files_only=self.local_files_only or settings.offline,
            endpoint=(self.endpoint or settings.endpoint).rstrip("/"),
            etag_timeout=self.etag_timeout if self.etag_timeout is not None else settings.etag_timeout,
            download_timeout=settings.download_timeout,
            lock_timeout=settings.lock_timeout,
            min_chunk_size=settings.min_chunk_size,
            symlink_threshold=settings.local_dir_auto_symlink_threshold,
            token=self.token,
            user_agent=self.user_agent,
            proxies=self.proxies,
        )

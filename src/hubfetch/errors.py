"""Custom exceptions for hubfetch.

Every failure a caller can see derives from HubError so a single except
clause covers the library. Exceptions raised by the HTTP transport are
translated at the module boundary and chained.
"""


class HubError(RuntimeError):
    """Base class for all hubfetch errors."""
    pass


# Configuration Errors
class ConfigurationError(HubError):
    """Contradictory options, or a remote that does not answer like a registry."""
    pass


# Path Errors
class PathEscapeError(HubError, ValueError):
    """A computed path resolves outside the root it must stay in."""

    def __init__(self, path: str, root: str):
        self.path = path
        self.root = root
        super().__init__(
            f"Unsafe path: '{path}' would not be inside '{root}'. "
            f"Please ask the repository owner to rename this file."
        )


# Network Errors
class UpstreamUnreachableError(HubError):
    """The registry or content host could not be reached (or failed server-side)."""
    pass


class EntryNotFoundError(HubError):
    """The registry answered that the requested file does not exist (404)."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Entry not found on the registry: {url}")


class TransferError(HubError):
    """Content transfer ended without the declared number of bytes."""
    pass


# Cache Lookup Errors
class NotFoundOfflineError(HubError):
    """No cached entry exists and network access was disabled."""

    def __init__(self, what: str):
        self.what = what
        super().__init__(
            f"Cannot find '{what}' in the disk cache and outgoing traffic has been "
            f"disabled. To enable look-ups and downloads online, set "
            f"local_files_only to False."
        )


class NotFoundOnlineError(HubError):
    """Network access was attempted and failed, and nothing is cached."""

    def __init__(self, what: str):
        self.what = what
        super().__init__(
            f"An error happened while trying to locate '{what}' on the registry "
            f"and it cannot be found in the local cache. Please check your "
            f"connection and try again."
        )

"""Error taxonomy for the meme catalog."""

from typing import Optional


class MemeCatalogError(Exception):
    """Base class for catalog failures."""


class SourceUnavailable(MemeCatalogError):
    """The Record Source is unconfigured or unreachable."""


class ValidationFailed(MemeCatalogError, ValueError):
    """Submitted meme fields or image failed validation."""


class PermissionDenied(MemeCatalogError):
    """The requester may not modify the record."""


class RemoteOperationFailed(MemeCatalogError):
    """A Record Source call (insert/update/delete/blob/lookup) failed.

    ``code`` carries the PostgREST / storage error code when the
    backend supplied one.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class OverlayCorrupt(MemeCatalogError):
    """The overlay file could not be parsed."""

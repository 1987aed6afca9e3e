"""Exceptions raised by the release asset cache."""

from __future__ import annotations


class AssetCacheError(RuntimeError):
    """Base class for all asset cache failures."""


class NotFoundError(AssetCacheError):
    """Raised when an asset is missing from the registry or the disk cache."""


class FetchError(AssetCacheError):
    """Raised when the upstream host cannot deliver an asset."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConfigPreconditionError(AssetCacheError):
    """Raised when neither the cache nor a credential can satisfy a request."""


__all__ = [
    "AssetCacheError",
    "ConfigPreconditionError",
    "FetchError",
    "NotFoundError",
]

"""In-memory metadata for the release assets the cache knows about."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace

from .display import to_mb
from .errors import NotFoundError


@dataclass(slots=True)
class AssetMetadata:
    """Light-weight description of one downloadable release asset."""

    name: str
    upstream_url: str
    content_type: str
    size_bytes: int = 0
    cached: bool = False

    @property
    def size_mb(self) -> float:
        return to_mb(self.size_bytes)


class AssetRegistry:
    """Thread-safe mapping from asset name to :class:`AssetMetadata`.

    Records handed out by :meth:`get` are snapshots; the ``cached`` flag is only
    changed through :meth:`set_cached`, :meth:`mark_cached` and :meth:`reset_cached`.
    """

    def __init__(self) -> None:
        self._assets: dict[str, AssetMetadata] = {}
        self._lock = threading.Lock()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._assets

    def __len__(self) -> int:
        with self._lock:
            return len(self._assets)

    def get(self, name: str) -> AssetMetadata | None:
        with self._lock:
            asset = self._assets.get(name)
            return replace(asset) if asset is not None else None

    def upsert(self, metadata: AssetMetadata) -> AssetMetadata:
        """Insert or refresh a record and return the stored snapshot.

        Refreshing a known asset keeps its ``cached`` flag unless the upstream
        URL changed, which means a different version of the file.
        """

        with self._lock:
            stored = replace(metadata)
            existing = self._assets.get(metadata.name)
            if existing is not None:
                same_version = existing.upstream_url == metadata.upstream_url
                stored.cached = existing.cached if same_version else False
            self._assets[stored.name] = stored
            return replace(stored)

    def set_cached(self, name: str, cached: bool = True) -> None:
        with self._lock:
            asset = self._assets.get(name)
            if asset is None:
                raise NotFoundError(f"Unknown asset {name!r}")
            asset.cached = cached

    def mark_cached(self, metadata: AssetMetadata) -> bool:
        """Flag the downloaded version of an asset as cached.

        Returns False, leaving the record alone, when the registry has moved on to
        a different upstream URL for the same name. Unknown assets are added.
        """

        with self._lock:
            asset = self._assets.get(metadata.name)
            if asset is None:
                self._assets[metadata.name] = replace(metadata, cached=True)
                return True
            if asset.upstream_url != metadata.upstream_url:
                return False
            asset.cached = True
            return True

    def reset_cached(self, name: str | None = None) -> None:
        """Mark one asset (or every asset) as not cached."""

        with self._lock:
            if name is not None:
                asset = self._assets.get(name)
                if asset is not None:
                    asset.cached = False
                return
            for asset in self._assets.values():
                asset.cached = False

    def remove(self, name: str) -> None:
        with self._lock:
            self._assets.pop(name, None)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._assets)

    def assets(self) -> list[AssetMetadata]:
        with self._lock:
            return [replace(self._assets[name]) for name in sorted(self._assets)]

    def clear(self) -> None:
        with self._lock:
            self._assets.clear()


__all__ = ["AssetMetadata", "AssetRegistry"]

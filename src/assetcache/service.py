"""Explicitly constructed cache service tying all components together."""

from __future__ import annotations

from concurrent.futures import Future
from pathlib import Path

from requests import Session

from .dispatcher import ProxyResponse, RequestDispatcher
from .fetcher import DEFAULT_MAX_WORKERS, BackgroundFetcher
from .registry import AssetMetadata, AssetRegistry
from .store import DEFAULT_CACHE_DIR, DiskCacheStore
from .upstream import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    UpstreamClient,
)


class AssetCacheService:
    """Own one registry, disk store, upstream client, fetcher and dispatcher.

    Create it at startup and :meth:`close` it (or use it as a context manager) on
    shutdown so background downloads are drained and an owned HTTP session is
    released.
    """

    def __init__(
        self,
        cache_dir: Path = DEFAULT_CACHE_DIR,
        *,
        client: Session | None = None,
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        max_workers: int = DEFAULT_MAX_WORKERS,
        stream_public: bool = False,
    ) -> None:
        self.registry = AssetRegistry()
        self.store = DiskCacheStore(Path(cache_dir))
        self.upstream = UpstreamClient(
            client=client,
            timeout=timeout,
            max_retries=max_retries,
            backoff_factor=backoff_factor,
        )
        self.fetcher = BackgroundFetcher(
            self.registry,
            self.store,
            self.upstream,
            max_workers=max_workers,
        )
        self.dispatcher = RequestDispatcher(
            self.registry,
            self.store,
            self.fetcher,
            self.upstream,
            stream_public=stream_public,
        )
        self._closed = False

    def __enter__(self) -> "AssetCacheService":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.fetcher.shutdown(wait=True)
        self.upstream.close()

    def track(
        self,
        metadata: AssetMetadata,
        credential: str | None = None,
        *,
        prefetch: bool = False,
    ) -> AssetMetadata:
        """Register an asset and optionally start downloading it right away."""

        stored = self.registry.upsert(metadata)
        if prefetch and not (stored.cached and self.store.exists(stored.name)):
            self.fetcher.submit(stored, credential)
        return stored

    def prefetch(self, metadata: AssetMetadata, credential: str | None = None) -> Future[Path]:
        return self.fetcher.submit(self.registry.upsert(metadata), credential)

    def fetch_to_disk(self, metadata: AssetMetadata, credential: str | None = None) -> Path:
        """Download an asset and wait for it, sharing any download already running."""

        return self.prefetch(metadata, credential).result()

    def serve_or_proxy(self, metadata: AssetMetadata, credential: str | None = None) -> ProxyResponse:
        return self.dispatcher.serve_or_proxy(metadata, credential)

    def clear(self) -> None:
        """Delete every cached file and mark every known asset as not cached."""

        self.registry.reset_cached()
        self.store.clear()


__all__ = ["AssetCacheService"]

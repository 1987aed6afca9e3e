"""Background population of the disk cache from the upstream host."""

from __future__ import annotations

import random
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from dataclasses import dataclass
from pathlib import Path

from requests import Response
from requests.exceptions import HTTPError, RequestException

from .errors import FetchError
from .registry import AssetMetadata, AssetRegistry
from .store import DiskCacheStore
from .upstream import (
    STREAM_RETRY_EXCEPTIONS,
    UpstreamClient,
    credentialed_url,
    redact_url,
    scrub_credential,
)

CHUNK_SIZE = 65536
DEFAULT_MAX_WORKERS = 4


@dataclass(slots=True)
class _Flight:
    """The download currently owning an asset name."""

    upstream_url: str
    future: Future[Path] | None = None


def _retry_after(response: Response | None) -> float | None:
    if response is None:
        return None
    try:
        seconds = float(response.headers.get("Retry-After", ""))
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class BackgroundFetcher:
    """Download assets into a :class:`DiskCacheStore`, at most one run per name.

    Every download goes through :meth:`submit`. Callers asking for the version
    already in flight share its :class:`~concurrent.futures.Future`; a different
    upstream URL for the same name is queued behind the running download, so
    writes for one name never overlap.
    """

    def __init__(
        self,
        registry: AssetRegistry,
        store: DiskCacheStore,
        upstream: UpstreamClient,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self._registry = registry
        self._store = store
        self._upstream = upstream
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="assetcache-fetch",
        )
        self._in_flight: dict[str, _Flight] = {}
        self._lock = threading.Lock()
        self._closed = False

    def fetch_to_disk(self, metadata: AssetMetadata, credential: str | None = None) -> Path:
        """Download an asset and wait for it, joining a run already in flight.

        Raises :class:`FetchError` when every attempt fails.
        """

        self._store.path_for(metadata.name)
        return self.submit(metadata, credential).result()

    def submit(self, metadata: AssetMetadata, credential: str | None = None) -> Future[Path]:
        """Schedule a background download unless this version is already running."""

        with self._lock:
            if self._closed:
                raise RuntimeError("BackgroundFetcher has been shut down")
            current = self._in_flight.get(metadata.name)
            if current is not None and current.upstream_url == metadata.upstream_url:
                return current.future
            previous = current.future if current is not None else None
            flight = _Flight(metadata.upstream_url)
            flight.future = self._executor.submit(self._run, flight, metadata, credential, previous)
            self._in_flight[metadata.name] = flight
        return flight.future

    def _run(
        self,
        flight: _Flight,
        metadata: AssetMetadata,
        credential: str | None,
        previous: Future[Path] | None,
    ) -> Path:
        try:
            if previous is not None:
                wait_for_futures([previous])
            return self._download_to_disk(metadata, credential)
        except Exception as exc:
            print(f"Background download of {metadata.name} failed: {exc}", file=sys.stderr)
            raise
        finally:
            with self._lock:
                if self._in_flight.get(metadata.name) is flight:
                    del self._in_flight[metadata.name]

    def _download_to_disk(self, metadata: AssetMetadata, credential: str | None) -> Path:
        url = credentialed_url(metadata.upstream_url, credential)
        attempt = 0
        while True:
            attempt += 1
            try:
                self._stream_into_store(metadata.name, url)
                break
            except HTTPError as exc:
                if not self._upstream.should_retry(exc.response, attempt):
                    status = exc.response.status_code if exc.response is not None else None
                    raise FetchError(
                        f"Upstream returned {status} for {metadata.name} ({redact_url(url)})",
                        status=status,
                    ) from exc
                self._pause(self._retry_delay(attempt, exc.response))
            except RequestException as exc:
                if not self._upstream.should_retry(None, attempt):
                    raise FetchError(
                        f"Download of {metadata.name} from {redact_url(url)} failed: "
                        f"{scrub_credential(str(exc), credential)}"
                    ) from exc
                self._pause(self._retry_delay(attempt))
            except OSError as exc:
                raise FetchError(f"Could not write {metadata.name} to the disk cache: {exc}") from exc

        # Publish only after the file has been renamed into place.
        if not self._registry.mark_cached(metadata):
            print(
                f"{metadata.name} changed upstream during the download of {redact_url(metadata.upstream_url)}; "
                "leaving it uncached.",
                file=sys.stderr,
            )
        return self._store.path_for(metadata.name)

    def _stream_into_store(self, name: str, url: str) -> None:
        with self._upstream.get(url) as response:
            response.raise_for_status()
            try:
                with self._store.open_for_write(name) as handle:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            handle.write(chunk)
            except STREAM_RETRY_EXCEPTIONS as exc:
                raise RequestException(f"Stream error while downloading {name}: {exc}") from exc

    def _retry_delay(self, attempt: int, response: Response | None = None) -> float:
        """Honor a numeric ``Retry-After``, else back off exponentially with jitter."""

        hinted = _retry_after(response)
        if hinted is not None:
            return hinted
        base = self._upstream.backoff_factor * 2 ** (attempt - 1)
        return base + random.uniform(0, base / 2)

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def in_flight(self, name: str) -> bool:
        with self._lock:
            return name in self._in_flight

    def wait(self, name: str, timeout: float | None = None) -> Path | None:
        """Block until the latest download for ``name`` finishes.

        Returns ``None`` when nothing is in flight; re-raises the download's
        :class:`FetchError` otherwise.
        """

        with self._lock:
            flight = self._in_flight.get(name)
        if flight is None or flight.future is None:
            return None
        return flight.future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)


__all__ = ["BackgroundFetcher", "CHUNK_SIZE", "DEFAULT_MAX_WORKERS"]

"""Per-request choice between the disk cache and the upstream host."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterable, Iterator

from requests import Response
from requests.exceptions import RequestException

from .errors import ConfigPreconditionError, FetchError, NotFoundError
from .fetcher import CHUNK_SIZE, BackgroundFetcher
from .registry import AssetMetadata, AssetRegistry
from .store import DiskCacheStore
from .upstream import UpstreamClient, credentialed_url, is_usable_credential, redact_url

INTERNAL_ERROR_BODY = {"error": "internal_error", "message": "Internal server error"}


@dataclass(slots=True)
class ProxyResponse:
    """Status, headers and a lazily produced body for one client request.

    The body holds an open file or upstream connection until it is exhausted or
    :meth:`close` is called, e.g. when the client disconnects.
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Iterable[bytes] = ()
    closer: Callable[[], None] | None = field(default=None, repr=False)

    def __enter__(self) -> "ProxyResponse":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def location(self) -> str | None:
        return self.headers.get("Location")

    def read(self) -> bytes:
        try:
            return b"".join(self.body)
        finally:
            self.close()

    def close(self) -> None:
        closer, self.closer = self.closer, None
        if closer is not None:
            closer()


def internal_error_response(status: int = 500) -> ProxyResponse:
    """Generic error response that reveals nothing about the failure."""

    payload = json.dumps(INTERNAL_ERROR_BODY).encode("utf-8")
    return ProxyResponse(
        status=status,
        headers={"Content-Type": "application/json", "Content-Length": str(len(payload))},
        body=[payload],
    )


def attachment_headers(asset: AssetMetadata) -> dict[str, str]:
    return {
        "Content-Type": asset.content_type,
        "Content-Disposition": f"attachment; filename={asset.name}",
    }


def _iter_file(handle: BinaryIO) -> Iterator[bytes]:
    try:
        while True:
            chunk = handle.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        handle.close()


def _iter_upstream(response: Response) -> Iterator[bytes]:
    try:
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if chunk:
                yield chunk
    finally:
        response.close()


class RequestDispatcher:
    """Serve an asset from disk, or redirect/stream it from the upstream host.

    Every miss also asks the :class:`BackgroundFetcher` to populate the cache so
    later requests take the disk path. That download is never waited for.
    """

    def __init__(
        self,
        registry: AssetRegistry,
        store: DiskCacheStore,
        fetcher: BackgroundFetcher,
        upstream: UpstreamClient,
        *,
        stream_public: bool = False,
    ) -> None:
        self._registry = registry
        self._store = store
        self._fetcher = fetcher
        self._upstream = upstream
        self.stream_public = stream_public

    def serve_or_proxy(self, metadata: AssetMetadata, credential: str | None = None) -> ProxyResponse:
        asset = self._registry.upsert(metadata)

        if asset.cached and self._store.exists(asset.name):
            try:
                return self._serve_from_disk(asset)
            except NotFoundError:
                print(f"{asset.name} vanished from the disk cache; falling back to upstream.", file=sys.stderr)
        if asset.cached:
            self._registry.reset_cached(asset.name)

        self._schedule_fetch(asset, credential)

        if is_usable_credential(credential):
            return self._redirect(asset, credential)
        if self.stream_public:
            return self._stream(asset)
        raise ConfigPreconditionError(
            f"{asset.name} is not cached and no credential was supplied to proxy it"
        )

    def _serve_from_disk(self, asset: AssetMetadata) -> ProxyResponse:
        handle = self._store.open_for_read(asset.name)
        return ProxyResponse(
            status=200,
            headers=attachment_headers(asset),
            body=_iter_file(handle),
            closer=handle.close,
        )

    def _schedule_fetch(self, asset: AssetMetadata, credential: str | None) -> None:
        try:
            self._fetcher.submit(asset, credential)
        except RuntimeError as exc:
            print(f"Could not schedule download of {asset.name}: {exc}", file=sys.stderr)

    def _redirect(self, asset: AssetMetadata, credential: str) -> ProxyResponse:
        url = credentialed_url(asset.upstream_url, credential)
        print(f"Proxying download upstream. {asset.name} not cached on disk yet.", file=sys.stderr)
        try:
            location = self._upstream.discover_redirect(url)
        except FetchError as exc:
            print(f"Redirect for {asset.name} failed: {exc}", file=sys.stderr)
            return internal_error_response(502)
        return ProxyResponse(status=302, headers={"Location": location})

    def _stream(self, asset: AssetMetadata) -> ProxyResponse:
        print(f"Streaming {asset.name} from {redact_url(asset.upstream_url)}; not cached on disk yet.", file=sys.stderr)
        response: Response | None = None
        try:
            response = self._upstream.get(asset.upstream_url)
            response.raise_for_status()
        except RequestException as exc:
            if response is not None:
                response.close()
            print(f"Streaming {asset.name} failed: {exc}", file=sys.stderr)
            return internal_error_response(502)
        headers = attachment_headers(asset)
        length = response.headers.get("Content-Length")
        if length:
            headers["Content-Length"] = length
        return ProxyResponse(
            status=200,
            headers=headers,
            body=_iter_upstream(response),
            closer=response.close,
        )


__all__ = [
    "INTERNAL_ERROR_BODY",
    "ProxyResponse",
    "RequestDispatcher",
    "attachment_headers",
    "internal_error_response",
]

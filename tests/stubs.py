"""Stand-ins for :mod:`requests` sessions used across the test-suite."""

from __future__ import annotations

import threading
from typing import Callable

from requests.exceptions import ChunkedEncodingError, HTTPError


class StubResponse:
    def __init__(
        self,
        payload: bytes = b"",
        *,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        fail_stream: bool = False,
    ) -> None:
        self.payload = payload
        self.status_code = status_code
        self.headers: dict[str, str] = dict(headers or {})
        self.fail_stream = fail_stream
        self.closed = False

    def __enter__(self) -> "StubResponse":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        self.closed = True

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise HTTPError(f"{self.status_code} Error", response=self)

    def iter_content(self, chunk_size: int = 65536):
        half = len(self.payload) // 2
        yield self.payload[:half]
        if self.fail_stream:
            raise ChunkedEncodingError("Response ended prematurely")
        yield self.payload[half:]


class StubSession:
    """Answer GETs from a handler and record every call.

    Calls with ``allow_redirects=False`` are redirect lookups, the others are
    downloads; each kind has its own handler.
    """

    def __init__(
        self,
        *,
        download: Callable[[str], StubResponse] | None = None,
        redirect: Callable[[str], StubResponse] | None = None,
    ) -> None:
        self.headers: dict[str, str] = {}
        self.calls: list[dict[str, object]] = []
        self.closed = False
        self._download = download or (lambda url: StubResponse(b"payload"))
        self._redirect = redirect or (
            lambda url: StubResponse(status_code=302, headers={"Location": "https://cdn.example.com/signed"})
        )
        self._lock = threading.Lock()

    def get(self, url: str, headers=None, stream=False, timeout=None, allow_redirects=True):
        with self._lock:
            self.calls.append(
                {
                    "url": url,
                    "headers": dict(headers or {}),
                    "stream": stream,
                    "timeout": timeout,
                    "allow_redirects": allow_redirects,
                }
            )
        if allow_redirects:
            return self._download(url)
        return self._redirect(url)

    def close(self) -> None:
        self.closed = True

    def calls_of(self, *, allow_redirects: bool) -> list[dict[str, object]]:
        with self._lock:
            return [call for call in self.calls if call["allow_redirects"] is allow_redirects]

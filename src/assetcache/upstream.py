"""HTTP access to the upstream release-asset host."""

from __future__ import annotations

from http.client import IncompleteRead
from urllib.parse import urlsplit, urlunsplit

from requests import Response, Session
from requests.exceptions import (
    ChunkedEncodingError,
    ContentDecodingError,
    RequestException,
)
from urllib3.exceptions import DecodeError, ProtocolError

from .errors import FetchError

OCTET_STREAM = "application/octet-stream"
DEFAULT_HEADERS = {
    "Accept": OCTET_STREAM,
    "User-Agent": "assetcache",
}
DEFAULT_TIMEOUT = (10.0, 60.0)
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 0.65
REDIRECT_STATUSES = {301, 302, 303, 307, 308}
RETRIABLE_STATUSES = {408, 425, 429, 500, 502, 503, 504}
STREAM_RETRY_EXCEPTIONS = (
    ChunkedEncodingError,
    ContentDecodingError,
    DecodeError,
    ProtocolError,
    IncompleteRead,
)


def is_usable_credential(credential: object) -> bool:
    return isinstance(credential, str) and bool(credential.strip())


def credentialed_url(url: str, credential: str | None) -> str:
    """Embed ``credential`` in the authority of ``url``.

    ``https://api.example.com/assets/1`` becomes
    ``https://tok123@api.example.com/assets/1``. Without a usable credential the
    URL is returned unchanged. Surrounding whitespace is not part of the token.
    """

    if not is_usable_credential(credential):
        return url
    credential = credential.strip()
    parts = urlsplit(url)
    host = parts.netloc.rpartition("@")[2]
    if not host:
        raise ValueError(f"Upstream URL has no host: {redact_url(url)}")
    return urlunsplit(parts._replace(netloc=f"{credential}@{host}"))


def scrub_credential(text: str, credential: str | None) -> str:
    """Remove every occurrence of ``credential`` from a log or error message."""

    if not is_usable_credential(credential):
        return text
    return text.replace(credential.strip(), "***")


def redact_url(url: str) -> str:
    """Return ``url`` with any userinfo replaced so it can be logged."""

    parts = urlsplit(url)
    userinfo, sep, host = parts.netloc.rpartition("@")
    if not sep or not userinfo:
        return url
    return urlunsplit(parts._replace(netloc=f"***@{host}"))


class UpstreamClient:
    """Thin wrapper around a :class:`requests.Session` with bounded timeouts."""

    def __init__(
        self,
        *,
        client: Session | None = None,
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    ) -> None:
        connect, read = timeout
        if connect <= 0 or read <= 0:
            raise ValueError("Upstream timeouts must be positive")
        self.timeout = (float(connect), float(read))
        self.max_retries = max(1, max_retries)
        self.backoff_factor = max(backoff_factor, 0.0)
        self._session_owner = client is None
        self._session = client or self._build_session()

    def __enter__(self) -> "UpstreamClient":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        if self._session_owner:
            self._session.close()

    def _build_session(self) -> Session:
        session = Session()
        session.headers.update(DEFAULT_HEADERS)
        return session

    def request_headers(self) -> dict[str, str]:
        return dict(DEFAULT_HEADERS)

    def get(self, url: str, *, allow_redirects: bool = True) -> Response:
        """Issue one streamed GET. The caller closes the response."""

        return self._session.get(
            url,
            headers=self.request_headers(),
            stream=True,
            timeout=self.timeout,
            allow_redirects=allow_redirects,
        )

    def discover_redirect(self, url: str) -> str:
        """Return the ``Location`` the upstream host redirects ``url`` to.

        Redirects are not followed so that the target can be relayed to a
        client. There is no retry here because a client is waiting.
        """

        try:
            response = self.get(url, allow_redirects=False)
        except RequestException as exc:
            userinfo = urlsplit(url).netloc.rpartition("@")[0]
            detail = scrub_credential(str(exc), userinfo or None)
            raise FetchError(f"Redirect lookup failed for {redact_url(url)}: {detail}") from exc
        try:
            status = response.status_code
            location = response.headers.get("Location")
        finally:
            response.close()
        if status not in REDIRECT_STATUSES or not location:
            raise FetchError(
                f"Upstream answered {status} without a redirect for {redact_url(url)}",
                status=status,
            )
        return location

    def should_retry(self, response: Response | None, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        if response is None:
            return True
        return response.status_code in RETRIABLE_STATUSES


__all__ = [
    "DEFAULT_BACKOFF_FACTOR",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_TIMEOUT",
    "OCTET_STREAM",
    "RETRIABLE_STATUSES",
    "STREAM_RETRY_EXCEPTIONS",
    "UpstreamClient",
    "credentialed_url",
    "is_usable_credential",
    "redact_url",
    "scrub_credential",
]

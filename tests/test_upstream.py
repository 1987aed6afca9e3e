from __future__ import annotations

import unittest

from requests.exceptions import ConnectionError as RequestsConnectionError

from assetcache.errors import FetchError
from assetcache.upstream import (
    UpstreamClient,
    credentialed_url,
    is_usable_credential,
    redact_url,
    scrub_credential,
)

from stubs import StubResponse, StubSession


class CredentialUrlTest(unittest.TestCase):
    def test_embeds_credential_in_authority(self) -> None:
        self.assertEqual(
            credentialed_url("https://api.example.com/assets/1", "tok123"),
            "https://tok123@api.example.com/assets/1",
        )

    def test_replaces_existing_userinfo(self) -> None:
        self.assertEqual(
            credentialed_url("https://old@api.example.com/assets/1?x=1", "tok123"),
            "https://tok123@api.example.com/assets/1?x=1",
        )

    def test_surrounding_whitespace_is_not_embedded(self) -> None:
        self.assertEqual(
            credentialed_url("https://api.example.com/assets/1", "  tok123\n"),
            "https://tok123@api.example.com/assets/1",
        )
        self.assertEqual(scrub_credential("bad token tok123", " tok123 "), "bad token ***")

    def test_unusable_credential_keeps_url(self) -> None:
        for credential in (None, "", "   "):
            with self.subTest(credential=credential):
                self.assertFalse(is_usable_credential(credential))
                self.assertEqual(
                    credentialed_url("https://api.example.com/assets/1", credential),
                    "https://api.example.com/assets/1",
                )

    def test_redact_hides_userinfo(self) -> None:
        self.assertEqual(
            redact_url("https://tok123@api.example.com/assets/1"),
            "https://***@api.example.com/assets/1",
        )
        self.assertEqual(redact_url("https://api.example.com/a"), "https://api.example.com/a")

    def test_scrub_credential(self) -> None:
        self.assertEqual(scrub_credential("bad token tok123", "tok123"), "bad token ***")
        self.assertEqual(scrub_credential("unchanged", None), "unchanged")


class RedirectDiscoveryTest(unittest.TestCase):
    def test_returns_location_without_following(self) -> None:
        session = StubSession(
            redirect=lambda url: StubResponse(status_code=302, headers={"Location": "https://cdn.example.com/x?sig=1"})
        )
        client = UpstreamClient(client=session, timeout=(1.0, 2.0))

        location = client.discover_redirect("https://tok123@api.example.com/assets/1")

        self.assertEqual(location, "https://cdn.example.com/x?sig=1")
        [call] = session.calls
        self.assertEqual(call["url"], "https://tok123@api.example.com/assets/1")
        self.assertFalse(call["allow_redirects"])
        self.assertEqual(call["timeout"], (1.0, 2.0))
        self.assertEqual(call["headers"]["Accept"], "application/octet-stream")

    def test_missing_redirect_is_fetch_error(self) -> None:
        session = StubSession(redirect=lambda url: StubResponse(status_code=404))
        client = UpstreamClient(client=session)

        with self.assertRaises(FetchError) as ctx:
            client.discover_redirect("https://api.example.com/assets/1")

        self.assertEqual(ctx.exception.status, 404)

    def test_network_error_does_not_leak_credential(self) -> None:
        def broken(url: str) -> StubResponse:
            raise RequestsConnectionError(f"could not reach {url}")

        client = UpstreamClient(client=StubSession(redirect=broken))

        with self.assertRaises(FetchError) as ctx:
            client.discover_redirect("https://tok123@api.example.com/assets/1")

        self.assertNotIn("tok123", str(ctx.exception))


class RetryPolicyTest(unittest.TestCase):
    def test_should_retry_only_transient_statuses(self) -> None:
        client = UpstreamClient(client=StubSession(), max_retries=3)

        self.assertTrue(client.should_retry(StubResponse(status_code=503), 1))
        self.assertFalse(client.should_retry(StubResponse(status_code=404), 1))
        self.assertFalse(client.should_retry(StubResponse(status_code=503), 3))
        self.assertTrue(client.should_retry(None, 2))

    def test_rejects_unbounded_timeouts(self) -> None:
        with self.assertRaises(ValueError):
            UpstreamClient(client=StubSession(), timeout=(0, 10.0))

    def test_injected_session_is_not_closed(self) -> None:
        session = StubSession()
        with UpstreamClient(client=session):
            pass
        self.assertFalse(session.closed)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

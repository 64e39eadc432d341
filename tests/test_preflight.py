"""Tests for cert_orchestrator.preflight."""

import httpx

from cert_orchestrator.models import ChallengeHandle, SelectedChallenge
from cert_orchestrator.preflight import Http01Preflight


def _selected(challenge_type="http-01", domain="example.com"):
    return SelectedChallenge(
        domain=domain,
        authorization_url="https://acme.test/authz/1",
        challenge=ChallengeHandle(type=challenge_type, url="https://acme.test/chall/1", token="tok123"),
        key_authorization="tok123.thumb",
    )


def _preflight(handler):
    return Http01Preflight(_http_client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_matching_content_passes():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, text="tok123.thumb\n")

    assert _preflight(handler).check(_selected()) is True
    assert seen == ["http://example.com/.well-known/acme-challenge/tok123"]


def test_wrong_content_fails():
    preflight = _preflight(lambda request: httpx.Response(200, text="something else"))
    assert preflight.check(_selected()) is False


def test_not_found_fails():
    preflight = _preflight(lambda request: httpx.Response(404))
    assert preflight.check(_selected()) is False


def test_connection_error_fails():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert _preflight(handler).check(_selected()) is False


def test_dns_challenge_is_not_fetched():
    def handler(request):
        raise AssertionError("no request expected")

    assert _preflight(handler).check(_selected("dns-01")) is True


def test_close_closes_client():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    preflight = Http01Preflight(_http_client=client)

    preflight.close()

    assert client.is_closed

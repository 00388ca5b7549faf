"""
Tests for the shared carrier transport: token cache and error translation.
"""
import asyncio

import httpx
import pytest

from parcelrate.core.exceptions import (
    CredentialError,
    ProviderResponseError,
    ProviderUnreachableError,
    RequestConstructionError,
)
from parcelrate.modules.shipping.carriers.http import CarrierHTTPClient, TokenCache, format_address
from tests.conftest import RecordingTransport, json_response, token_response


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTokenCache:
    """Test OAuth token reuse and refresh."""

    @pytest.mark.asyncio
    async def test_token_reused_until_buffer(self):
        clock = FakeClock()
        calls = []

        async def fetch():
            calls.append(clock.now)
            return f"token-{len(calls)}", 3600

        cache = TokenCache(fetch, buffer_seconds=300, clock=clock)

        assert await cache.get() == "token-1"
        clock.now += 3299
        assert await cache.get() == "token-1"
        assert len(calls) == 1

        # issued_at + expires_in - buffer reached
        clock.now += 1
        assert await cache.get() == "token-2"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self):
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "shared", 3600

        cache = TokenCache(fetch)
        tokens = await asyncio.gather(*(cache.get() for _ in range(10)))

        assert tokens == ["shared"] * 10
        assert calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self):
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return f"t{calls}", 3600

        cache = TokenCache(fetch)
        await cache.get()
        cache.invalidate()
        assert cache.is_valid is False
        assert await cache.get() == "t2"

    @pytest.mark.asyncio
    async def test_fetch_failure_leaves_cache_empty(self):
        async def fetch():
            raise CredentialError("nope", carrier_id="ups")

        cache = TokenCache(fetch)
        with pytest.raises(CredentialError):
            await cache.get()
        assert cache.is_valid is False


def _client(handler, **kwargs) -> CarrierHTTPClient:
    async def fetch_token():
        return "abc", 3600

    kwargs.setdefault("fetch_token", fetch_token)
    return CarrierHTTPClient(
        "acme",
        "Acme",
        "https://api.acme.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestCarrierHTTPClient:
    """Test request sending and failure translation."""

    @pytest.mark.asyncio
    async def test_bearer_and_extra_headers(self):
        transport = RecordingTransport(lambda request: json_response(200, {"ok": True}))

        async def fetch_token():
            return "abc", 3600

        client = CarrierHTTPClient(
            "acme",
            "Acme",
            "https://api.acme.test",
            fetch_token=fetch_token,
            extra_headers=lambda: {"transId": "t-1"},
            transport=transport,
        )

        body = await client.request("POST", "/rates", json={"a": 1})

        assert body == {"ok": True}
        sent = transport.requests[0]
        assert sent.headers["Authorization"] == "Bearer abc"
        assert sent.headers["transId"] == "t-1"
        assert str(sent.url) == "https://api.acme.test/rates"
        await client.close()

    @pytest.mark.asyncio
    async def test_error_status_becomes_provider_response_error(self):
        client = _client(
            lambda request: json_response(400, {"message": "bad zip"}),
            error_message=lambda body: body.get("message"),
        )

        with pytest.raises(ProviderResponseError) as exc_info:
            await client.request("GET", "/rates")

        error = exc_info.value
        assert error.message == "Acme API error: 400 - bad zip"
        assert error.status_code == 400
        assert error.body == {"message": "bad zip"}
        assert error.carrier_id == "acme"

    @pytest.mark.asyncio
    async def test_non_json_error_body_is_kept_raw(self):
        client = _client(lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(ProviderResponseError) as exc_info:
            await client.request("GET", "/rates")

        assert exc_info.value.message == "Acme API error: 502"
        assert exc_info.value.body == {"raw": "Bad Gateway"}

    @pytest.mark.asyncio
    async def test_timeout_becomes_unreachable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderUnreachableError):
            await _client(handler).request("GET", "/rates")

    @pytest.mark.asyncio
    async def test_connect_error_becomes_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderUnreachableError) as exc_info:
            await _client(handler).request("GET", "/rates")
        assert "no response" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unsupported_protocol_becomes_construction_error(self):
        def handler(request):
            raise httpx.UnsupportedProtocol("ftp not supported", request=request)

        with pytest.raises(RequestConstructionError):
            await _client(handler).request("GET", "/rates")

    @pytest.mark.asyncio
    async def test_invalid_json_body(self):
        client = _client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ProviderResponseError) as exc_info:
            await client.request("GET", "/rates")
        assert "invalid response body" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_empty_body_returns_empty_dict(self):
        client = _client(lambda request: httpx.Response(204))
        assert await client.request("DELETE", "/void/1") == {}

    @pytest.mark.asyncio
    async def test_no_credentials(self):
        client = CarrierHTTPClient(
            "acme", "Acme", "https://api.acme.test",
            transport=httpx.MockTransport(lambda request: json_response(200, {})),
        )
        with pytest.raises(CredentialError):
            await client.request("GET", "/rates")

    @pytest.mark.asyncio
    async def test_unauthenticated_request_skips_token(self):
        transport = RecordingTransport(lambda request: json_response(200, {}))
        client = CarrierHTTPClient("acme", "Acme", "https://api.acme.test", transport=transport)

        await client.request("GET", "/ping", authenticated=False)

        assert "Authorization" not in transport.requests[0].headers


class TestFetchOAuthToken:

    @pytest.mark.asyncio
    async def test_returns_token_and_expiry(self):
        transport = RecordingTransport(lambda request: token_response("tok", 1800))
        client = CarrierHTTPClient("acme", "Acme", "https://api.acme.test", transport=transport)

        token, expires_in = await client.fetch_oauth_token(
            "/oauth/token", data={"grant_type": "client_credentials"}, auth=("id", "secret")
        )

        assert (token, expires_in) == ("tok", 1800)
        sent = transport.requests[0]
        assert sent.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert sent.headers["Authorization"].startswith("Basic ")
        assert b"grant_type=client_credentials" in sent.content

    @pytest.mark.asyncio
    async def test_rejected_credentials_become_credential_error(self):
        client = CarrierHTTPClient(
            "acme", "Acme", "https://api.acme.test",
            transport=httpx.MockTransport(lambda request: json_response(401, {"error": "invalid_client"})),
        )

        with pytest.raises(CredentialError) as exc_info:
            await client.fetch_oauth_token("/oauth/token", data={"grant_type": "client_credentials"})

        assert exc_info.value.message == "Failed to authenticate with Acme API"
        assert exc_info.value.details["cause"]["details"]["status_code"] == 401

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        client = CarrierHTTPClient(
            "acme", "Acme", "https://api.acme.test",
            transport=httpx.MockTransport(lambda request: json_response(200, {"token_type": "Bearer"})),
        )
        with pytest.raises(CredentialError):
            await client.fetch_oauth_token("/oauth/token", data={})

    @pytest.mark.asyncio
    async def test_fractional_expiry_string(self):
        client = CarrierHTTPClient(
            "acme", "Acme", "https://api.acme.test",
            transport=httpx.MockTransport(
                lambda request: json_response(200, {"access_token": "tok", "expires_in": "3599.0"})
            ),
        )
        assert await client.fetch_oauth_token("/oauth/token", data={}) == ("tok", 3599)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expires_in", [None, "soon"])
    async def test_invalid_expiry_becomes_credential_error(self, expires_in):
        client = CarrierHTTPClient(
            "acme", "Acme", "https://api.acme.test",
            transport=httpx.MockTransport(
                lambda request: json_response(200, {"access_token": "tok", "expires_in": expires_in})
            ),
        )
        with pytest.raises(CredentialError) as exc_info:
            await client.fetch_oauth_token("/oauth/token", data={})
        assert exc_info.value.carrier_id == "acme"


def test_format_address(destination_address):
    formatted = format_address(destination_address)
    assert formatted["street1"] == "123 Main St"
    assert formatted["street2"] == "Apt 4B"
    assert formatted["postalCode"] == "10001"
    assert formatted["country"] == "US"
    assert formatted["phone"] == ""
    assert formatted["residential"] is True

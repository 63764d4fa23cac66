"""Tests for oauth/upstream.py against a mocked Google token endpoint."""

import time
import urllib.parse

import httpx
import pytest

from oauth.credentials import GOOGLE_TOKEN_URI
from oauth.errors import TokenRejectedError, UpstreamError
from oauth.models import UpstreamToken
from oauth.upstream import ProviderCredentials, UpstreamBridge


class TokenEndpoint:
    """Records token requests and answers with a canned response."""

    def __init__(self, status=200, payload=None):
        self.status = status
        self.payload = payload if payload is not None else {
            "access_token": "ya29.new",
            "expires_in": 3599,
            "refresh_token": "1//new-refresh",
            "scope": "https://www.googleapis.com/auth/contacts",
            "token_type": "Bearer",
        }
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == GOOGLE_TOKEN_URI:
            return httpx.Response(self.status, json=self.payload)
        # Any other Google API
        if request.headers.get("Authorization") == "Bearer revoked":
            return httpx.Response(401, json={"error": "unauthenticated"})
        return httpx.Response(200, json={"ok": True})

    def form(self, index=0) -> dict:
        return dict(urllib.parse.parse_qsl(self.requests[index].content.decode()))


def _bridge(endpoint: TokenEndpoint) -> UpstreamBridge:
    return UpstreamBridge(timeout=5, transport=httpx.MockTransport(endpoint))


class TestExchange:
    async def test_exchange_code(self, provider_config):
        endpoint = TokenEndpoint()
        token = await _bridge(endpoint).exchange_code(provider_config, "google-code")

        assert token.access_token == "ya29.new"
        assert token.refresh_token == "1//new-refresh"
        assert 3500 < token.expires_in() <= 3599
        form = endpoint.form()
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "google-code"
        assert form["client_id"] == provider_config.client_id
        assert form["client_secret"] == provider_config.client_secret
        assert form["redirect_uri"] == provider_config.redirect_uri

    async def test_provider_rejection(self, provider_config):
        endpoint = TokenEndpoint(status=400, payload={"error": "invalid_grant", "error_description": "Bad Request"})
        with pytest.raises(UpstreamError):
            await _bridge(endpoint).exchange_code(provider_config, "used-code")

    async def test_response_without_access_token(self, provider_config):
        endpoint = TokenEndpoint(payload={"token_type": "Bearer"})
        with pytest.raises(UpstreamError):
            await _bridge(endpoint).exchange_code(provider_config, "code")

    async def test_missing_expiry(self, provider_config):
        endpoint = TokenEndpoint(payload={"access_token": "ya29.x"})
        token = await _bridge(endpoint).exchange_code(provider_config, "code")
        assert token.expiry is None
        assert token.expires_in() == 3600

    async def test_network_error(self, provider_config):
        def broken(request):
            raise httpx.ConnectError("connection refused")

        bridge = UpstreamBridge(transport=httpx.MockTransport(broken))
        with pytest.raises(UpstreamError):
            await bridge.exchange_code(provider_config, "code")


class TestRefresh:
    async def test_refresh_keeps_original_when_not_rotated(self, provider_config):
        endpoint = TokenEndpoint(payload={"access_token": "ya29.refreshed", "expires_in": 3599})
        token = await _bridge(endpoint).refresh(provider_config, "1//original")

        assert token.access_token == "ya29.refreshed"
        assert token.refresh_token == "1//original"
        form = endpoint.form()
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "1//original"

    async def test_refresh_rotated(self, provider_config):
        token = await _bridge(TokenEndpoint()).refresh(provider_config, "1//original")
        assert token.refresh_token == "1//new-refresh"

    async def test_refresh_failure(self, provider_config):
        endpoint = TokenEndpoint(status=400, payload={"error": "invalid_grant"})
        with pytest.raises(UpstreamError):
            await _bridge(endpoint).refresh(provider_config, "1//revoked")


class TestProviderCredentials:
    async def test_request_sends_bearer(self, provider_config):
        endpoint = TokenEndpoint()
        credentials = ProviderCredentials(provider_config, UpstreamToken("ya29.ok"), _bridge(endpoint))

        resp = await credentials.request("GET", "https://people.googleapis.com/v1/people/me")
        assert resp.status_code == 200
        assert endpoint.requests[0].headers["Authorization"] == "Bearer ya29.ok"
        assert not credentials.rejected

    async def test_rejected_token(self, provider_config):
        credentials = ProviderCredentials(provider_config, UpstreamToken("revoked"), _bridge(TokenEndpoint()))
        with pytest.raises(TokenRejectedError):
            await credentials.request("GET", "https://people.googleapis.com/v1/people/me")
        assert credentials.rejected

    async def test_lazy_refresh_when_expired(self, provider_config):
        endpoint = TokenEndpoint()
        token = UpstreamToken("ya29.stale", refresh_token="1//r", expiry=time.time() - 10)
        credentials = ProviderCredentials(provider_config, token, _bridge(endpoint))

        await credentials.request("GET", "https://people.googleapis.com/v1/people/me")
        assert credentials.access_token == "ya29.new"
        assert str(endpoint.requests[0].url) == GOOGLE_TOKEN_URI
        assert endpoint.requests[1].headers["Authorization"] == "Bearer ya29.new"

    async def test_no_refresh_without_expiry(self, provider_config):
        endpoint = TokenEndpoint()
        credentials = ProviderCredentials(provider_config, UpstreamToken("ya29.ok", refresh_token="1//r"), _bridge(endpoint))
        await credentials.ensure_fresh()
        assert endpoint.requests == []

    async def test_failed_refresh_rejects(self, provider_config):
        endpoint = TokenEndpoint(status=400, payload={"error": "invalid_grant"})
        token = UpstreamToken("ya29.stale", refresh_token="1//r", expiry=time.time() - 10)
        credentials = ProviderCredentials(provider_config, token, _bridge(endpoint))
        with pytest.raises(TokenRejectedError):
            await credentials.ensure_fresh()
        assert credentials.rejected

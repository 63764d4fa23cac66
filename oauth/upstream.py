"""Upstream identity provider bridge.

Exchanges provider authorization codes and refresh tokens at the provider's
token endpoint, and wraps bearer tokens into ProviderCredentials the protected
API uses to call Google on the user's behalf.

Provider error bodies are logged here and never returned to callers.
"""

import logging
import time
from typing import Optional

import httpx

from oauth.credentials import ProviderConfig
from oauth.errors import TokenRejectedError, UpstreamError
from oauth.models import UpstreamToken

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


def _redact(token: str) -> str:
    return f"{token[:8]}..." if token else "<empty>"


class UpstreamBridge:
    """Talks to the provider token endpoint with httpx."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def exchange_code(self, provider: ProviderConfig, code: str) -> UpstreamToken:
        """Exchange a provider authorization code for a token set."""
        data = await self._token_request(provider, {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": provider.client_id,
            "client_secret": provider.client_secret,
            "redirect_uri": provider.redirect_uri,
        })
        token = self._parse_token(data)
        logger.info(f"[UPSTREAM] Exchanged provider code, access token {_redact(token.access_token)}")
        return token

    async def refresh(self, provider: ProviderConfig, refresh_token: str) -> UpstreamToken:
        """Refresh a provider token. The original refresh token is kept if not rotated."""
        data = await self._token_request(provider, {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": provider.client_id,
            "client_secret": provider.client_secret,
        })
        token = self._parse_token(data)
        if not token.refresh_token:
            token.refresh_token = refresh_token
        logger.info(f"[UPSTREAM] Refreshed token {_redact(refresh_token)}")
        return token

    async def _token_request(self, provider: ProviderConfig, form: dict) -> dict:
        try:
            async with self.client() as client:
                resp = await client.post(
                    provider.token_uri,
                    data=form,
                    headers={"Accept": "application/json"},
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"[UPSTREAM] Token endpoint returned {e.response.status_code}: {e.response.text[:200]}"
            )
            raise UpstreamError(f"provider returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"[UPSTREAM] Token endpoint request failed: {e}")
            raise UpstreamError("provider request failed") from e
        except ValueError as e:
            logger.warning(f"[UPSTREAM] Token endpoint returned invalid JSON: {e}")
            raise UpstreamError("provider returned invalid JSON") from e

        if not isinstance(data, dict) or not data.get("access_token"):
            logger.warning("[UPSTREAM] Token endpoint response has no access_token")
            raise UpstreamError("provider response has no access_token")
        return data

    @staticmethod
    def _parse_token(data: dict) -> UpstreamToken:
        expiry = None
        expires_in = data.get("expires_in")
        if expires_in is not None:
            try:
                expiry = time.time() + int(expires_in)
            except (TypeError, ValueError):
                expiry = None
        return UpstreamToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or "",
            expiry=expiry,
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope") or "",
        )


class ProviderCredentials:
    """Provider credentials derived from an inbound bearer token.

    The proxy returns provider tokens verbatim, so a bearer token is used as
    the provider access token directly. When a refresh token and expiry are
    known the access token is refreshed lazily before use.
    """

    def __init__(self, provider: ProviderConfig, token: UpstreamToken, bridge: UpstreamBridge):
        self.provider = provider
        self.token = token
        self.bridge = bridge
        # Set once the provider refuses the token; the middleware turns it into a 401
        self.rejected = False

    @property
    def access_token(self) -> str:
        return self.token.access_token

    async def ensure_fresh(self) -> None:
        if not self.token.refresh_token or not self.token.is_expired():
            return
        try:
            self.token = await self.bridge.refresh(self.provider, self.token.refresh_token)
        except UpstreamError as e:
            self.rejected = True
            raise TokenRejectedError("token refresh failed") from e

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Call a provider API with the bearer token.

        Raises TokenRejectedError when the provider answers 401.
        """
        await self.ensure_fresh()
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {self.token.access_token}"
        async with self.bridge.client() as client:
            resp = await client.request(method, url, headers=headers, **kwargs)
        if resp.status_code == 401:
            logger.info(f"[AUTH] Provider rejected token {_redact(self.token.access_token)}")
            self.rejected = True
            raise TokenRejectedError("provider rejected the access token")
        return resp

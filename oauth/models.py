"""Records held by the OAuth proxy.

Everything here lives in process memory only. Upstream tokens are never
written to disk; they sit inside an AuthorizationCode until the client
redeems it at the token endpoint.
"""

import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class UpstreamToken:
    """Token set obtained from the identity provider."""

    access_token: str
    refresh_token: str = ""
    expiry: Optional[float] = None  # Unix timestamp
    token_type: str = "Bearer"
    scope: str = ""

    def expires_in(self, default: int = 3600) -> int:
        """Seconds until expiry, never negative."""
        if self.expiry is None:
            return default
        return max(0, int(self.expiry - time.time()))

    def is_expired(self, leeway: int = 60) -> bool:
        if self.expiry is None:
            return False
        return time.time() + leeway >= self.expiry


@dataclass
class RegisteredClient:
    client_id: str
    client_secret: str = ""
    client_name: str = "MCP Client"
    redirect_uris: set[str] = field(default_factory=set)
    grant_types: list[str] = field(default_factory=lambda: ["authorization_code", "refresh_token"])
    response_types: list[str] = field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "client_secret_basic"
    created_at: float = field(default_factory=time.time)

    @property
    def is_public(self) -> bool:
        return not self.client_secret


@dataclass
class AuthorizationState:
    """Pending /oauth/authorize request, keyed by the internal state token."""

    state: str
    client_id: str
    redirect_uri: str
    code_challenge: str = ""
    code_challenge_method: str = ""
    client_state: str = ""
    created_at: float = field(default_factory=time.time)


@dataclass
class AuthorizationCode:
    """Code minted by the proxy, bound to the provider token it stands for."""

    code: str
    client_id: str
    redirect_uri: str
    upstream_token: UpstreamToken
    code_challenge: str = ""
    code_challenge_method: str = ""
    created_at: float = field(default_factory=time.time)

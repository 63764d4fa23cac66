"""OAuth 2.1 authorization server that proxies Google.

MCP clients run a standard authorization code flow against this server.
Behind it, a second code flow runs against Google using the provider
credentials from the CredentialLoader. Google's tokens are handed to the
client verbatim; the proxy only mints its own client ids, state tokens and
authorization codes.

Flow:
    /oauth/authorize  -> state stored, redirect to Google
    /oauth/callback   -> state consumed, Google code exchanged, our code
                         stored, redirect to the client's redirect_uri
    /oauth/token      -> our code consumed (PKCE checked), Google token returned

State and code lookups are single use. An unknown, reused or expired value
is refused with the same error.
"""

import hmac
import logging
import secrets
import urllib.parse
from typing import Optional

from oauth import pkce
from oauth.credentials import CredentialLoader
from oauth.errors import OAuthError, UpstreamError
from oauth.models import AuthorizationCode, AuthorizationState, UpstreamToken
from oauth.reaper import DEFAULT_INTERVAL, Reaper
from oauth.stores import ENTRY_TTL, ClientRegistry, ExpiringStore
from oauth.upstream import ProviderCredentials, UpstreamBridge

logger = logging.getLogger(__name__)

RESOURCE_SCOPES = ["contacts:read", "contacts:write"]
GRANT_TYPES = ["authorization_code", "refresh_token"]
TOKEN_AUTH_METHODS = ["none", "client_secret_basic", "client_secret_post"]

# Separates our state token from the client's state in the provider-facing
# state value. token_urlsafe never produces it.
STATE_DELIMITER = "."


def append_query(url: str, params: dict) -> str:
    """Add non-empty params to url, keeping any existing query string."""
    parts = urllib.parse.urlsplit(url)
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v)
    return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(query)))


def _short(value: str) -> str:
    return f"{value[:8]}..." if value else "<empty>"


class OAuthProxy:
    def __init__(
        self,
        base_url: str,
        loader: CredentialLoader,
        bridge: Optional[UpstreamBridge] = None,
        registry: Optional[ClientRegistry] = None,
        scopes: Optional[list[str]] = None,
        ttl: float = ENTRY_TTL,
        reap_interval: float = DEFAULT_INTERVAL,
    ):
        self.base_url = base_url.rstrip("/")
        self.loader = loader
        self.bridge = bridge if bridge is not None else UpstreamBridge()
        self.registry = registry if registry is not None else ClientRegistry()
        self.scopes = list(scopes or RESOURCE_SCOPES)
        self.states: ExpiringStore[AuthorizationState] = ExpiringStore("state", ttl)
        self.codes: ExpiringStore[AuthorizationCode] = ExpiringStore("code", ttl)
        self.reaper = Reaper([self.states, self.codes], interval=reap_interval)

    # ============== Discovery Metadata ==============

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.base_url}/.well-known/oauth-protected-resource"

    def challenge(self, error: str = "") -> str:
        """WWW-Authenticate value pointing clients at the resource metadata."""
        value = f'Bearer resource_metadata="{self.resource_metadata_url}"'
        if error:
            value += f', error="{error}"'
        return value

    def protected_resource_metadata(self) -> dict:
        """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
        return {
            "resource": self.base_url,
            "authorization_servers": [self.base_url],
            "bearer_methods_supported": ["header"],
            "scopes_supported": self.scopes,
        }

    def authorization_server_metadata(self) -> dict:
        """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
        return {
            "issuer": self.base_url,
            "authorization_endpoint": f"{self.base_url}/oauth/authorize",
            "token_endpoint": f"{self.base_url}/oauth/token",
            "registration_endpoint": f"{self.base_url}/oauth/register",
            "scopes_supported": self.scopes,
            "response_types_supported": ["code"],
            "grant_types_supported": GRANT_TYPES,
            "code_challenge_methods_supported": list(pkce.SUPPORTED_METHODS),
            "token_endpoint_auth_methods_supported": TOKEN_AUTH_METHODS,
        }

    # ============== Client Registration ==============

    async def register(self, body) -> dict:
        if not isinstance(body, dict):
            raise OAuthError("invalid_request", "Request body must be a JSON object")

        client = await self.registry.register(body.get("redirect_uris"), body)
        return {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "client_id_issued_at": int(client.created_at),
            "client_secret_expires_at": 0,
            "client_name": client.client_name,
            "redirect_uris": sorted(client.redirect_uris),
            "grant_types": client.grant_types,
            "response_types": client.response_types,
            "token_endpoint_auth_method": client.token_endpoint_auth_method,
        }

    # ============== Authorization ==============

    async def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        response_type: str,
        state: str = "",
        code_challenge: str = "",
        code_challenge_method: str = "",
    ) -> str:
        """Validate an authorization request and return the provider consent URL."""
        if not client_id:
            raise OAuthError("invalid_request", "client_id is required")
        if not redirect_uri:
            raise OAuthError("invalid_request", "redirect_uri is required")
        if response_type != "code":
            raise OAuthError("unsupported_response_type", "Only response_type=code is supported")

        method = ""
        if code_challenge:
            method = pkce.normalize_method(code_challenge_method)
            if method not in pkce.SUPPORTED_METHODS:
                raise OAuthError("invalid_request", f"Unsupported code_challenge_method: {method}")

        await self.registry.resolve_or_auto_register(client_id, redirect_uri)
        provider = await self.loader.load()

        internal_state = secrets.token_urlsafe(32)
        await self.states.put(internal_state, AuthorizationState(
            state=internal_state,
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=method,
            client_state=state,
        ))

        provider_state = internal_state
        if state:
            provider_state = f"{internal_state}{STATE_DELIMITER}{state}"

        logger.info(f"[AUTHORIZE] Redirecting client {client_id} to provider (pkce: {bool(code_challenge)})")
        return provider.authorization_url(provider_state)

    async def callback(self, code: str, state: str, error: str = "", error_description: str = "") -> str:
        """Finish the provider leg and return the redirect URL for the client."""
        internal_state, _, returned_state = (state or "").partition(STATE_DELIMITER)

        if error:
            # The flow is over; the state must not be usable afterwards
            await self.states.consume(internal_state)
            logger.warning(f"[CALLBACK] Provider returned error: {error} ({error_description})")
            raise OAuthError(error, error_description or None)
        if not code or not state:
            raise OAuthError("invalid_request", "code and state are required")

        pending = await self.states.consume(internal_state)
        if pending is None:
            logger.warning(f"[CALLBACK] Unknown or expired state {_short(internal_state)}")
            raise OAuthError("invalid_request", "Invalid or expired state")
        if returned_state != pending.client_state:
            logger.warning(f"[CALLBACK] Returned client state differs from recorded one for {pending.client_id}")

        provider = await self.loader.load()
        try:
            upstream_token = await self.bridge.exchange_code(provider, code)
        except UpstreamError as e:
            logger.error(f"[CALLBACK] Provider code exchange failed for client {pending.client_id}: {e}")
            raise OAuthError("invalid_grant", "Failed to exchange authorization code") from e

        our_code = secrets.token_urlsafe(32)
        await self.codes.put(our_code, AuthorizationCode(
            code=our_code,
            client_id=pending.client_id,
            redirect_uri=pending.redirect_uri,
            upstream_token=upstream_token,
            code_challenge=pending.code_challenge,
            code_challenge_method=pending.code_challenge_method,
        ))

        logger.info(f"[CALLBACK] Issued authorization code for client {pending.client_id}")
        return append_query(pending.redirect_uri, {"code": our_code, "state": pending.client_state})

    # ============== Token Endpoint ==============

    async def token(self, grant_type: str, params: dict) -> dict:
        if grant_type == "authorization_code":
            return await self.exchange_authorization_code(
                code=params.get("code") or "",
                client_id=params.get("client_id") or "",
                client_secret=params.get("client_secret") or "",
                redirect_uri=params.get("redirect_uri") or "",
                code_verifier=params.get("code_verifier") or "",
            )
        if grant_type == "refresh_token":
            return await self.refresh(params.get("refresh_token") or "")
        raise OAuthError("unsupported_grant_type", f"Unsupported grant_type: {grant_type or '<missing>'}")

    async def exchange_authorization_code(
        self,
        code: str,
        client_id: str = "",
        client_secret: str = "",
        redirect_uri: str = "",
        code_verifier: str = "",
    ) -> dict:
        if not code:
            raise OAuthError("invalid_request", "code is required")

        record = await self.codes.consume(code)
        if record is None:
            logger.warning(f"[TOKEN] Unknown, used or expired code {_short(code)}")
            raise OAuthError("invalid_grant", "Invalid or expired authorization code")

        if client_id and client_id != record.client_id:
            logger.warning(f"[TOKEN] client_id mismatch: {client_id} != {record.client_id}")
            raise OAuthError("invalid_client", "client_id mismatch", status_code=401)

        if client_secret:
            client = await self.registry.get(record.client_id)
            if client and client.client_secret and not hmac.compare_digest(
                client_secret.encode("utf-8"), client.client_secret.encode("utf-8")
            ):
                logger.warning(f"[TOKEN] Bad client_secret for {record.client_id}")
                raise OAuthError("invalid_client", "Invalid client credentials", status_code=401)

        if redirect_uri and redirect_uri != record.redirect_uri:
            raise OAuthError("invalid_grant", "redirect_uri mismatch")

        if record.code_challenge:
            if not code_verifier:
                raise OAuthError("invalid_request", "code_verifier is required")
            if not pkce.verify(code_verifier, record.code_challenge, record.code_challenge_method):
                logger.warning(f"[TOKEN] PKCE verification failed for {record.client_id}")
                raise OAuthError("invalid_grant", "PKCE verification failed")

        logger.info(f"[TOKEN] Issued token for client {record.client_id}")
        return self._token_response(record.upstream_token)

    async def refresh(self, refresh_token: str) -> dict:
        if not refresh_token:
            raise OAuthError("invalid_request", "refresh_token is required")

        provider = await self.loader.load()
        try:
            token = await self.bridge.refresh(provider, refresh_token)
        except UpstreamError as e:
            logger.warning(f"[TOKEN] Refresh failed for {_short(refresh_token)}: {e}")
            raise OAuthError("invalid_grant", "Failed to refresh token") from e

        logger.info("[TOKEN] Refreshed token")
        return self._token_response(token)

    def _token_response(self, token: UpstreamToken) -> dict:
        # Scope is this resource's, not the provider's
        response = {
            "access_token": token.access_token,
            "token_type": "Bearer",
            "expires_in": token.expires_in(),
            "scope": " ".join(self.scopes),
        }
        if token.refresh_token:
            response["refresh_token"] = token.refresh_token
        return response

    # ============== Bearer Validation ==============

    async def validate_bearer(self, authorization: str) -> ProviderCredentials:
        """Wrap an inbound bearer token into provider credentials.

        Raises OAuthError (401) when the header is missing or not a bearer
        token, and ConfigError when provider credentials are unavailable.
        """
        scheme, _, token = (authorization or "").partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise OAuthError("invalid_request", "Missing or invalid Authorization header", status_code=401)

        provider = await self.loader.load()
        return ProviderCredentials(provider, UpstreamToken(access_token=token), self.bridge)

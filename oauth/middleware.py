"""Bearer token middleware for the protected MCP endpoint.

Every request must carry `Authorization: Bearer <token>`. The token is the
Google access token handed out by /oauth/token; it is wrapped into
ProviderCredentials and exposed to the downstream app through
`request.state.credentials` and get_current_credentials().

Requests without a bearer token, and requests whose token Google refuses,
get a 401 whose WWW-Authenticate header points at the protected resource
metadata so clients can discover the authorization server.
"""

import contextvars
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from oauth.errors import ConfigError, OAuthError, TokenRejectedError
from oauth.server import OAuthProxy
from oauth.upstream import ProviderCredentials

logger = logging.getLogger(__name__)

_current_credentials: contextvars.ContextVar[Optional[ProviderCredentials]] = contextvars.ContextVar(
    "provider_credentials", default=None
)


def get_current_credentials() -> Optional[ProviderCredentials]:
    """Credentials of the request being handled, if any."""
    return _current_credentials.get()


class MCPOAuthMiddleware(BaseHTTPMiddleware):
    """Validates Bearer tokens for the Streamable HTTP MCP endpoint."""

    def __init__(self, app, oauth_proxy: OAuthProxy):
        super().__init__(app)
        self.oauth_proxy = oauth_proxy

    def _unauthorized(self, error: str, description: str) -> JSONResponse:
        challenge_error = error if error == "invalid_token" else ""
        return JSONResponse(
            {"error": error, "error_description": description},
            status_code=401,
            headers={"WWW-Authenticate": self.oauth_proxy.challenge(challenge_error)},
        )

    async def dispatch(self, request: Request, call_next):
        try:
            credentials = await self.oauth_proxy.validate_bearer(request.headers.get("Authorization", ""))
        except OAuthError as e:
            logger.info("[AUTH] Request rejected: no Bearer token")
            return self._unauthorized(e.error, e.description or "Missing or invalid Authorization header")
        except ConfigError as e:
            logger.error(f"[AUTH] Provider credentials unavailable: {e}")
            return JSONResponse(
                {"error": "server_error", "error_description": "OAuth provider is not configured"},
                status_code=500,
            )

        request.state.credentials = credentials
        reset_token = _current_credentials.set(credentials)
        try:
            response = await call_next(request)
        except TokenRejectedError:
            logger.info("[AUTH] Request rejected: provider refused the token")
            return self._unauthorized("invalid_token", "The access token was rejected")
        finally:
            _current_credentials.reset(reset_token)

        if credentials.rejected:
            logger.info("[AUTH] Request rejected: provider refused the token")
            return self._unauthorized("invalid_token", "The access token was rejected")
        return response

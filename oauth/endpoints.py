"""OAuth 2.1 endpoints for the contacts MCP server.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Client registration (/oauth/register)
- Authorization flow (/oauth/authorize, /oauth/callback)
- Token endpoint (/oauth/token)

The OAuthProxy doing the work is read from `app.state.oauth_proxy`.
"""

import base64
import logging
import urllib.parse

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from oauth.errors import ConfigError, OAuthError
from oauth.server import OAuthProxy

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def get_oauth_proxy(request: Request) -> OAuthProxy:
    return request.app.state.oauth_proxy


def _error(e: Exception, headers: dict = None) -> JSONResponse:
    if isinstance(e, OAuthError):
        return JSONResponse(e.to_dict(), status_code=e.status_code, headers=headers)
    logger.error(f"[OAUTH] Provider configuration error: {e}")
    return JSONResponse(
        {"error": "server_error", "error_description": "OAuth provider is not configured"},
        status_code=500,
        headers=headers,
    )


def _basic_credentials(request: Request) -> tuple[str, str]:
    """client_id and client_secret from an HTTP Basic Authorization header."""
    scheme, _, value = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "basic" or not value:
        return "", ""
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        raise OAuthError("invalid_client", "Malformed Basic credentials", status_code=401)
    user, _, password = decoded.partition(":")
    return urllib.parse.unquote_plus(user), urllib.parse.unquote_plus(password)


# ============== OAuth 2.1 Discovery Endpoints ==============

@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource(proxy: OAuthProxy = Depends(get_oauth_proxy)):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    return proxy.protected_resource_metadata()


@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server(proxy: OAuthProxy = Depends(get_oauth_proxy)):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return proxy.authorization_server_metadata()


# ============== Client Registration ==============

@router.post("/oauth/register")
async def register_client(request: Request, proxy: OAuthProxy = Depends(get_oauth_proxy)):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
    try:
        data = await request.json()
    except ValueError:
        return JSONResponse(
            {"error": "invalid_request", "error_description": "Request body must be valid JSON"},
            status_code=400,
        )

    try:
        client_info = await proxy.register(data)
    except OAuthError as e:
        logger.info(f"[REGISTER] Rejected: {e.description}")
        return _error(e)

    return JSONResponse(client_info, status_code=201)


# ============== Authorization Flow ==============

@router.get("/oauth/authorize")
async def authorize(
    response_type: str = "",
    client_id: str = "",
    redirect_uri: str = "",
    state: str = "",
    code_challenge: str = "",
    code_challenge_method: str = "",
    proxy: OAuthProxy = Depends(get_oauth_proxy),
):
    """OAuth 2.0 Authorization Endpoint - redirects to Google."""
    try:
        url = await proxy.authorize(
            client_id=client_id,
            redirect_uri=redirect_uri,
            response_type=response_type,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
    except (OAuthError, ConfigError) as e:
        return _error(e)

    return RedirectResponse(url=url, status_code=302)


@router.get("/oauth/callback")
async def oauth_callback(
    code: str = "",
    state: str = "",
    error: str = "",
    error_description: str = "",
    proxy: OAuthProxy = Depends(get_oauth_proxy),
):
    """Google redirects here; we redirect on to the MCP client with our own code."""
    try:
        url = await proxy.callback(code=code, state=state, error=error, error_description=error_description)
    except (OAuthError, ConfigError) as e:
        return _error(e)

    return RedirectResponse(url=url, status_code=302)


# ============== Token Endpoint ==============

@router.post("/oauth/token")
async def token(
    request: Request,
    grant_type: str = Form(None),
    code: str = Form(None),
    redirect_uri: str = Form(None),
    client_id: str = Form(None),
    client_secret: str = Form(None),
    code_verifier: str = Form(None),
    refresh_token: str = Form(None),
    proxy: OAuthProxy = Depends(get_oauth_proxy),
):
    """OAuth 2.0 Token Endpoint."""
    params = {
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "client_secret": client_secret,
        "code_verifier": code_verifier,
        "refresh_token": refresh_token,
    }

    # Some clients post JSON instead of a form
    if grant_type is None and request.headers.get("content-type", "").startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            return JSONResponse(
                {"error": "invalid_request", "error_description": "Request body must be valid JSON"},
                status_code=400,
                headers=NO_STORE,
            )
        grant_type = data.get("grant_type")
        params = {key: data.get(key) for key in params}

    try:
        basic_id, basic_secret = _basic_credentials(request)
        params["client_id"] = params["client_id"] or basic_id
        params["client_secret"] = params["client_secret"] or basic_secret

        logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {params['client_id']}")
        result = await proxy.token(grant_type or "", params)
    except (OAuthError, ConfigError) as e:
        return _error(e, headers=NO_STORE)

    return JSONResponse(result, headers=NO_STORE)

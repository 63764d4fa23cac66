"""Contacts MCP Server - OAuth 2.1 front door for the contacts MCP API.

It handles:
- MCP tools via tools.py, served over Streamable HTTP at /mcp
- OAuth 2.1 authorization server endpoints that proxy Google (oauth/)
- Health and server info endpoints

MCP clients (ChatGPT, Claude, etc.) discover the authorization server from
/.well-known/oauth-protected-resource, register, sign in with Google through
/oauth/authorize, and call /mcp with the Google access token they receive.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware import Middleware
from starlette.types import ASGIApp

from config import Config, load_config
from oauth.credentials import CredentialLoader
from oauth.endpoints import router as oauth_router
from oauth.middleware import MCPOAuthMiddleware
from oauth.server import OAuthProxy
from oauth.stores import ClientRegistry
from oauth.upstream import UpstreamBridge

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
MCP_TRANSPORT = "streamable-http"


def build_oauth_proxy(config: Config) -> OAuthProxy:
    """Wire the OAuth proxy from configuration. Nothing is loaded until first use."""
    loader = CredentialLoader(
        base_url=config.base_url,
        secret_project=config.secret_project,
        secret_name=config.secret_name,
        credential_file=config.credential_file,
        scopes=config.upstream_scopes,
    )
    return OAuthProxy(
        base_url=config.base_url,
        loader=loader,
        bridge=UpstreamBridge(timeout=config.upstream_timeout),
        registry=ClientRegistry(auto_register=config.auto_register_clients),
        scopes=config.resource_scopes,
    )


def create_app(
    config: Optional[Config] = None,
    oauth_proxy: Optional[OAuthProxy] = None,
    protected_app: Optional[ASGIApp] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Configuration; load_config() when omitted.
        oauth_proxy: Pre-built proxy, e.g. with a fake upstream in tests.
        protected_app: ASGI app to serve at /mcp instead of the FastMCP tools.
    """
    config = config or load_config()
    proxy = oauth_proxy or build_oauth_proxy(config)

    # ============== Protected MCP App ==============
    inner_lifespan = None
    if protected_app is None:
        from tools import mcp

        mcp_http_app = mcp.http_app(
            path="/",  # Route at root of mounted app
            transport=MCP_TRANSPORT,
            json_response=True,
            middleware=[Middleware(MCPOAuthMiddleware, oauth_proxy=proxy)],
        )
        inner_lifespan = mcp_http_app.lifespan  # Required for FastMCP task group initialization
        protected = mcp_http_app
    else:
        protected = MCPOAuthMiddleware(protected_app, oauth_proxy=proxy)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        proxy.reaper.start()
        try:
            if inner_lifespan is not None:
                async with inner_lifespan(app):
                    yield
            else:
                yield
        finally:
            await proxy.reaper.stop()

    # ============== FastAPI App ==============
    app = FastAPI(
        title="Contacts MCP Server",
        description="MCP server for Google Contacts with an OAuth 2.1 proxy",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.oauth_proxy = proxy
    app.state.config = config

    # Add CORS middleware for browser-based MCP client access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def oauth_shaped_http_error(request: Request, exc: StarletteHTTPException):
        """Render framework errors (404, 405) as {error, error_description}."""
        if exc.status_code == 404:
            error = "not_found"
        elif exc.status_code >= 500:
            error = "server_error"
        else:
            error = "invalid_request"
        return JSONResponse(
            {"error": error, "error_description": str(exc.detail)},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    # Mount MCP app at /mcp
    app.mount("/mcp", protected)

    # ============== Include Routers ==============
    app.include_router(oauth_router)

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "contacts-mcp-server", "transport": MCP_TRANSPORT}

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        return {
            "name": "Contacts MCP Server",
            "version": VERSION,
            "transport": MCP_TRANSPORT,
            "endpoints": {
                "streamable_http": "/mcp",
            },
            "tools": ["whoami"],
            "oauth": {
                "protected_resource": proxy.resource_metadata_url,
                "authorization_server": f"{proxy.base_url}/.well-known/oauth-authorization-server",
                "auto_register_clients": proxy.registry.auto_register,
            },
        }

    logger.info(f"[STARTUP] BASE_URL: {proxy.base_url}")
    logger.info(f"[STARTUP] Auto-registration: {proxy.registry.auto_register}")
    return app


# ============== Main Entry Point ==============

if __name__ == "__main__":
    from cli import main

    main(["serve"])

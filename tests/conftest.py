"""Shared fixtures: an OAuthProxy wired to a fake Google and a stub protected app."""

import pytest
from fastapi.testclient import TestClient
from starlette.applications import Starlette
from starlette.routing import Route

from config import Config
from helpers import BASE_URL, FakeBridge, whoami_endpoint
from main import create_app
from oauth.credentials import CredentialLoader, ProviderConfig
from oauth.server import OAuthProxy
from oauth.stores import ClientRegistry


@pytest.fixture
def provider_config():
    return ProviderConfig(
        client_id="google-client-id",
        client_secret="google-client-secret",
        redirect_uri=f"{BASE_URL}/oauth/callback",
    )


@pytest.fixture
def fake_bridge():
    return FakeBridge()


@pytest.fixture
def auto_register():
    return True


@pytest.fixture
def proxy(provider_config, fake_bridge, auto_register):
    return OAuthProxy(
        base_url=BASE_URL,
        loader=CredentialLoader.preloaded(provider_config),
        bridge=fake_bridge,
        registry=ClientRegistry(auto_register=auto_register),
    )


@pytest.fixture
def protected_app():
    return Starlette(routes=[Route("/", whoami_endpoint, methods=["GET", "POST"])])


@pytest.fixture
def app(proxy, protected_app):
    return create_app(config=Config({"base_url": BASE_URL}), oauth_proxy=proxy, protected_app=protected_app)


@pytest.fixture
def client(app):
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client

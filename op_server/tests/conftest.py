"""
Pytest configuration for op_server. Every test gets a fresh provider over in-memory SQLite;
the RSA signing key is generated once per session.
"""
import json

import pytest
from fastapi.testclient import TestClient

from op_server.config import Settings
from op_server.keys import KeyStore
from op_server.main import create_app
from op_server.provider import build_provider
from op_server.tests.helpers import TEST_ACCOUNTS, TEST_CLIENTS


@pytest.fixture(scope="session")
def signing_keys():
    return KeyStore.generate()


@pytest.fixture
def settings():
    return Settings(
        issuer="http://testserver",
        oidc_clients_json=json.dumps(TEST_CLIENTS),
        accounts_json=json.dumps(TEST_ACCOUNTS),
    )


@pytest.fixture
def provider(settings, signing_keys):
    provider = build_provider(settings, keys=signing_keys)
    yield provider
    provider.close()


@pytest.fixture
def app(provider):
    return create_app(provider=provider)


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)

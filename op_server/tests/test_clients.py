"""
Client registry: source precedence, schema validation, fail-fast errors.
"""
import json
from pathlib import Path

import pytest

from op_server.clients import ClientDescriptor, ClientRegistry
from op_server.config import Settings
from op_server.errors import ConfigurationError

VALID = {
    "client_id": "rp-1",
    "client_secret": "s3cret",
    "redirect_uris": ["https://rp.example/cb"],
}


def _settings(tmp_path: Path, **overrides) -> Settings:
    overrides.setdefault("clients_file", tmp_path / ".env.clients.json")
    return Settings(**overrides)


def test_env_json_is_used_first(tmp_path):
    (tmp_path / ".env.clients.json").write_text(json.dumps([{**VALID, "client_id": "from-file"}]))
    registry = ClientRegistry.load(_settings(tmp_path, oidc_clients_json=json.dumps([VALID])))
    assert [c.client_id for c in registry] == ["rp-1"]


def test_file_is_used_when_env_missing(tmp_path):
    (tmp_path / ".env.clients.json").write_text(json.dumps([{**VALID, "client_id": "from-file"}]))
    registry = ClientRegistry.load(_settings(tmp_path))
    assert registry.get("from-file") is not None


def test_scalar_fallback_defaults(tmp_path):
    registry = ClientRegistry.load(_settings(tmp_path))
    client = registry.get("dev-rp")
    assert client.client_secret == "dev-secret"
    assert client.redirect_uris == ("https://app.localtest.me/callback",)
    assert client.post_logout_redirect_uris == ("https://app.localtest.me",)
    assert client.grant_types == ("authorization_code", "refresh_token")
    assert client.response_types == ("code",)
    assert client.token_endpoint_auth_method == "client_secret_basic"


def test_defaults_for_optional_metadata(tmp_path):
    client = ClientRegistry.load(_settings(tmp_path, oidc_clients_json=json.dumps([VALID]))).get("rp-1")
    assert client.grant_types == ("authorization_code",)
    assert client.response_types == ("code",)
    assert client.post_logout_redirect_uris == ()
    assert client.is_confidential


def test_relative_redirect_uri_fails_naming_the_field(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        ClientRegistry.load(_settings(tmp_path, redirect_uri="/callback"))
    assert "redirect_uris.0" in str(exc_info.value)
    assert any("redirect_uris.0" in f for f in exc_info.value.fields)


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"redirect_uris": []}, "0.redirect_uris"),
        ({"redirect_uris": ["https://rp.example/cb#frag"]}, "0.redirect_uris.0"),
        ({"redirect_uris": ["https:///cb"]}, "0.redirect_uris.0"),
        ({"grant_types": ["client_credentials"]}, "0.grant_types.0"),
        ({"response_types": ["code id_token"]}, "0.response_types.0"),
        ({"token_endpoint_auth_method": "private_key_jwt"}, "0.token_endpoint_auth_method"),
        ({"client_secret": ""}, "0.client_secret"),
        ({"client_id": "   "}, "0.client_id"),
        ({"logo_uri": "https://rp.example/logo.png"}, "0.logo_uri"),
    ],
)
def test_invalid_client_metadata_is_rejected(tmp_path, overrides, field):
    raw = json.dumps([{**VALID, **overrides}])
    with pytest.raises(ConfigurationError) as exc_info:
        ClientRegistry.load(_settings(tmp_path, oidc_clients_json=raw))
    assert f"OIDC_CLIENTS: {field}" in str(exc_info.value)


def test_malformed_json_is_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        ClientRegistry.load(_settings(tmp_path, oidc_clients_json="[{not json"))


def test_empty_client_list_is_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        ClientRegistry.load(_settings(tmp_path, oidc_clients_json="[]"))


def test_duplicate_client_id_is_rejected(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        ClientRegistry.load(_settings(tmp_path, oidc_clients_json=json.dumps([VALID, VALID])))
    assert "duplicate client_id 'rp-1'" in str(exc_info.value)


def test_force_refresh_token_moves_to_side_set(tmp_path):
    raw = json.dumps([{**VALID, "force_refresh_token": True}, {**VALID, "client_id": "rp-2"}])
    registry = ClientRegistry.load(_settings(tmp_path, oidc_clients_json=raw))
    assert registry.force_refresh_client_ids == frozenset({"rp-1"})
    assert registry.force_refresh("rp-1")
    assert not registry.force_refresh("rp-2")
    assert not hasattr(registry.get("rp-1"), "force_refresh_token")


def test_descriptor_is_immutable_and_exact_match():
    client = ClientDescriptor(
        client_id="rp",
        client_secret="s",
        redirect_uris=("https://rp.example/cb",),
        post_logout_redirect_uris=(),
        grant_types=("authorization_code",),
        response_types=("code",),
        token_endpoint_auth_method="none",
    )
    assert client.redirect_uri_allowed("https://rp.example/cb")
    assert not client.redirect_uri_allowed("https://rp.example/cb/")
    assert not client.is_confidential
    with pytest.raises(AttributeError):
        client.client_id = "other"


def test_unknown_client_lookup_returns_none(tmp_path):
    registry = ClientRegistry.load(_settings(tmp_path))
    assert registry.get("nope") is None
    assert registry.get(None) is None

"""
Token issuance policy: refresh-token decision table and JWT vs opaque access tokens.
"""
import json

import pytest

from op_server.clients import ClientDescriptor
from op_server.config import Settings
from op_server.errors import ConfigurationError, InvalidTarget
from op_server.policy import ResourceServerRegistry, decide_token_issuance, should_issue_refresh_token

API = "api://my-api"


def _client(client_id="rp", grant_types=("authorization_code", "refresh_token")) -> ClientDescriptor:
    return ClientDescriptor(
        client_id=client_id,
        client_secret="s",
        redirect_uris=("https://rp.example/cb",),
        post_logout_redirect_uris=(),
        grant_types=tuple(grant_types),
        response_types=("code",),
        token_endpoint_auth_method="client_secret_basic",
    )


@pytest.fixture
def resources():
    return ResourceServerRegistry.from_settings(Settings())


@pytest.mark.parametrize(
    "grant_types, scopes, forced, expected",
    [
        (("authorization_code", "refresh_token"), ["openid", "offline_access"], False, True),
        (("authorization_code", "refresh_token"), ["openid"], False, False),
        (("authorization_code", "refresh_token"), ["openid"], True, True),
        (("authorization_code",), ["openid", "offline_access"], False, False),
        (("authorization_code",), ["openid"], True, False),
        (("authorization_code",), ["openid", "offline_access"], True, False),
    ],
)
def test_refresh_token_decision_table(grant_types, scopes, forced, expected):
    client = _client(grant_types=grant_types)
    force_ids = {"rp"} if forced else set()
    assert should_issue_refresh_token(client, scopes, force_ids) is expected


def test_no_resource_gives_opaque_token_with_oidc_scopes(resources):
    decision = decide_token_issuance(
        _client(),
        ["openid", "email", "accounts:read"],
        {API: ["accounts:read"]},
        None,
        resources=resources,
        access_token_ttl=3600,
    )
    assert decision.access_token_format == "opaque"
    assert decision.audience is None
    assert decision.scope == "openid email"
    assert decision.ttl == 3600


def test_resource_gives_jwt_bound_to_audience(resources):
    decision = decide_token_issuance(
        _client(),
        ["openid", "email"],
        {API: ["accounts:read"]},
        API,
        resources=resources,
        access_token_ttl=3600,
    )
    assert decision.access_token_format == "jwt"
    assert decision.audience == API
    assert decision.scope == "accounts:read"
    assert decision.resource == API


def test_resource_without_approved_scopes_gives_empty_scope(resources):
    decision = decide_token_issuance(_client(), ["openid"], {}, API, resources=resources, access_token_ttl=3600)
    assert decision.access_token_format == "jwt"
    assert decision.scope == ""


def test_unknown_resource_is_invalid_target(resources):
    with pytest.raises(InvalidTarget):
        decide_token_issuance(_client(), ["openid"], {}, "api://unknown", resources=resources, access_token_ttl=3600)
    with pytest.raises(InvalidTarget):
        resources.get("not-a-uri")


def test_refresh_decision_is_part_of_the_decision(resources):
    decision = decide_token_issuance(
        _client(),
        ["openid"],
        {},
        None,
        resources=resources,
        access_token_ttl=3600,
        force_refresh_client_ids={"rp"},
    )
    assert decision.issue_refresh_token


def test_resource_servers_from_json():
    raw = json.dumps(
        [
            {"indicator": "https://rs.example", "scope": "orders:read orders:write", "access_token_ttl": 600},
            {"indicator": "urn:rs:legacy", "audience": "legacy", "scope": "legacy", "access_token_format": "opaque"},
        ]
    )
    registry = ResourceServerRegistry.from_settings(Settings(resource_servers_json=raw))
    rs = registry.get("https://rs.example")
    assert rs.audience == "https://rs.example"
    assert rs.scopes == frozenset({"orders:read", "orders:write"})
    assert rs.access_token_ttl == 600
    assert registry.get("urn:rs:legacy").access_token_format == "opaque"
    assert registry.all_scopes == {"orders:read", "orders:write", "legacy"}


def test_invalid_resource_servers_json():
    with pytest.raises(ConfigurationError) as exc_info:
        ResourceServerRegistry.from_settings(Settings(resource_servers_json='[{"indicator": "x"}]'))
    assert "OP_RESOURCE_SERVERS: 0.scope" in str(exc_info.value)

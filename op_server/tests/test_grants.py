"""
Grant accumulation and the TTL record store behind it.
"""
import pytest

from op_server.database import Database
from op_server.grants import Grant, GrantStore, split_scope
from op_server.storage import RecordStore
from op_server.tests.helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    database = Database("sqlite:///:memory:")
    database.init()
    yield RecordStore(database, clock=clock)
    database.dispose()


def test_split_scope_keeps_order_and_drops_duplicates():
    assert split_scope("openid  email openid profile") == ["openid", "email", "profile"]
    assert split_scope(["openid email", "profile"]) == ["openid", "email", "profile"]
    assert split_scope(None) == []


def test_grant_only_grows():
    grant = Grant(account_id="user_123", client_id="dev-rp")
    grant.add_oidc_scope("openid email")
    grant.add_oidc_claims(["name"])
    grant.add_resource_scope("api://my-api", "accounts:read")
    before = (set(grant.openid_scopes), set(grant.openid_claims), {k: set(v) for k, v in grant.resources.items()})

    grant.add_oidc_scope("openid profile")
    grant.add_oidc_claims([])
    grant.add_resource_scope("api://my-api", "")

    assert before[0] <= grant.openid_scopes
    assert before[1] <= grant.openid_claims
    assert before[2]["api://my-api"] <= grant.resources["api://my-api"]
    assert grant.get_oidc_scope() == "email openid profile"
    assert grant.get_resource_scope("api://my-api") == "accounts:read"


def test_missing_scopes_and_claims():
    grant = Grant(account_id="user_123", client_id="dev-rp", openid_scopes={"openid"})
    grant.add_resource_scope("api://my-api", "accounts:read")
    assert grant.missing_oidc_scopes(["openid", "email"]) == ["email"]
    assert grant.missing_oidc_claims(["name"]) == ["name"]
    assert grant.missing_resource_scopes("api://my-api", ["accounts:read"]) == []
    assert grant.missing_resource_scopes("api://other", ["accounts:read"]) == ["accounts:read"]


def test_grant_store_save_and_find(store):
    grants = GrantStore(store, ttl=3600)
    grant = Grant(account_id="user_123", client_id="dev-rp")
    grant.add_oidc_scope("openid")
    grant_id = grants.save(grant)
    assert grant.id == grant_id

    loaded = grants.find(grant_id)
    loaded.add_oidc_scope("email")
    assert grants.save(loaded) == grant_id
    assert grants.find(grant_id).openid_scopes == {"openid", "email"}


def test_grant_expires(store, clock):
    grants = GrantStore(store, ttl=60)
    grant_id = grants.save(Grant(account_id="user_123", client_id="dev-rp"))
    clock.advance(61)
    assert grants.find(grant_id) is None


def test_revoke_removes_grant_and_tagged_records(store):
    grants = GrantStore(store, ttl=3600)
    grant_id = grants.save(Grant(account_id="user_123", client_id="dev-rp"))
    token_id = store.save("RefreshToken", {"x": 1}, 3600, grant_id=grant_id)
    other_id = store.save("RefreshToken", {"x": 2}, 3600, grant_id="another")

    grants.revoke(grant_id)

    assert grants.find(grant_id) is None
    assert store.find("RefreshToken", token_id) is None
    assert store.find("RefreshToken", other_id) == {"x": 2}


def test_consume_is_single_use(store):
    record_id = store.save("AuthorizationCode", {"client_id": "dev-rp"}, 60)
    assert store.consume("AuthorizationCode", record_id) == ({"client_id": "dev-rp"}, False)
    assert store.consume("AuthorizationCode", record_id) == ({"client_id": "dev-rp"}, True)
    assert store.find("AuthorizationCode", record_id) is None
    assert store.consume("AuthorizationCode", "unknown") == (None, False)


def test_destroy(store):
    record_id = store.save("Session", {"account_id": "user_123"}, 60)
    store.destroy("Session", record_id)
    assert store.find("Session", record_id) is None


def test_update_keeps_the_original_expiry(store, clock):
    record_id = store.save("Interaction", {"state": "awaiting_login"}, 60)
    clock.advance(50)
    assert store.update("Interaction", record_id, {"state": "awaiting_consent"})
    assert store.find("Interaction", record_id) == {"state": "awaiting_consent"}
    clock.advance(10)
    assert store.find("Interaction", record_id) is None
    assert not store.update("Interaction", "unknown", {})

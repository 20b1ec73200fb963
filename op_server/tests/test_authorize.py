"""
GET /authorize validation: what is answered with a 400 page and what goes back to the client.
"""
import pytest

from op_server.tests.helpers import REDIRECT_URI, authorize_params, query_of


def test_unknown_client_is_400_page(client):
    response = client.get("/authorize", params=authorize_params() | {"client_id": "unknown"})
    assert response.status_code == 400
    assert "Invalid request" in response.text
    assert "location" not in response.headers


def test_unregistered_redirect_uri_is_400_page(client):
    response = client.get("/authorize", params=authorize_params(redirect_uri="https://evil.example/cb"))
    assert response.status_code == 400
    assert "redirect_uri" in response.text


def test_missing_client_id_is_400_page(client):
    params = authorize_params()
    del params["client_id"]
    assert client.get("/authorize", params=params).status_code == 400


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"response_type": "token"}, "unsupported_response_type"),
        ({"scope": "profile email"}, "invalid_request"),
        ({"scope": "openid admin"}, "invalid_scope"),
        ({"code_challenge": ""}, "invalid_request"),
        ({"code_challenge_method": "plain"}, "invalid_request"),
        ({"resource": "api://unknown"}, "invalid_target"),
        ({"claims": "not-json"}, "invalid_request"),
        ({"prompt": "none consent"}, "invalid_request"),
    ],
)
def test_request_errors_redirect_to_client(client, overrides, error):
    response = client.get("/authorize", params=authorize_params(**overrides))
    assert response.status_code == 303
    assert response.headers["location"].startswith(REDIRECT_URI + "?")
    query = query_of(response)
    assert query["error"] == error
    assert query["state"] == "xyz"
    assert "code" not in query


def test_code_only_client_without_refresh_grant_can_authorize(client):
    response = client.get("/authorize", params=authorize_params(client_id="code-only"))
    assert response.status_code == 303
    assert response.headers["location"].startswith("/interaction/")


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "op_server"}

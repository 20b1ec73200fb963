"""
RP-initiated logout (GET /session/end).
"""
from op_server.tests.helpers import POST_LOGOUT_URI, authorize_params, exchange_code, obtain_code


def _id_token(client) -> str:
    code = obtain_code(client)
    return exchange_code(client, code).json()["id_token"]


def test_logout_redirects_to_registered_uri_with_state(client, provider):
    id_token = _id_token(client)
    session_id = client.cookies.get("_session")
    response = client.get(
        "/session/end",
        params={"id_token_hint": id_token, "post_logout_redirect_uri": POST_LOGOUT_URI, "state": "bye"},
    )
    assert response.status_code == 303
    assert response.headers["location"] == f"{POST_LOGOUT_URI}?state=bye"
    assert provider.sessions.load(session_id) is None

    # next authorization needs a fresh login
    response = client.get("/authorize", params=authorize_params())
    assert response.headers["location"].startswith("/interaction/")


def test_logout_with_client_id_instead_of_hint(client):
    response = client.get("/session/end", params={"client_id": "dev-rp", "post_logout_redirect_uri": POST_LOGOUT_URI})
    assert response.status_code == 303
    assert response.headers["location"] == POST_LOGOUT_URI


def test_unregistered_post_logout_uri_is_400(client):
    id_token = _id_token(client)
    response = client.get(
        "/session/end",
        params={"id_token_hint": id_token, "post_logout_redirect_uri": "https://evil.example/"},
    )
    assert response.status_code == 400


def test_post_logout_uri_without_client_is_400(client):
    response = client.get("/session/end", params={"post_logout_redirect_uri": POST_LOGOUT_URI})
    assert response.status_code == 400


def test_invalid_id_token_hint_is_400(client):
    response = client.get("/session/end", params={"id_token_hint": "not.a.jwt"})
    assert response.status_code == 400


def test_mismatched_client_id_is_400(client):
    id_token = _id_token(client)
    response = client.get("/session/end", params={"id_token_hint": id_token, "client_id": "force-rp"})
    assert response.status_code == 400


def test_logout_without_redirect_shows_page(client):
    response = client.get("/session/end")
    assert response.status_code == 200
    assert "Signed out" in response.text

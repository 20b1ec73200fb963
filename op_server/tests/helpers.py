"""
Shared test data and flow helpers: drive /authorize through the interaction routes like a browser.
"""
import base64
import hashlib
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

from fastapi.testclient import TestClient

REDIRECT_URI = "https://app.example/callback"
POST_LOGOUT_URI = "https://app.example/"
EMAIL = "user@example.test"
PASSWORD = "passw0rd!"
CODE_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

TEST_CLIENTS = [
    {
        "client_id": "dev-rp",
        "client_secret": "dev-secret",
        "redirect_uris": [REDIRECT_URI],
        "post_logout_redirect_uris": [POST_LOGOUT_URI],
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
        "token_endpoint_auth_method": "client_secret_basic",
    },
    {
        "client_id": "force-rp",
        "client_secret": "force-secret",
        "redirect_uris": ["https://force.example/cb"],
        "grant_types": ["authorization_code", "refresh_token"],
        "force_refresh_token": True,
    },
    {
        "client_id": "code-only",
        "client_secret": "code-secret",
        "redirect_uris": ["https://code.example/cb"],
        "grant_types": ["authorization_code"],
        "force_refresh_token": True,
    },
    {
        "client_id": "post-rp",
        "client_secret": "post-secret",
        "redirect_uris": ["https://post.example/cb"],
        "grant_types": ["authorization_code"],
        "token_endpoint_auth_method": "client_secret_post",
    },
    {
        "client_id": "public-rp",
        "client_secret": "unused",
        "redirect_uris": ["https://public.example/cb"],
        "grant_types": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_method": "none",
    },
]

TEST_ACCOUNTS = [
    {"id": "user_123", "email": EMAIL, "password": PASSWORD, "name": "Dev User"},
    {"id": "blocked_1", "email": "blocked@example.test", "password": "blocked-pass", "name": "Blocked", "oauth_authorized": False},
]

CLIENT_SECRETS = {c["client_id"]: c["client_secret"] for c in TEST_CLIENTS}
CLIENT_REDIRECTS = {c["client_id"]: c["redirect_uris"][0] for c in TEST_CLIENTS}


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


def pkce_challenge(verifier: str = CODE_VERIFIER) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def authorize_params(client_id: str = "dev-rp", scope: str = "openid profile email", **extra) -> dict:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": CLIENT_REDIRECTS[client_id],
        "scope": scope,
        "state": "xyz",
        "nonce": "n-0S6_WzA2Mj",
        "code_challenge": pkce_challenge(),
        "code_challenge_method": "S256",
    }
    params.update(extra)
    return params


def interaction_uid(response) -> str:
    assert response.status_code == 303, response.text
    location = response.headers["location"]
    assert location.startswith("/interaction/"), location
    return location.rsplit("/", 1)[-1]


def query_of(response) -> dict:
    """Single-valued query parameters of a redirect's Location."""
    return {k: v[0] for k, v in parse_qs(urlsplit(response.headers["location"]).query).items()}


def obtain_code(client: TestClient, email: str = EMAIL, password: str = PASSWORD, **params) -> str:
    """Drive /authorize through login and consent (as needed) and return the code."""
    response = client.get("/authorize", params=authorize_params(**params))
    while response.headers["location"].startswith(("/interaction/", "/authorize/")):
        location = response.headers["location"]
        if location.startswith("/authorize/"):
            response = client.get(location)
            continue
        uid = interaction_uid(response)
        page = client.get(f"/interaction/{uid}")
        assert page.status_code == 200, page.text
        if 'action="/interaction/%s/login"' % uid in page.text:
            response = client.post(f"/interaction/{uid}/login", data={"email": email, "password": password})
        else:
            response = client.post(f"/interaction/{uid}/confirm")
        assert response.status_code == 303, response.text
    query = query_of(response)
    assert "code" in query, response.headers["location"]
    return query["code"]


def exchange_code(client: TestClient, code: str, client_id: str = "dev-rp", **extra):
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": CLIENT_REDIRECTS[client_id],
        "code_verifier": CODE_VERIFIER,
    }
    data.update(extra)
    return client.post("/token", data=data, auth=(client_id, CLIENT_SECRETS[client_id]))

"""
Error classification and OAuth error redirect URLs.
"""
import pytest

from op_server.error_redirect import build_error_redirect_url, classify, redirect_with_error


@pytest.mark.parametrize(
    "message, code",
    [
        ("missing required parameter 'code'", "invalid_request"),
        ("PKCE code_challenge is required", "invalid_request"),
        ("client authentication failed", "invalid_client"),
        ("bad client credentials", "invalid_client"),
        ("grant not found", "invalid_grant"),
        ("session expired", "invalid_grant"),
        ("token was revoked", "invalid_grant"),
        ("unauthorized account", "unauthorized_client"),
        ("unsupported response mode", "unsupported_grant_type"),
        ("scope openid not allowed", "invalid_scope"),
        ("something odd happened", "invalid_request"),
        # first match wins
        ("client secret missing", "invalid_request"),
        ("unsupported grant type", "invalid_grant"),
    ],
)
def test_classify(message, code):
    assert classify(RuntimeError(message)).error == code


def test_description_is_fixed_per_code():
    first = classify(RuntimeError("grant not found: internal id 42"))
    second = classify(RuntimeError("refresh token expired"))
    assert first.description == second.description
    assert "42" not in first.description


def test_build_error_redirect_url():
    assert (
        build_error_redirect_url("https://app.example/callback", "access_denied", state="xyz")
        == "https://app.example/callback?error=access_denied&state=xyz"
    )


def test_build_error_redirect_url_keeps_existing_query():
    url = build_error_redirect_url("https://app.example/cb?tenant=a", "invalid_scope", "bad scope", "s 1")
    assert url == "https://app.example/cb?tenant=a&error=invalid_scope&error_description=bad+scope&state=s+1"


def test_build_error_redirect_url_without_state():
    assert build_error_redirect_url("https://app.example/cb", "invalid_request") == "https://app.example/cb?error=invalid_request"


def test_redirect_with_error_is_303():
    response = redirect_with_error("https://app.example/cb", "access_denied", state="xyz")
    assert response.status_code == 303
    assert response.headers["location"] == "https://app.example/cb?error=access_denied&state=xyz"

"""
Translate failures into OAuth error redirects back to the client's redirect_uri.
Classification is a fixed keyword mapping over the error message; the description sent to
the client is a fixed text per error code, never the exception text.
"""
from dataclasses import dataclass
from urllib.parse import urlencode

from fastapi.responses import RedirectResponse

_DESCRIPTIONS = {
    "invalid_request": "The request is missing a required parameter or is otherwise malformed",
    "invalid_client": "Client authentication failed",
    "invalid_grant": "The grant is invalid, expired or revoked",
    "unauthorized_client": "The client or account is not authorized for this request",
    "unsupported_grant_type": "The grant type is not supported",
    "invalid_scope": "The requested scope is invalid",
    "access_denied": "The end-user denied the request",
}


@dataclass(frozen=True)
class OAuthErrorClassification:
    error: str
    description: str


def _code_for(message: str) -> str:
    if "missing" in message or "required" in message:
        return "invalid_request"
    if "client" in message and any(k in message for k in ("authentication", "credential", "secret")):
        return "invalid_client"
    if any(k in message for k in ("grant", "expired", "revoked")):
        return "invalid_grant"
    if "unauthorized" in message:
        return "unauthorized_client"
    if "grant type" in message or "unsupported" in message:
        return "unsupported_grant_type"
    if "scope" in message:
        return "invalid_scope"
    return "invalid_request"


def classify(error: BaseException) -> OAuthErrorClassification:
    code = _code_for(str(error).lower())
    return OAuthErrorClassification(error=code, description=_DESCRIPTIONS[code])


def describe(error_code: str) -> str | None:
    return _DESCRIPTIONS.get(error_code)


def build_error_redirect_url(
    redirect_uri: str,
    error: str,
    error_description: str | None = None,
    state: str | None = None,
) -> str:
    params = {"error": error}
    if error_description:
        params["error_description"] = error_description
    if state:
        params["state"] = state
    separator = "&" if "?" in redirect_uri else "?"
    return f"{redirect_uri}{separator}{urlencode(params)}"


def redirect_with_error(
    redirect_uri: str,
    error: str,
    error_description: str | None = None,
    state: str | None = None,
) -> RedirectResponse:
    return RedirectResponse(
        url=build_error_redirect_url(redirect_uri, error, error_description, state),
        status_code=303,
    )

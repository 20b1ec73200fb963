"""
OIDC RP-Initiated Logout (GET /session/end).
Accepts id_token_hint, client_id, post_logout_redirect_uri and state. The browser session is
destroyed; the user agent is sent back to the client only to a registered post-logout URI.
"""
import logging
from urllib.parse import urlencode

import jwt
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from op_server.audit import EVENT_LOGOUT, get_client_ip
from op_server.config import SESSION_COOKIE
from op_server.provider import Provider, get_provider
from op_server.sessions import clear_session_cookie
from op_server.views import render_error_page, render_logged_out_page

logger = logging.getLogger(__name__)
router = APIRouter()


def _decode_id_token_hint(provider: Provider, id_token: str) -> dict | None:
    """Verify an id_token_hint we issued (key by kid). Expiry is not checked; the hint may be old."""
    if not id_token or not id_token.strip():
        return None
    try:
        kid = jwt.get_unverified_header(id_token.strip()).get("kid")
        public_key = provider.keys.public_key_for_kid(kid)
        if public_key is None:
            return None
        return jwt.decode(
            id_token.strip(),
            public_key,
            algorithms=["RS256"],
            issuer=provider.settings.issuer,
            options={"verify_aud": False, "verify_exp": False},
        )
    except jwt.InvalidTokenError:
        return None


@router.get("/session/end")
def end_session(
    request: Request,
    id_token_hint: str | None = None,
    client_id: str | None = None,
    post_logout_redirect_uri: str | None = None,
    state: str | None = None,
    provider: Provider = Depends(get_provider),
):
    hinted_client = None
    if id_token_hint:
        payload = _decode_id_token_hint(provider, id_token_hint)
        if payload is None:
            return HTMLResponse(render_error_page("id_token_hint could not be validated."), status_code=400)
        aud = payload.get("aud")
        hinted_client = aud[0] if isinstance(aud, list) and aud else aud
    if client_id and hinted_client and client_id != hinted_client:
        return HTMLResponse(render_error_page("client_id does not match id_token_hint."), status_code=400)
    client = provider.clients.get(client_id or hinted_client)

    redirect_to = None
    if post_logout_redirect_uri:
        if client is None:
            return HTMLResponse(
                render_error_page("post_logout_redirect_uri requires id_token_hint or client_id."), status_code=400
            )
        if not client.post_logout_redirect_uri_allowed(post_logout_redirect_uri):
            return HTMLResponse(
                render_error_page("post_logout_redirect_uri not allowed for this client."), status_code=400
            )
        redirect_to = post_logout_redirect_uri
        if state:
            redirect_to = f"{redirect_to}{'&' if '?' in redirect_to else '?'}{urlencode({'state': state})}"

    session = provider.sessions.load(request.cookies.get(SESSION_COOKIE))
    if session is not None:
        provider.sessions.destroy(session.id)
        provider.audit.record(
            EVENT_LOGOUT,
            client_id=client.client_id if client else None,
            account_id=session.account_id,
            ip=get_client_ip(request),
        )
        logger.info("Browser session ended for account_id=%s", session.account_id)

    if redirect_to:
        response = RedirectResponse(url=redirect_to, status_code=303)
    else:
        response = HTMLResponse(render_logged_out_page())
    clear_session_cookie(response, provider.settings)
    return response

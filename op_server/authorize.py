"""
Authorization endpoint.
GET /authorize: validate the request, then either issue a code (nothing left to ask the
end-user) or start an interaction. GET /authorize/{uid}: resume after an interaction step.
"""
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from op_server.accounts import Account
from op_server.audit import EVENT_CODE_ISSUED, get_client_ip
from op_server.authorization_request import AuthorizationRequest, parse_authorization_request, resolve_client
from op_server.config import INTERACTION_COOKIE, RESUME_COOKIE, SESSION_COOKIE
from op_server.error_redirect import redirect_with_error
from op_server.errors import ConsentRequired, InteractionNotFound, LoginRequired, OPError, ProtocolError
from op_server.grants import Grant
from op_server.interactions import Interaction, InteractionState
from op_server.prompts import LoginPrompt, evaluate_prompt
from op_server.provider import Provider, get_provider
from op_server.security import sanitize_for_logging
from op_server.sessions import BrowserSession, set_session_cookie
from op_server.tokens import AuthorizationCode
from op_server.views import render_error_page

logger = logging.getLogger(__name__)
router = APIRouter()


def _set_interaction_cookies(response: Response, provider: Provider, uid: str) -> None:
    """Bind the interaction to this browser; each cookie is only sent to its own path."""
    settings = provider.settings
    for name, path in ((INTERACTION_COOKIE, f"/interaction/{uid}"), (RESUME_COOKIE, f"/authorize/{uid}")):
        response.set_cookie(
            name,
            uid,
            max_age=settings.ttl.session,
            path=path,
            httponly=True,
            samesite="lax",
            secure=settings.cookie_secure,
        )


def _current_grant(provider: Provider, session: BrowserSession | None, account: Account | None, client_id: str) -> Grant | None:
    if session is None or account is None:
        return None
    grant = provider.grants.find(session.grant_id_for(client_id))
    if grant is None or grant.account_id != account.id or grant.client_id != client_id:
        return None
    return grant


def _issue_code(
    provider: Provider,
    auth_request: AuthorizationRequest,
    account: Account,
    grant: Grant,
    session: BrowserSession,
) -> str:
    """Persist a single-use code carrying only what the grant covers."""
    scope = [s for s in auth_request.oidc_scopes if s in grant.openid_scopes]
    resources = {
        indicator: [s for s in scopes if s in grant.resources.get(indicator, ())]
        for indicator, scopes in auth_request.resource_scopes(provider.resources).items()
    }
    claims = [c for c in auth_request.requested_claims if c in grant.openid_claims]
    return provider.tokens.authorization_code(
        AuthorizationCode(
            client_id=auth_request.client_id,
            redirect_uri=auth_request.redirect_uri,
            account_id=account.id,
            grant_id=grant.id,
            scope=" ".join(scope),
            code_challenge=auth_request.code_challenge,
            code_challenge_method=auth_request.code_challenge_method,
            resources=resources,
            nonce=auth_request.nonce,
            auth_time=session.login_ts,
            claims=claims,
        )
    )


def _proceed(
    request: Request,
    provider: Provider,
    auth_request: AuthorizationRequest,
    session: BrowserSession | None,
    interaction: Interaction | None = None,
) -> Response:
    """Evaluate prompts; start/advance the interaction, or answer the client with a code."""
    account = provider.accounts.find_by_id(session.account_id) if session else None
    grant = _current_grant(provider, session, account, auth_request.client_id)
    prompt = evaluate_prompt(
        auth_request,
        account=account,
        grant=grant,
        resources=provider.resources,
        result=interaction.result if interaction else None,
    )

    if prompt is not None:
        if "none" in auth_request.prompt:
            err = LoginRequired() if isinstance(prompt, LoginPrompt) else ConsentRequired()
            if interaction is not None:
                provider.interactions.finish(interaction, InteractionState.ERRORED)
            return redirect_with_error(auth_request.redirect_uri, err.error, err.description, auth_request.state)
        session_id = session.id if session else None
        account_id = account.id if account else None
        grant_id = grant.id if grant else None
        if interaction is None:
            interaction = provider.interactions.create(
                auth_request, prompt, session_id=session_id, account_id=account_id, grant_id=grant_id
            )
        else:
            provider.interactions.advance(
                interaction, prompt, session_id=session_id, account_id=account_id, grant_id=grant_id
            )
        response = RedirectResponse(url=f"/interaction/{interaction.uid}", status_code=303)
        _set_interaction_cookies(response, provider, interaction.uid)
        return response

    code = _issue_code(provider, auth_request, account, grant, session)
    if interaction is not None:
        provider.interactions.finish(interaction, InteractionState.RESOLVED)
    provider.audit.record(
        EVENT_CODE_ISSUED, client_id=auth_request.client_id, account_id=account.id, ip=get_client_ip(request)
    )
    params = {"code": code}
    if auth_request.state:
        params["state"] = auth_request.state
    separator = "&" if "?" in auth_request.redirect_uri else "?"
    return RedirectResponse(url=f"{auth_request.redirect_uri}{separator}{urlencode(params)}", status_code=303)


@router.get("/authorize")
def authorize(request: Request, provider: Provider = Depends(get_provider)):
    """
    OAuth2/OIDC authorization endpoint (authorization code flow with PKCE S256).
    client_id and redirect_uri are checked first and answered with a 400 page; every later
    problem is sent back to the redirect_uri as an OAuth error.
    """
    params = request.query_params
    try:
        client, redirect_uri = resolve_client(params, provider.clients)
    except ProtocolError as e:
        logger.info(
            "Rejected authorization request for client_id=%s: %s",
            sanitize_for_logging(params.get("client_id")),
            e.description,
        )
        return HTMLResponse(render_error_page(e.description), status_code=400)

    try:
        auth_request = parse_authorization_request(
            params, client, redirect_uri, provider.resources, provider.settings.default_resource
        )
    except ProtocolError as e:
        logger.info("Authorization request error for client_id=%s: %s", client.client_id, e.error)
        return redirect_with_error(redirect_uri, e.error, e.description, params.get("state"))

    session = provider.sessions.load(request.cookies.get(SESSION_COOKIE))
    return _proceed(request, provider, auth_request, session)


@router.get("/authorize/{uid}")
def authorize_resume(uid: str, request: Request, provider: Provider = Depends(get_provider)):
    """Apply the interaction's result (login, consent) to the browser session and continue."""
    try:
        interaction = provider.interactions.load_pending(uid)
        if request.cookies.get(RESUME_COOKIE) != uid:
            raise InteractionNotFound("interaction is not bound to this browser")
    except OPError as e:
        logger.info("Resume rejected for interaction: %s", e.description)
        return HTMLResponse(render_error_page("Interaction session not found or expired."), status_code=400)

    auth_request = interaction.request
    session = provider.sessions.load(request.cookies.get(SESSION_COOKIE))
    login = interaction.result.get("login")
    if login:
        session = provider.sessions.login(session, login["account_id"], login["ts"])
    consent = interaction.result.get("consent")
    if consent and session is not None:
        session = provider.sessions.remember_grant(session, auth_request.client_id, consent["grant_id"])

    try:
        response = _proceed(request, provider, auth_request, session, interaction)
    except Exception as e:
        logger.exception("Failed to resume interaction for client_id=%s", auth_request.client_id)
        redirect = provider.interactions.fail(uid, e, ip=get_client_ip(request))
        if redirect is None:
            return HTMLResponse(render_error_page(), status_code=400)
        response = RedirectResponse(url=redirect.location, status_code=303)
    if session is not None:
        set_session_cookie(response, session, provider.settings)
    return response

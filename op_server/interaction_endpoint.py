"""
Interaction routes: render the current prompt and accept login, consent and cancel submissions.
Malformed input gets a 400 page; any other failure is sent back to the client as an OAuth
error redirect when the interaction can still be recovered.
"""
import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from op_server.audit import get_client_ip
from op_server.config import INTERACTION_COOKIE
from op_server.errors import InteractionNotFound, ValidationError
from op_server.interactions import LoginRejected, Redirect
from op_server.provider import Provider, get_provider
from op_server.views import render_consent_page, render_error_page, render_login_page

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/interaction")


def _check_binding(request: Request, uid: str) -> None:
    if request.cookies.get(INTERACTION_COOKIE) != uid:
        raise InteractionNotFound("interaction is not bound to this browser")


def _failure_response(provider: Provider, request: Request, uid: str, exc: Exception):
    if isinstance(exc, (ValidationError, InteractionNotFound)):
        logger.info("Interaction request rejected: %s", getattr(exc, "description", exc))
        return HTMLResponse(render_error_page(), status_code=400)
    logger.exception("Interaction failed")
    redirect = provider.interactions.fail(uid, exc, ip=get_client_ip(request))
    if redirect is None:
        return HTMLResponse(render_error_page(), status_code=400)
    return RedirectResponse(url=redirect.location, status_code=303)


@router.get("/{uid}", response_class=HTMLResponse)
def interaction_page(uid: str, request: Request, provider: Provider = Depends(get_provider)):
    """Login form or consent screen for the interaction's current prompt."""
    try:
        details = provider.interactions.details(uid)
        _check_binding(request, uid)
    except Exception as e:
        return _failure_response(provider, request, uid, e)
    if details.prompt == "login":
        return HTMLResponse(render_login_page(uid, details.client_id))
    return HTMLResponse(
        render_consent_page(uid, details.client_id, details.scopes, details.missing_resource_scopes)
    )


@router.post("/{uid}/login")
def interaction_login(
    uid: str,
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    provider: Provider = Depends(get_provider),
):
    """
    Check credentials. Bad input or credentials re-render the form; an account that may not
    use OAuth ends the interaction with unauthorized_client.
    """
    try:
        _check_binding(request, uid)
        outcome = provider.interactions.submit_login(uid, email, password, ip=get_client_ip(request))
    except Exception as e:
        return _failure_response(provider, request, uid, e)
    if isinstance(outcome, LoginRejected):
        client_id = provider.interactions.details(uid).client_id
        return HTMLResponse(
            render_login_page(uid, client_id, error=outcome.message, email=outcome.email),
            status_code=outcome.status_code,
        )
    return RedirectResponse(url=outcome.location, status_code=303)


@router.post("/{uid}/confirm")
def interaction_confirm(uid: str, request: Request, provider: Provider = Depends(get_provider)):
    try:
        _check_binding(request, uid)
        outcome: Redirect = provider.interactions.submit_consent(uid, ip=get_client_ip(request))
    except Exception as e:
        return _failure_response(provider, request, uid, e)
    return RedirectResponse(url=outcome.location, status_code=303)


@router.post("/{uid}/cancel")
def interaction_cancel(uid: str, request: Request, provider: Provider = Depends(get_provider)):
    """End-user aborted: access_denied back to the client, no code."""
    try:
        _check_binding(request, uid)
        outcome = provider.interactions.cancel(uid, ip=get_client_ip(request))
    except Exception as e:
        return _failure_response(provider, request, uid, e)
    return RedirectResponse(url=outcome.location, status_code=303)

"""
Token endpoint (POST /token). Authorization code exchange (PKCE S256) and refresh_token grant.
Errors are raised as OPError and rendered as {"error", "error_description"} JSON by the app.
"""
import logging
from dataclasses import replace

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse

from op_server.audit import EVENT_CODE_REPLAY, OUTCOME_FAIL, IssuedTokens, get_client_ip
from op_server.client_auth import authenticate_client
from op_server.clients import ClientDescriptor
from op_server.errors import (
    InvalidGrant,
    InvalidRequest,
    InvalidScope,
    InvalidTarget,
    UnauthorizedClient,
    UnsupportedGrantType,
)
from op_server.grants import split_scope
from op_server.policy import decide_token_issuance, should_issue_refresh_token
from op_server.provider import Provider, get_provider
from op_server.tokens import CODE_KIND, REFRESH_TOKEN_KIND, AuthorizationCode, RefreshTokenRecord, pkce_verify

logger = logging.getLogger(__name__)
router = APIRouter()

SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")
_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _single_resource(resource: list[str] | None) -> str | None:
    values = [r for r in (resource or []) if r]
    if len(values) > 1:
        raise InvalidTarget("only one resource indicator may be used per token request")
    return values[0] if values else None


def _issue_tokens(
    provider: Provider,
    client: ClientDescriptor,
    request: Request,
    *,
    grant_type: str,
    account_id: str,
    grant_id: str,
    scope: str,
    resources: dict[str, list[str]],
    resource: str | None,
    nonce: str | None,
    auth_time: int | None,
    claims: list[str],
    refresh_record: RefreshTokenRecord,
) -> dict:
    settings = provider.settings
    force_ids = provider.clients.force_refresh_client_ids
    decision = decide_token_issuance(
        client,
        scope.split(),
        resources,
        resource,
        resources=provider.resources,
        access_token_ttl=settings.ttl.access_token,
        default_resource=settings.default_resource,
        force_refresh_client_ids=force_ids,
    )
    # Narrowing a refresh request must not cost the client its refresh token
    decision = replace(
        decision,
        issue_refresh_token=should_issue_refresh_token(client, refresh_record.scope.split(), force_ids),
    )

    body = {
        "access_token": provider.tokens.access_token(
            decision, account_id=account_id, client_id=client.client_id, grant_id=grant_id, claims=claims
        ),
        "token_type": "Bearer",
        "expires_in": decision.ttl,
        "scope": decision.scope,
    }
    id_token_issued = "openid" in scope.split()
    if id_token_issued:
        released = {k: v for k, v in provider.accounts.claims(account_id).items() if k in claims}
        body["id_token"] = provider.tokens.id_token(
            account_id=account_id,
            client_id=client.client_id,
            nonce=nonce,
            auth_time=auth_time,
            claims=released,
        )
    if decision.issue_refresh_token:
        body["refresh_token"] = provider.tokens.refresh_token(refresh_record)

    event = IssuedTokens(
        grant_type=grant_type,
        client_id=client.client_id,
        account_id=account_id,
        scope=decision.scope,
        access_token_format=decision.access_token_format,
        audience=decision.audience,
        id_token_issued=id_token_issued,
        refresh_token_issued=decision.issue_refresh_token,
        ip=get_client_ip(request),
    )
    for observer in provider.observers:
        observer.token_issued(event)
    return body


def _authorization_code_grant(
    provider: Provider,
    client: ClientDescriptor,
    request: Request,
    *,
    code: str | None,
    redirect_uri: str | None,
    code_verifier: str | None,
    resource: str | None,
) -> dict:
    if not code or not redirect_uri or not code_verifier:
        raise InvalidRequest("code, redirect_uri and code_verifier are required for the authorization_code grant")

    payload, replayed = provider.store.consume(CODE_KIND, code)
    if payload is None:
        raise InvalidGrant("invalid or expired authorization code")
    auth_code = AuthorizationCode.from_payload(payload)
    if replayed:
        # A reused code means it leaked; everything issued from the grant goes
        logger.warning("Authorization code replay for client_id=%s; revoking grant", auth_code.client_id)
        provider.grants.revoke(auth_code.grant_id)
        provider.audit.record(
            EVENT_CODE_REPLAY, client_id=client.client_id, ip=get_client_ip(request), outcome=OUTCOME_FAIL
        )
        raise InvalidGrant("authorization code already used")
    if auth_code.client_id != client.client_id:
        raise InvalidGrant("authorization code was issued to another client")
    if auth_code.redirect_uri != redirect_uri:
        raise InvalidGrant("redirect_uri does not match the authorization request")
    if not pkce_verify(code_verifier, auth_code.code_challenge, auth_code.code_challenge_method):
        raise InvalidGrant("PKCE verification failed")
    if provider.grants.find(auth_code.grant_id) is None:
        raise InvalidGrant("grant not found")
    if resource and resource not in auth_code.resources:
        raise InvalidTarget("resource was not requested at the authorization endpoint")

    return _issue_tokens(
        provider,
        client,
        request,
        grant_type="authorization_code",
        account_id=auth_code.account_id,
        grant_id=auth_code.grant_id,
        scope=auth_code.scope,
        resources=auth_code.resources,
        resource=resource,
        nonce=auth_code.nonce,
        auth_time=auth_code.auth_time,
        claims=auth_code.claims,
        refresh_record=RefreshTokenRecord(
            account_id=auth_code.account_id,
            client_id=client.client_id,
            grant_id=auth_code.grant_id,
            scope=auth_code.scope,
            resources=auth_code.resources,
            auth_time=auth_code.auth_time,
            claims=auth_code.claims,
        ),
    )


def _refresh_token_grant(
    provider: Provider,
    client: ClientDescriptor,
    request: Request,
    *,
    refresh_token: str | None,
    scope: str | None,
    resource: str | None,
) -> dict:
    if not refresh_token:
        raise InvalidRequest("refresh_token is required for the refresh_token grant")

    payload, replayed = provider.store.consume(REFRESH_TOKEN_KIND, refresh_token)
    if payload is None:
        raise InvalidGrant("invalid or expired refresh token")
    record = RefreshTokenRecord.from_payload(payload)
    if replayed:
        logger.warning("Refresh token reuse for client_id=%s; revoking grant", record.client_id)
        provider.grants.revoke(record.grant_id)
        raise InvalidGrant("refresh token already used")
    if record.client_id != client.client_id:
        raise InvalidGrant("refresh token was issued to another client")
    if provider.grants.find(record.grant_id) is None:
        raise InvalidGrant("grant not found")
    if provider.accounts.find_by_id(record.account_id) is None:
        raise InvalidGrant("account for this grant no longer exists")
    if resource and resource not in record.resources:
        raise InvalidTarget("resource was not requested at the authorization endpoint")

    token_scope = record.scope
    token_resources = record.resources
    requested = split_scope(scope)
    if requested:
        granted = set(record.scope.split()) | {s for scopes in record.resources.values() for s in scopes}
        exceeding = [s for s in requested if s not in granted]
        if exceeding:
            raise InvalidScope(f"requested scope exceeds the original grant: {' '.join(exceeding)}")
        token_scope = " ".join(s for s in record.scope.split() if s in requested)
        token_resources = {k: [s for s in v if s in requested] for k, v in record.resources.items()}

    # Rotation: the old token is consumed above, the new one carries the original grant
    return _issue_tokens(
        provider,
        client,
        request,
        grant_type="refresh_token",
        account_id=record.account_id,
        grant_id=record.grant_id,
        scope=token_scope,
        resources=token_resources,
        resource=resource,
        nonce=None,
        auth_time=record.auth_time,
        claims=record.claims,
        refresh_record=record,
    )


@router.post("/token")
def token(
    request: Request,
    grant_type: str | None = Form(None),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    code_verifier: str | None = Form(None),
    refresh_token: str | None = Form(None),
    scope: str | None = Form(None),
    resource: list[str] | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    provider: Provider = Depends(get_provider),
):
    """
    authorization_code: exchange code (+ PKCE verifier) for access_token, id_token and, per
    policy, refresh_token. refresh_token: rotate the refresh token and issue new tokens.
    """
    client = authenticate_client(provider.clients, request, client_id, client_secret)
    if not grant_type:
        raise InvalidRequest("missing required parameter 'grant_type'")
    if grant_type not in SUPPORTED_GRANT_TYPES:
        raise UnsupportedGrantType("only authorization_code and refresh_token are supported")
    if not client.grant_type_allowed(grant_type):
        raise UnauthorizedClient(f"client is not allowed to use the {grant_type} grant")
    resource_value = _single_resource(resource)

    if grant_type == "authorization_code":
        body = _authorization_code_grant(
            provider,
            client,
            request,
            code=code,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
            resource=resource_value,
        )
    else:
        body = _refresh_token_grant(
            provider, client, request, refresh_token=refresh_token, scope=scope, resource=resource_value
        )
    return JSONResponse(body, headers=_NO_STORE)

"""
Prompt evaluation: what the end-user still has to do before a code can be issued.
"""
from dataclasses import dataclass, field

from op_server.accounts import Account
from op_server.authorization_request import AuthorizationRequest
from op_server.grants import Grant
from op_server.policy import ResourceServerRegistry


@dataclass(frozen=True)
class LoginPrompt:
    reasons: tuple[str, ...] = ()

    name = "login"


@dataclass(frozen=True)
class ConsentPrompt:
    reasons: tuple[str, ...] = ()
    missing_oidc_scopes: tuple[str, ...] = ()
    missing_oidc_claims: tuple[str, ...] = ()
    missing_resource_scopes: dict[str, tuple[str, ...]] = field(default_factory=dict)

    name = "consent"


Prompt = LoginPrompt | ConsentPrompt


def prompt_to_payload(prompt: Prompt) -> dict:
    payload = {"name": prompt.name, "reasons": list(prompt.reasons)}
    if isinstance(prompt, ConsentPrompt):
        payload["missing_oidc_scopes"] = list(prompt.missing_oidc_scopes)
        payload["missing_oidc_claims"] = list(prompt.missing_oidc_claims)
        payload["missing_resource_scopes"] = {k: list(v) for k, v in prompt.missing_resource_scopes.items()}
    return payload


def prompt_from_payload(payload: dict) -> Prompt:
    reasons = tuple(payload.get("reasons", ()))
    if payload["name"] == LoginPrompt.name:
        return LoginPrompt(reasons)
    return ConsentPrompt(
        reasons=reasons,
        missing_oidc_scopes=tuple(payload.get("missing_oidc_scopes", ())),
        missing_oidc_claims=tuple(payload.get("missing_oidc_claims", ())),
        missing_resource_scopes={k: tuple(v) for k, v in payload.get("missing_resource_scopes", {}).items()},
    )


def evaluate_prompt(
    request: AuthorizationRequest,
    *,
    account: Account | None,
    grant: Grant | None,
    resources: ResourceServerRegistry,
    result: dict | None = None,
) -> Prompt | None:
    """
    Return the next prompt, or None when the request can be answered with a code.
    result: what this interaction has already collected ({"login": ..., "consent": ...}).
    """
    result = result or {}

    login_reasons = []
    if account is None:
        login_reasons.append("no_session")
    elif "login" in request.prompt and "login" not in result:
        login_reasons.append("login_prompt")
    if login_reasons:
        return LoginPrompt(tuple(login_reasons))

    if grant is None:
        missing_scopes = list(request.oidc_scopes)
        missing_claims = list(request.requested_claims)
    else:
        missing_scopes = grant.missing_oidc_scopes(request.oidc_scopes)
        missing_claims = grant.missing_oidc_claims(request.requested_claims)
    missing_resources = {}
    for indicator, scopes in request.resource_scopes(resources).items():
        missing = scopes if grant is None else grant.missing_resource_scopes(indicator, scopes)
        if missing:
            missing_resources[indicator] = tuple(missing)

    consent_reasons = []
    if "consent" in request.prompt and "consent" not in result:
        consent_reasons.append("consent_prompt")
    if missing_scopes:
        consent_reasons.append("op_scopes_missing")
    if missing_claims:
        consent_reasons.append("op_claims_missing")
    if missing_resources:
        consent_reasons.append("rs_scopes_missing")
    if not consent_reasons:
        return None
    return ConsentPrompt(
        reasons=tuple(consent_reasons),
        missing_oidc_scopes=tuple(missing_scopes),
        missing_oidc_claims=tuple(missing_claims),
        missing_resource_scopes=missing_resources,
    )

"""
Authorization request parsing and validation (GET /authorize).
Client and redirect_uri problems cannot be redirected and are raised first; everything
after that is raised as an OAuth error the caller sends back to the redirect_uri.
"""
import json
from dataclasses import asdict, dataclass

from op_server.clients import ClientDescriptor, ClientRegistry
from op_server.config import OIDC_SCOPES, SCOPE_CLAIMS
from op_server.errors import (
    InvalidClient,
    InvalidRequest,
    InvalidScope,
    UnauthorizedClient,
    UnsupportedResponseType,
)
from op_server.grants import split_scope
from op_server.policy import ResourceServerRegistry

_SINGLE_VALUED = (
    "client_id",
    "redirect_uri",
    "response_type",
    "scope",
    "state",
    "nonce",
    "code_challenge",
    "code_challenge_method",
    "prompt",
    "claims",
)
_PROMPT_VALUES = {"none", "login", "consent"}


@dataclass(frozen=True)
class AuthorizationRequest:
    client_id: str
    redirect_uri: str
    response_type: str
    scope: str
    code_challenge: str
    code_challenge_method: str = "S256"
    state: str | None = None
    nonce: str | None = None
    resources: tuple[str, ...] = ()
    prompt: tuple[str, ...] = ()
    userinfo_claims: tuple[str, ...] = ()
    id_token_claims: tuple[str, ...] = ()

    @property
    def scopes(self) -> list[str]:
        return self.scope.split()

    @property
    def oidc_scopes(self) -> list[str]:
        return [s for s in self.scopes if s in OIDC_SCOPES]

    @property
    def requested_claims(self) -> list[str]:
        """Claims asked for via the claims parameter that the requested scopes do not already cover."""
        covered = {c for s in self.oidc_scopes for c in SCOPE_CLAIMS.get(s, ())}
        names = dict.fromkeys(self.userinfo_claims + self.id_token_claims)
        return [c for c in names if c != "sub" and c not in covered]

    def resource_scopes(self, resources: ResourceServerRegistry) -> dict[str, list[str]]:
        """indicator -> requested scopes that belong to that resource server."""
        result = {}
        for indicator in self.resources:
            server = resources.get(indicator)
            result[indicator] = [s for s in self.scopes if s in server.scopes]
        return result

    def to_payload(self) -> dict:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict) -> "AuthorizationRequest":
        data = dict(payload)
        for name in ("resources", "prompt", "userinfo_claims", "id_token_claims"):
            data[name] = tuple(data.get(name) or ())
        return cls(**data)


def resolve_client(params, clients: ClientRegistry) -> tuple[ClientDescriptor, str]:
    """Validate client_id and redirect_uri (exact match). Errors here must not redirect."""
    client_id = params.get("client_id")
    redirect_uri = params.get("redirect_uri")
    if not client_id:
        raise InvalidRequest("missing required parameter 'client_id'")
    client = clients.get(client_id)
    if client is None:
        raise InvalidClient("unknown client_id")
    if len(params.getlist("redirect_uri")) > 1:
        raise InvalidRequest("'redirect_uri' parameter must not be provided twice")
    if not redirect_uri:
        raise InvalidRequest("missing required parameter 'redirect_uri'")
    if not client.redirect_uri_allowed(redirect_uri):
        raise InvalidRequest("redirect_uri is not registered for this client")
    return client, redirect_uri


def _parse_claims(raw: str | None) -> tuple[tuple[str, ...], tuple[str, ...]]:
    if not raw:
        return (), ()
    try:
        claims = json.loads(raw)
    except ValueError:
        raise InvalidRequest("claims parameter must be valid JSON")
    if not isinstance(claims, dict):
        raise InvalidRequest("claims parameter must be a JSON object")
    members = []
    for member in ("userinfo", "id_token"):
        value = claims.get(member)
        if value is None:
            value = {}
        if not isinstance(value, dict):
            raise InvalidRequest(f"claims.{member} must be a JSON object")
        members.append(tuple(value))
    return members[0], members[1]


def parse_authorization_request(
    params,
    client: ClientDescriptor,
    redirect_uri: str,
    resources: ResourceServerRegistry,
    default_resource: str | None = None,
) -> AuthorizationRequest:
    """
    params: starlette QueryParams (or anything with get/getlist).
    default_resource stands in for a missing resource parameter so its scopes are consented
    and carried by the code.
    """
    for name in _SINGLE_VALUED:
        if len(params.getlist(name)) > 1:
            raise InvalidRequest(f"'{name}' parameter must not be provided twice")

    response_type = params.get("response_type")
    if not response_type:
        raise InvalidRequest("missing required parameter 'response_type'")
    if response_type != "code" or not client.response_type_allowed(response_type):
        raise UnsupportedResponseType("only response_type=code is supported")
    if not client.grant_type_allowed("authorization_code"):
        raise UnauthorizedClient("client is not allowed to use the authorization_code grant")

    scopes = split_scope(params.get("scope"))
    if "openid" not in scopes:
        raise InvalidRequest("openid scope must be requested")
    unknown = [s for s in scopes if s not in OIDC_SCOPES and s not in resources.all_scopes]
    if unknown:
        raise InvalidScope(f"unsupported scope(s): {' '.join(unknown)}")

    code_challenge = params.get("code_challenge")
    code_challenge_method = params.get("code_challenge_method") or "S256"
    if not code_challenge:
        raise InvalidRequest("PKCE code_challenge is required")
    if code_challenge_method != "S256":
        raise InvalidRequest("code_challenge_method must be S256")

    indicators = tuple(dict.fromkeys(params.getlist("resource")))
    if not indicators and default_resource:
        indicators = (default_resource,)
    for indicator in indicators:
        resources.get(indicator)

    prompt = tuple(split_scope(params.get("prompt")))
    invalid_prompts = [p for p in prompt if p not in _PROMPT_VALUES]
    if invalid_prompts:
        raise InvalidRequest(f"unsupported prompt value(s): {' '.join(invalid_prompts)}")
    if "none" in prompt and len(prompt) > 1:
        raise InvalidRequest("prompt none must only be used alone")

    userinfo_claims, id_token_claims = _parse_claims(params.get("claims"))

    return AuthorizationRequest(
        client_id=client.client_id,
        redirect_uri=redirect_uri,
        response_type=response_type,
        scope=" ".join(scopes),
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        state=params.get("state") or None,
        nonce=params.get("nonce") or None,
        resources=indicators,
        prompt=prompt,
        userinfo_claims=userinfo_claims,
        id_token_claims=id_token_claims,
    )

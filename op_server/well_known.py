"""
Well-known endpoints: JWKS and OpenID Connect discovery.
"""
from fastapi import APIRouter, Depends

from op_server.config import OIDC_SCOPES
from op_server.provider import Provider, get_provider
from op_server.token_endpoint import SUPPORTED_GRANT_TYPES

router = APIRouter()


@router.get("/.well-known/jwks.json")
def jwks_json(provider: Provider = Depends(get_provider)):
    """JSON Web Key Set for ID token and JWT access token verification."""
    return provider.keys.jwks()


@router.get("/.well-known/openid-configuration")
def openid_configuration(provider: Provider = Depends(get_provider)):
    """OpenID Connect discovery document."""
    issuer = provider.settings.issuer
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/authorize",
        "token_endpoint": f"{issuer}/token",
        "userinfo_endpoint": f"{issuer}/userinfo",
        "end_session_endpoint": f"{issuer}/session/end",
        "jwks_uri": f"{issuer}/.well-known/jwks.json",
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
        "scopes_supported": list(OIDC_SCOPES) + sorted(provider.resources.all_scopes),
        "claims_supported": ["sub", "name", "email"],
        "claims_parameter_supported": True,
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["RS256"],
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post", "none"],
        "code_challenge_methods_supported": ["S256"],
        "prompt_values_supported": ["none", "login", "consent"],
    }

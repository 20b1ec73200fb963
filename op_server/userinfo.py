"""
OIDC UserInfo endpoint (GET /userinfo). Bearer opaque access token required; returns claims by scope.
JWT access tokens are audience-bound to a resource server and are not accepted here.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from op_server.config import SCOPE_CLAIMS
from op_server.errors import InvalidToken
from op_server.provider import Provider, get_provider
from op_server.tokens import ACCESS_TOKEN_KIND, OpaqueAccessToken

logger = logging.getLogger(__name__)
router = APIRouter()
security = HTTPBearer(auto_error=False)


@router.get("/userinfo")
def userinfo(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    provider: Provider = Depends(get_provider),
):
    """
    Claims for the token's subject: sub always; profile -> name; email -> email; plus any
    claims approved through the claims parameter.
    """
    if credentials is None:
        raise InvalidToken("bearer access token required")
    payload = provider.store.find(ACCESS_TOKEN_KIND, credentials.credentials)
    if payload is None:
        logger.debug("UserInfo called with unknown or expired access token")
        raise InvalidToken()
    token = OpaqueAccessToken.from_payload(payload)
    if "openid" not in token.scope.split():
        raise InvalidToken("access token was not issued for openid")

    released = {c for s in token.scope.split() for c in SCOPE_CLAIMS.get(s, ())}
    released.update(token.claims)
    claims = provider.accounts.claims(token.account_id)
    body = {k: v for k, v in claims.items() if k == "sub" or k in released}
    return JSONResponse(body, headers={"Cache-Control": "no-store"})

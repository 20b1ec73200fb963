"""
Code and token records, and minting of ID tokens, access tokens and refresh tokens.
JWTs are RS256 signed with the KeyStore's current key; opaque access tokens and refresh
tokens are random handles backed by a stored record.
"""
import hashlib
import logging
from base64 import urlsafe_b64encode
from dataclasses import asdict, dataclass, field
from datetime import timedelta

import jwt

from op_server.keys import KeyStore
from op_server.policy import TokenIssuanceDecision
from op_server.storage import RecordStore, new_id

logger = logging.getLogger(__name__)

CODE_KIND = "AuthorizationCode"
ACCESS_TOKEN_KIND = "AccessToken"
REFRESH_TOKEN_KIND = "RefreshToken"


@dataclass
class AuthorizationCode:
    client_id: str
    redirect_uri: str
    account_id: str
    grant_id: str
    scope: str
    code_challenge: str
    code_challenge_method: str = "S256"
    resources: dict[str, list[str]] = field(default_factory=dict)
    nonce: str | None = None
    auth_time: int | None = None
    claims: list[str] = field(default_factory=list)

    def to_payload(self) -> dict:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict) -> "AuthorizationCode":
        return cls(**payload)


@dataclass
class RefreshTokenRecord:
    account_id: str
    client_id: str
    grant_id: str
    scope: str
    resources: dict[str, list[str]] = field(default_factory=dict)
    auth_time: int | None = None
    claims: list[str] = field(default_factory=list)

    def to_payload(self) -> dict:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict) -> "RefreshTokenRecord":
        return cls(**payload)


@dataclass
class OpaqueAccessToken:
    account_id: str
    client_id: str
    grant_id: str
    scope: str
    claims: list[str] = field(default_factory=list)

    def to_payload(self) -> dict:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict) -> "OpaqueAccessToken":
        return cls(**payload)


def pkce_verify(code_verifier: str, code_challenge: str, method: str | None) -> bool:
    """Verify PKCE: S256 only; SHA256(verifier) base64url == challenge."""
    if method != "S256":
        return False
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    computed = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return computed == code_challenge


class TokenMinter:
    def __init__(self, issuer: str, keys: KeyStore, store: RecordStore, *, id_token_ttl: int, refresh_token_ttl: int, code_ttl: int):
        self._issuer = issuer
        self._keys = keys
        self._store = store
        self._id_token_ttl = id_token_ttl
        self._refresh_token_ttl = refresh_token_ttl
        self._code_ttl = code_ttl

    def _sign(self, payload: dict, typ: str) -> str:
        private_key, kid = self._keys.signing_key()
        return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid, "typ": typ})

    def authorization_code(self, code: AuthorizationCode) -> str:
        return self._store.save(CODE_KIND, code.to_payload(), self._code_ttl, grant_id=code.grant_id)

    def access_token(
        self,
        decision: TokenIssuanceDecision,
        *,
        account_id: str,
        client_id: str,
        grant_id: str,
        claims: list[str] | None = None,
    ) -> str:
        """JWT bound to the decision's audience, or an opaque handle stored for userinfo."""
        if decision.access_token_format == "jwt":
            now = self._store.now()
            payload = {
                "iss": self._issuer,
                "sub": account_id,
                "aud": decision.audience,
                "client_id": client_id,
                "scope": decision.scope,
                "jti": new_id(),
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(seconds=decision.ttl)).timestamp()),
            }
            return self._sign(payload, "at+jwt")
        record = OpaqueAccessToken(
            account_id=account_id,
            client_id=client_id,
            grant_id=grant_id,
            scope=decision.scope,
            claims=list(claims or ()),
        )
        return self._store.save(ACCESS_TOKEN_KIND, record.to_payload(), decision.ttl, grant_id=grant_id)

    def id_token(
        self,
        *,
        account_id: str,
        client_id: str,
        nonce: str | None = None,
        auth_time: int | None = None,
        claims: dict | None = None,
    ) -> str:
        now = self._store.now()
        payload = dict(claims or {})
        payload.update(
            {
                "iss": self._issuer,
                "sub": account_id,
                "aud": client_id,
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(seconds=self._id_token_ttl)).timestamp()),
            }
        )
        if nonce:
            payload["nonce"] = nonce
        if auth_time is not None:
            payload["auth_time"] = auth_time
        return self._sign(payload, "JWT")

    def refresh_token(self, record: RefreshTokenRecord) -> str:
        return self._store.save(REFRESH_TOKEN_KIND, record.to_payload(), self._refresh_token_ttl, grant_id=record.grant_id)

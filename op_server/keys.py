"""
RSA signing keys for ID tokens and JWT access tokens.
Loaded from OP_JWKS (private JWKS JSON) or generated at startup. Generated keys are
ephemeral: they change on every restart, so previously issued tokens stop verifying.
The first key signs; every key is published in the JWKS.
"""
import base64
import json
import logging

import pydantic
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, generate_private_key
from jwt.algorithms import RSAAlgorithm
from jwt.exceptions import InvalidKeyError
from pydantic import BaseModel, ConfigDict, Field

from op_server.errors import ConfigurationError

logger = logging.getLogger(__name__)

_KEY_BITS = 2048
_KID_EPHEMERAL = "op-ephemeral-key"


class PrivateJWK(BaseModel):
    """RSA private key in JWK form (RFC 7517); only what signing needs is required."""

    model_config = ConfigDict(extra="allow")

    kty: str = Field(pattern="^RSA$")
    kid: str | None = None
    use: str | None = Field(default=None, pattern="^sig$")
    alg: str | None = Field(default=None, pattern="^RS256$")
    n: str
    e: str
    d: str


class PrivateJWKS(BaseModel):
    keys: list[PrivateJWK] = Field(min_length=1)


def _b64url_uint(value: int) -> str:
    return base64.urlsafe_b64encode(value.to_bytes((value.bit_length() + 7) // 8, "big")).rstrip(b"=").decode("ascii")


def public_key_to_jwk(public_key, kid: str) -> dict:
    """Export cryptography RSA public key to JWK with given kid."""
    numbers = public_key.public_numbers()
    return {
        "kty": "RSA",
        "kid": kid,
        "alg": "RS256",
        "use": "sig",
        "n": _b64url_uint(numbers.n),
        "e": _b64url_uint(numbers.e),
    }


class KeyStore:
    def __init__(self, keys: list[tuple[str, RSAPrivateKey]]):
        if not keys:
            raise ConfigurationError(fields=["OP_JWKS: at least one signing key is required"])
        self._keys: dict[str, RSAPrivateKey] = dict(keys)
        self._current_kid = keys[0][0]

    @classmethod
    def generate(cls) -> "KeyStore":
        logger.warning("No OP_JWKS configured; generated an ephemeral signing key (tokens will not survive a restart)")
        return cls([(_KID_EPHEMERAL, generate_private_key(65537, _KEY_BITS))])

    @classmethod
    def from_jwks(cls, raw: str | None) -> "KeyStore":
        """Load private keys from JWKS JSON; None means generate an ephemeral key."""
        if raw is None:
            return cls.generate()
        try:
            jwks = PrivateJWKS.model_validate_json(raw)
        except pydantic.ValidationError as e:
            raise ConfigurationError(
                fields=[f"OP_JWKS: {'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            )
        keys = []
        for index, jwk in enumerate(jwks.keys):
            try:
                key = RSAAlgorithm.from_jwk(json.dumps(jwk.model_dump(exclude_none=True)))
            except (InvalidKeyError, ValueError, KeyError) as e:
                raise ConfigurationError(fields=[f"OP_JWKS: keys.{index}: not a usable RSA private key ({type(e).__name__})"])
            if not isinstance(key, RSAPrivateKey):
                raise ConfigurationError(fields=[f"OP_JWKS: keys.{index}: private key material required"])
            keys.append((jwk.kid or f"op-key-{index}", key))
        logger.info("Loaded %d signing key(s) from OP_JWKS", len(keys))
        return cls(keys)

    def signing_key(self) -> tuple[RSAPrivateKey, str]:
        """Return the current private key and kid for signing new tokens."""
        return self._keys[self._current_kid], self._current_kid

    def public_key_for_kid(self, kid: str | None):
        """Return the public key for the given kid, or None if unknown."""
        private_key = self._keys.get(kid) if kid else None
        if private_key is None:
            return None
        return private_key.public_key()

    def jwks(self) -> dict:
        return {"keys": [public_key_to_jwk(k.public_key(), kid) for kid, k in self._keys.items()]}

"""
Grants: what one account has approved for one client.
Additive within a consent session: scopes, claims and resource scopes are only ever unioned in.
"""
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from op_server.storage import RecordStore, new_id

logger = logging.getLogger(__name__)

KIND = "Grant"


def split_scope(scope: str | Iterable[str] | None) -> list[str]:
    """Space-delimited scope string (or iterable of them) -> list of scope tokens, order kept, no duplicates."""
    if not scope:
        return []
    parts = scope.split() if isinstance(scope, str) else [t for s in scope for t in s.split()]
    return list(dict.fromkeys(parts))


@dataclass
class Grant:
    account_id: str
    client_id: str
    id: str | None = None
    openid_scopes: set[str] = field(default_factory=set)
    openid_claims: set[str] = field(default_factory=set)
    resources: dict[str, set[str]] = field(default_factory=dict)

    def add_oidc_scope(self, scope: str | Iterable[str]) -> None:
        self.openid_scopes.update(split_scope(scope))

    def add_oidc_claims(self, claims: Iterable[str]) -> None:
        self.openid_claims.update(c for c in claims if c)

    def add_resource_scope(self, indicator: str, scope: str | Iterable[str]) -> None:
        self.resources.setdefault(indicator, set()).update(split_scope(scope))

    def get_oidc_scope(self) -> str:
        return " ".join(sorted(self.openid_scopes))

    def get_resource_scope(self, indicator: str) -> str:
        return " ".join(sorted(self.resources.get(indicator, ())))

    def missing_oidc_scopes(self, requested: Iterable[str]) -> list[str]:
        return [s for s in requested if s not in self.openid_scopes]

    def missing_oidc_claims(self, requested: Iterable[str]) -> list[str]:
        return [c for c in requested if c not in self.openid_claims]

    def missing_resource_scopes(self, indicator: str, requested: Iterable[str]) -> list[str]:
        granted = self.resources.get(indicator, set())
        return [s for s in requested if s not in granted]

    def to_payload(self) -> dict:
        return {
            "account_id": self.account_id,
            "client_id": self.client_id,
            "openid_scopes": sorted(self.openid_scopes),
            "openid_claims": sorted(self.openid_claims),
            "resources": {k: sorted(v) for k, v in self.resources.items()},
        }

    @classmethod
    def from_payload(cls, grant_id: str, payload: dict) -> "Grant":
        return cls(
            account_id=payload["account_id"],
            client_id=payload["client_id"],
            id=grant_id,
            openid_scopes=set(payload.get("openid_scopes", ())),
            openid_claims=set(payload.get("openid_claims", ())),
            resources={k: set(v) for k, v in payload.get("resources", {}).items()},
        )


class GrantStore:
    def __init__(self, store: RecordStore, ttl: int):
        self._store = store
        self._ttl = ttl

    def find(self, grant_id: str | None) -> Grant | None:
        payload = self._store.find(KIND, grant_id)
        if payload is None:
            return None
        return Grant.from_payload(grant_id, payload)

    def save(self, grant: Grant) -> str:
        """Persist the grant (new id on first save) and return its id."""
        grant_id = grant.id or new_id()
        # Tagged with its own id so revoking the grant removes the grant row too
        self._store.save(KIND, grant.to_payload(), self._ttl, record_id=grant_id, grant_id=grant_id)
        grant.id = grant_id
        logger.debug("Saved grant %s for client_id=%s", grant_id, grant.client_id)
        return grant_id

    def revoke(self, grant_id: str) -> None:
        removed = self._store.revoke_by_grant(grant_id)
        logger.info("Revoked grant %s (%d record(s) removed)", grant_id, removed)

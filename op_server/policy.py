"""
Token issuance policy: refresh-token issuance and access-token shape per token request.

Access tokens are signed JWTs bound to a resource server when the token request carries a
registered resource indicator (or a default resource is configured). Without one, the
token is opaque and only good for userinfo. Each leg (authorization, code exchange,
refresh) has to carry the indicator; a leg that omits it gets an opaque token.
"""
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal
from urllib.parse import urlsplit

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from op_server.clients import ClientDescriptor
from op_server.config import DEFAULT_RESOURCE_SCOPE, OIDC_SCOPES, Settings
from op_server.errors import ConfigurationError, InvalidTarget

logger = logging.getLogger(__name__)

AccessTokenFormat = Literal["jwt", "opaque"]


@dataclass(frozen=True)
class ResourceServerInfo:
    indicator: str
    audience: str
    scopes: frozenset[str]
    access_token_format: AccessTokenFormat = "jwt"
    access_token_ttl: int = 60 * 60
    signing_alg: str = "RS256"


class ResourceServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    indicator: str = Field(min_length=1)
    audience: str | None = None
    scope: str = Field(min_length=1)
    access_token_format: AccessTokenFormat = "jwt"
    access_token_ttl: int | None = Field(default=None, gt=0)


class ResourceServerRegistry:
    def __init__(self, servers: Iterable[ResourceServerInfo]):
        self._servers = {s.indicator: s for s in servers}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResourceServerRegistry":
        """OP_RESOURCE_SERVERS (JSON array) or a single JWT resource server at the API audience."""
        ttl = settings.ttl.access_token
        if not settings.resource_servers_json:
            return cls(
                [
                    ResourceServerInfo(
                        indicator=settings.api_audience,
                        audience=settings.api_audience,
                        scopes=frozenset([DEFAULT_RESOURCE_SCOPE]),
                        access_token_ttl=ttl,
                    )
                ]
            )
        try:
            configs = pydantic.TypeAdapter(list[ResourceServerConfig]).validate_json(settings.resource_servers_json)
        except pydantic.ValidationError as e:
            raise ConfigurationError(
                fields=[
                    f"OP_RESOURCE_SERVERS: {'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                ]
            )
        servers = [
            ResourceServerInfo(
                indicator=c.indicator,
                audience=c.audience or c.indicator,
                scopes=frozenset(c.scope.split()),
                access_token_format=c.access_token_format,
                access_token_ttl=c.access_token_ttl or ttl,
            )
            for c in configs
        ]
        logger.info("Loaded %d resource server(s)", len(servers))
        return cls(servers)

    def __iter__(self):
        return iter(self._servers.values())

    @property
    def all_scopes(self) -> set[str]:
        return {s for server in self._servers.values() for s in server.scopes}

    def get(self, indicator: str) -> ResourceServerInfo:
        """Resolve a resource indicator; unknown or malformed indicators fail the request."""
        if not urlsplit(indicator).scheme:
            raise InvalidTarget("resource indicator must be an absolute URI")
        server = self._servers.get(indicator)
        if server is None:
            raise InvalidTarget("unknown resource indicator")
        return server


@dataclass(frozen=True)
class TokenIssuanceDecision:
    issue_refresh_token: bool
    access_token_format: AccessTokenFormat
    audience: str | None
    scope: str
    ttl: int
    resource: str | None = None


def should_issue_refresh_token(
    client: ClientDescriptor,
    scopes: Iterable[str],
    force_refresh_client_ids: Iterable[str] = (),
) -> bool:
    """
    Refresh tokens only for clients registered for the refresh_token grant, and then only
    when offline_access was granted or the client is configured to always get one.
    """
    if not client.grant_type_allowed("refresh_token"):
        return False
    return "offline_access" in set(scopes) or client.client_id in set(force_refresh_client_ids)


def decide_token_issuance(
    client: ClientDescriptor,
    granted_scopes: Iterable[str],
    granted_resources: dict[str, Iterable[str]],
    resource: str | None,
    *,
    resources: ResourceServerRegistry,
    access_token_ttl: int,
    default_resource: str | None = None,
    force_refresh_client_ids: Iterable[str] = (),
) -> TokenIssuanceDecision:
    """
    granted_scopes: OIDC scopes carried by the code / refresh token.
    granted_resources: indicator -> scopes approved for that resource server.
    resource: the resource indicator on this token request, if any.
    """
    scopes = [s for s in granted_scopes if s in OIDC_SCOPES]
    issue_refresh = should_issue_refresh_token(client, scopes, force_refresh_client_ids)

    indicator = resource or default_resource
    if indicator is None:
        return TokenIssuanceDecision(
            issue_refresh_token=issue_refresh,
            access_token_format="opaque",
            audience=None,
            scope=" ".join(scopes),
            ttl=access_token_ttl,
        )

    server = resources.get(indicator)
    approved = [s for s in sorted(granted_resources.get(indicator, ())) if s in server.scopes]
    return TokenIssuanceDecision(
        issue_refresh_token=issue_refresh,
        access_token_format=server.access_token_format,
        audience=server.audience,
        scope=" ".join(approved),
        ttl=server.access_token_ttl,
        resource=indicator,
    )

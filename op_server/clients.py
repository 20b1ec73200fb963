"""
Client registry. Client descriptors come from, in order (first match wins):
1. OIDC_CLIENTS env var (JSON array)
2. .env.clients.json in the working directory
3. A single client built from CLIENT_ID / CLIENT_SECRET / REDIRECT_URI / POST_LOGOUT_REDIRECT_URI
Every source is schema-validated; any violation raises ConfigurationError and the server must not start.
"""
import logging
from dataclasses import dataclass
from typing import Annotated, Literal
from urllib.parse import urlsplit

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from op_server.config import Settings
from op_server.errors import ConfigurationError

logger = logging.getLogger(__name__)

GrantType = Literal["authorization_code", "refresh_token"]
ResponseType = Literal["code", "token", "id_token"]
TokenEndpointAuthMethod = Literal["client_secret_basic", "client_secret_post", "none"]


def _check_absolute_uri(value: str) -> str:
    parts = urlsplit(value)
    if not parts.scheme:
        raise ValueError("must be an absolute URI")
    if parts.scheme in ("http", "https") and not parts.netloc:
        raise ValueError("must include a host")
    if parts.fragment:
        raise ValueError("must not contain a fragment")
    return value


AbsoluteUri = Annotated[str, AfterValidator(_check_absolute_uri)]


class ClientConfig(BaseModel):
    """Raw client metadata as configured. force_refresh_token is ours, not OIDC metadata."""

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(min_length=1, max_length=100)
    client_secret: str = Field(min_length=1, max_length=500)
    redirect_uris: list[AbsoluteUri] = Field(min_length=1)
    post_logout_redirect_uris: list[AbsoluteUri] = Field(default_factory=list)
    grant_types: list[GrantType] = Field(default_factory=lambda: ["authorization_code"], min_length=1)
    response_types: list[ResponseType] = Field(default_factory=lambda: ["code"], min_length=1)
    token_endpoint_auth_method: TokenEndpointAuthMethod = "client_secret_basic"
    force_refresh_token: bool = False

    @field_validator("client_id", "client_secret")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


@dataclass(frozen=True)
class ClientDescriptor:
    """Validated, immutable client. Exact-match redirect URIs."""

    client_id: str
    client_secret: str
    redirect_uris: tuple[str, ...]
    post_logout_redirect_uris: tuple[str, ...]
    grant_types: tuple[str, ...]
    response_types: tuple[str, ...]
    token_endpoint_auth_method: str

    @classmethod
    def from_config(cls, config: ClientConfig) -> "ClientDescriptor":
        return cls(
            client_id=config.client_id,
            client_secret=config.client_secret,
            redirect_uris=tuple(config.redirect_uris),
            post_logout_redirect_uris=tuple(config.post_logout_redirect_uris),
            grant_types=tuple(config.grant_types),
            response_types=tuple(config.response_types),
            token_endpoint_auth_method=config.token_endpoint_auth_method,
        )

    @property
    def is_confidential(self) -> bool:
        return self.token_endpoint_auth_method != "none"

    def grant_type_allowed(self, grant_type: str) -> bool:
        return grant_type in self.grant_types

    def response_type_allowed(self, response_type: str) -> bool:
        return response_type in self.response_types

    def redirect_uri_allowed(self, uri: str) -> bool:
        return uri in self.redirect_uris

    def post_logout_redirect_uri_allowed(self, uri: str) -> bool:
        return uri in self.post_logout_redirect_uris


def _format_errors(source: str, error: pydantic.ValidationError) -> list[str]:
    fields = []
    for err in error.errors():
        path = ".".join(str(p) for p in err["loc"])
        fields.append(f"{source}: {path}: {err['msg']}")
    return fields


def _validate_json(source: str, raw: str) -> list[ClientConfig]:
    try:
        return pydantic.TypeAdapter(list[ClientConfig]).validate_json(raw)
    except pydantic.ValidationError as e:
        raise ConfigurationError(fields=_format_errors(source, e))


def load_client_configs(settings: Settings) -> list[ClientConfig]:
    """Resolve the client source (env, file, scalar fallback) and validate it."""
    if settings.oidc_clients_json:
        logger.info("Loading OIDC clients from OIDC_CLIENTS environment variable")
        return _validate_json("OIDC_CLIENTS", settings.oidc_clients_json)

    path = settings.clients_file
    if path.exists():
        logger.info("Loading OIDC clients from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(fields=[f"{path}: cannot read file: {e.strerror}"])
        return _validate_json(str(path), raw)

    logger.info("Loading single OIDC client from CLIENT_ID/CLIENT_SECRET env vars")
    try:
        return [
            ClientConfig(
                client_id=settings.client_id,
                client_secret=settings.client_secret,
                redirect_uris=[settings.redirect_uri],
                post_logout_redirect_uris=[settings.post_logout_redirect_uri],
                grant_types=["authorization_code", "refresh_token"],
                response_types=["code"],
                token_endpoint_auth_method="client_secret_basic",
            )
        ]
    except pydantic.ValidationError as e:
        raise ConfigurationError(fields=_format_errors("CLIENT_ID/CLIENT_SECRET/REDIRECT_URI", e))


class ClientRegistry:
    """Read-only after startup."""

    def __init__(self, clients: list[ClientDescriptor], force_refresh_client_ids: frozenset[str] = frozenset()):
        if not clients:
            raise ConfigurationError(fields=["clients: at least one client is required"])
        self._clients: dict[str, ClientDescriptor] = {}
        for client in clients:
            if client.client_id in self._clients:
                raise ConfigurationError(fields=[f"clients: duplicate client_id '{client.client_id}'"])
            self._clients[client.client_id] = client
        self.force_refresh_client_ids = frozenset(force_refresh_client_ids)

    @classmethod
    def from_configs(cls, configs: list[ClientConfig]) -> "ClientRegistry":
        # force_refresh_token is moved into a side-set; descriptors never carry it
        force = frozenset(c.client_id for c in configs if c.force_refresh_token)
        return cls([ClientDescriptor.from_config(c) for c in configs], force)

    @classmethod
    def load(cls, settings: Settings) -> "ClientRegistry":
        registry = cls.from_configs(load_client_configs(settings))
        logger.info(
            "Loaded %d OIDC client(s) (force refresh: %s)",
            len(registry),
            ", ".join(sorted(registry.force_refresh_client_ids)) or "none",
        )
        return registry

    def __len__(self) -> int:
        return len(self._clients)

    def __iter__(self):
        return iter(self._clients.values())

    def get(self, client_id: str | None) -> ClientDescriptor | None:
        if not client_id:
            return None
        return self._clients.get(client_id)

    def force_refresh(self, client_id: str) -> bool:
        return client_id in self.force_refresh_client_ids

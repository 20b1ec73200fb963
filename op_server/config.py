"""
OpenID Provider configuration. Values come from the environment; no secrets in this file.
Settings are read once at startup and passed into build_provider().
"""
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from op_server.errors import ConfigurationError

# Scopes understood by the OP itself; resource-server scopes come from the resource registry
OIDC_SCOPES = ("openid", "profile", "email", "offline_access")

# Claims released per scope (userinfo and claims-parameter consent)
SCOPE_CLAIMS = {
    "openid": ("sub",),
    "profile": ("name",),
    "email": ("email",),
    "offline_access": (),
}

DEFAULT_RESOURCE_SCOPE = "accounts:read"

SESSION_COOKIE = "_session"
INTERACTION_COOKIE = "_interaction"
RESUME_COOKIE = "_interaction_resume"


@dataclass(frozen=True)
class TTLConfig:
    """Lifetimes in seconds."""

    access_token: int = 60 * 60  # 1 hour
    id_token: int = 60 * 60  # 1 hour
    refresh_token: int = 14 * 24 * 60 * 60  # 14 days
    session: int = 24 * 60 * 60  # 1 day
    grant: int = 365 * 24 * 60 * 60  # 1 year
    authorization_code: int = 60


@dataclass(frozen=True)
class Settings:
    issuer: str = "https://id.localtest.me"
    host: str = "0.0.0.0"
    port: int = 3001
    api_audience: str = "api://my-api"
    database_url: str = "sqlite:///:memory:"
    log_level: str = "INFO"
    # Client sources, first match wins (see clients.load_client_configs)
    oidc_clients_json: str | None = None
    clients_file: Path = Path(".env.clients.json")
    client_id: str = "dev-rp"
    client_secret: str = "dev-secret"
    redirect_uri: str = "https://app.localtest.me/callback"
    post_logout_redirect_uri: str = "https://app.localtest.me"
    # Optional JSON documents
    jwks_json: str | None = None
    accounts_json: str | None = None
    resource_servers_json: str | None = None
    default_resource: str | None = None
    ttl: TTLConfig = field(default_factory=TTLConfig)

    @property
    def cookie_secure(self) -> bool:
        return self.issuer.startswith("https://")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables. Raises ConfigurationError on malformed values."""
        env = os.environ if environ is None else environ

        def text(name: str, fallback: str) -> str:
            return env.get(name) or fallback

        def optional(name: str) -> str | None:
            value = env.get(name, "").strip()
            return value or None

        defaults = TTLConfig()
        ttl = TTLConfig(
            access_token=_env_int(env, "OP_TTL_ACCESS_TOKEN", defaults.access_token),
            id_token=_env_int(env, "OP_TTL_ID_TOKEN", defaults.id_token),
            refresh_token=_env_int(env, "OP_TTL_REFRESH_TOKEN", defaults.refresh_token),
            session=_env_int(env, "OP_TTL_SESSION", defaults.session),
            grant=_env_int(env, "OP_TTL_GRANT", defaults.grant),
            authorization_code=_env_int(env, "OP_TTL_AUTHORIZATION_CODE", defaults.authorization_code),
        )
        return cls(
            issuer=text("OP_ISSUER", cls.issuer).rstrip("/"),
            host=text("OP_HOST", cls.host),
            port=_env_int(env, "OP_PORT", cls.port),
            api_audience=text("OP_API_AUDIENCE", cls.api_audience),
            database_url=text("OP_DATABASE_URL", cls.database_url),
            log_level=text("LOG_LEVEL", cls.log_level).upper(),
            oidc_clients_json=optional("OIDC_CLIENTS"),
            clients_file=Path(text("OP_CLIENTS_FILE", ".env.clients.json")),
            client_id=text("CLIENT_ID", cls.client_id),
            client_secret=text("CLIENT_SECRET", cls.client_secret),
            redirect_uri=text("REDIRECT_URI", cls.redirect_uri),
            post_logout_redirect_uri=text("POST_LOGOUT_REDIRECT_URI", cls.post_logout_redirect_uri),
            jwks_json=optional("OP_JWKS"),
            accounts_json=optional("OP_ACCOUNTS"),
            resource_servers_json=optional("OP_RESOURCE_SERVERS"),
            default_resource=optional("OP_DEFAULT_RESOURCE"),
            ttl=ttl,
        )


def _env_int(env: Mapping[str, str], name: str, fallback: int) -> int:
    value = env.get(name)
    if not value:
        return fallback
    try:
        number = int(value)
    except ValueError:
        raise ConfigurationError(fields=[f"{name}: must be a valid number, got: {value}"])
    if number <= 0:
        raise ConfigurationError(fields=[f"{name}: must be positive, got: {value}"])
    return number

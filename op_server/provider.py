"""
Wires registries, stores and services together. Everything request handlers need hangs off
one Provider built at startup and stored on app.state; there are no module-level singletons.
"""
import logging
from dataclasses import dataclass, field

from fastapi import Request

from op_server.accounts import AccountStore
from op_server.audit import AuditTokenObserver, AuditTrail, TokenIssuanceObserver
from op_server.clients import ClientRegistry
from op_server.config import Settings
from op_server.database import Database
from op_server.errors import ConfigurationError, InvalidTarget
from op_server.grants import GrantStore
from op_server.interactions import InteractionService
from op_server.keys import KeyStore
from op_server.policy import ResourceServerRegistry
from op_server.sessions import SessionManager
from op_server.storage import Clock, RecordStore, utc_now
from op_server.tokens import TokenMinter

logger = logging.getLogger(__name__)


@dataclass
class Provider:
    settings: Settings
    database: Database
    store: RecordStore
    clients: ClientRegistry
    accounts: AccountStore
    resources: ResourceServerRegistry
    keys: KeyStore
    grants: GrantStore
    sessions: SessionManager
    interactions: InteractionService
    tokens: TokenMinter
    audit: AuditTrail
    observers: list[TokenIssuanceObserver] = field(default_factory=list)

    def close(self) -> None:
        self.database.dispose()


def build_provider(settings: Settings, *, clock: Clock = utc_now, keys: KeyStore | None = None) -> Provider:
    """Validate all configuration and build the provider. Raises ConfigurationError."""
    clients = ClientRegistry.load(settings)
    accounts = AccountStore.from_json(settings.accounts_json)
    resources = ResourceServerRegistry.from_settings(settings)
    if settings.default_resource:
        try:
            resources.get(settings.default_resource)
        except InvalidTarget:
            raise ConfigurationError(fields=[f"OP_DEFAULT_RESOURCE: unknown resource indicator '{settings.default_resource}'"])
    keys = keys or KeyStore.from_jwks(settings.jwks_json)

    database = Database(settings.database_url)
    database.init()
    store = RecordStore(database, clock=clock)
    audit = AuditTrail(database)
    grants = GrantStore(store, settings.ttl.grant)
    ttl = settings.ttl
    provider = Provider(
        settings=settings,
        database=database,
        store=store,
        clients=clients,
        accounts=accounts,
        resources=resources,
        keys=keys,
        grants=grants,
        sessions=SessionManager(store, ttl.session),
        interactions=InteractionService(store, grants, accounts, audit, ttl.session),
        tokens=TokenMinter(
            settings.issuer,
            keys,
            store,
            id_token_ttl=ttl.id_token,
            refresh_token_ttl=ttl.refresh_token,
            code_ttl=ttl.authorization_code,
        ),
        audit=audit,
        observers=[AuditTokenObserver(audit)],
    )
    logger.info("OpenID Provider ready (issuer=%s, %d client(s), %d account(s))", settings.issuer, len(clients), len(accounts))
    return provider


def get_provider(request: Request) -> Provider:
    return request.app.state.provider

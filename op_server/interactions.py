"""
Interaction state machine: login -> consent -> resolved, or cancelled / errored.

An interaction is created by the authorization endpoint when a prompt is outstanding and is
driven by the /interaction/{uid} routes. Each successful submission stores its result on the
interaction and sends the browser back to /authorize/{uid}, which evaluates the next prompt.
Finished interactions are kept until they expire but reject any further submission.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum

from op_server.accounts import AccountStore
from op_server.audit import (
    EVENT_CANCEL,
    EVENT_CONSENT_ALLOW,
    EVENT_INTERACTION_ERROR,
    EVENT_LOGIN_FAIL,
    EVENT_LOGIN_OK,
    EVENT_LOGIN_UNAUTHORIZED,
    OUTCOME_FAIL,
    AuditTrail,
)
from op_server.authorization_request import AuthorizationRequest
from op_server.error_redirect import build_error_redirect_url, classify, describe
from op_server.errors import (
    AuthenticationError,
    AuthorizationError,
    InteractionNotFound,
    InvalidGrant,
    InvalidRequest,
    OPError,
    ValidationError,
)
from op_server.grants import Grant, GrantStore
from op_server.prompts import ConsentPrompt, LoginPrompt, Prompt, prompt_from_payload, prompt_to_payload
from op_server.security import sanitize_for_logging
from op_server.storage import RecordStore, new_id
from op_server.validation import parse_login_form, validate_interaction_uid

logger = logging.getLogger(__name__)

KIND = "Interaction"


class InteractionState(str, Enum):
    AWAITING_LOGIN = "awaiting_login"
    AWAITING_CONSENT = "awaiting_consent"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    ERRORED = "errored"


_PENDING = (InteractionState.AWAITING_LOGIN, InteractionState.AWAITING_CONSENT)


def _state_for(prompt: Prompt) -> InteractionState:
    if isinstance(prompt, LoginPrompt):
        return InteractionState.AWAITING_LOGIN
    return InteractionState.AWAITING_CONSENT


@dataclass
class Interaction:
    uid: str
    request: AuthorizationRequest
    prompt: Prompt
    state: InteractionState
    session_id: str | None = None
    account_id: str | None = None
    grant_id: str | None = None
    result: dict = field(default_factory=dict)

    @property
    def return_to(self) -> str:
        return f"/authorize/{self.uid}"

    @property
    def is_pending(self) -> bool:
        return self.state in _PENDING

    def to_payload(self) -> dict:
        return {
            "request": self.request.to_payload(),
            "prompt": prompt_to_payload(self.prompt),
            "state": self.state.value,
            "session_id": self.session_id,
            "account_id": self.account_id,
            "grant_id": self.grant_id,
            "result": self.result,
        }

    @classmethod
    def from_payload(cls, uid: str, payload: dict) -> "Interaction":
        return cls(
            uid=uid,
            request=AuthorizationRequest.from_payload(payload["request"]),
            prompt=prompt_from_payload(payload["prompt"]),
            state=InteractionState(payload["state"]),
            session_id=payload.get("session_id"),
            account_id=payload.get("account_id"),
            grant_id=payload.get("grant_id"),
            result=dict(payload.get("result") or {}),
        )


@dataclass(frozen=True)
class InteractionDetails:
    uid: str
    prompt: str
    client_id: str
    scopes: list[str]
    missing_resource_scopes: dict[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class Redirect:
    location: str


@dataclass(frozen=True)
class LoginRejected:
    """Re-render the login form. email is echoed back, the password never is."""

    status_code: int
    message: str
    email: str


class InteractionService:
    def __init__(
        self,
        store: RecordStore,
        grants: GrantStore,
        accounts: AccountStore,
        audit: AuditTrail,
        ttl: int,
    ):
        self._store = store
        self._grants = grants
        self._accounts = accounts
        self._audit = audit
        self._ttl = ttl

    def _save(self, interaction: Interaction) -> None:
        # Expiry is fixed when the interaction starts
        if not self._store.update(KIND, interaction.uid, interaction.to_payload()):
            raise InteractionNotFound()

    def create(
        self,
        request: AuthorizationRequest,
        prompt: Prompt,
        *,
        session_id: str | None = None,
        account_id: str | None = None,
        grant_id: str | None = None,
    ) -> Interaction:
        interaction = Interaction(
            uid=new_id(),
            request=request,
            prompt=prompt,
            state=_state_for(prompt),
            session_id=session_id,
            account_id=account_id,
            grant_id=grant_id,
        )
        self._store.save(KIND, interaction.to_payload(), self._ttl, record_id=interaction.uid)
        logger.info("Interaction %s started (%s) for client_id=%s", interaction.uid, prompt.name, request.client_id)
        return interaction

    def advance(
        self,
        interaction: Interaction,
        prompt: Prompt,
        *,
        session_id: str | None,
        account_id: str | None,
        grant_id: str | None,
    ) -> Interaction:
        """Move a resumed interaction on to its next prompt."""
        interaction.prompt = prompt
        interaction.state = _state_for(prompt)
        interaction.session_id = session_id
        interaction.account_id = account_id
        interaction.grant_id = grant_id
        self._save(interaction)
        return interaction

    def finish(self, interaction: Interaction, state: InteractionState) -> None:
        interaction.state = state
        self._save(interaction)
        logger.info("Interaction %s %s", interaction.uid, state.value)

    def load(self, uid: str) -> Interaction:
        validate_interaction_uid(uid)
        payload = self._store.find(KIND, uid)
        if payload is None:
            raise InteractionNotFound()
        return Interaction.from_payload(uid, payload)

    def load_pending(self, uid: str) -> Interaction:
        interaction = self.load(uid)
        if not interaction.is_pending:
            raise InteractionNotFound("interaction already finished")
        return interaction

    def details(self, uid: str) -> InteractionDetails:
        interaction = self.load_pending(uid)
        missing = {}
        if isinstance(interaction.prompt, ConsentPrompt):
            missing = dict(interaction.prompt.missing_resource_scopes)
        return InteractionDetails(
            uid=uid,
            prompt=interaction.prompt.name,
            client_id=interaction.request.client_id,
            scopes=interaction.request.scopes,
            missing_resource_scopes=missing,
        )

    def submit_login(self, uid: str, email: str, password: str, *, ip: str | None = None) -> Redirect | LoginRejected:
        interaction = self.load_pending(uid)
        if not isinstance(interaction.prompt, LoginPrompt):
            raise InvalidRequest("login is not the current prompt")
        client_id = interaction.request.client_id

        try:
            form = parse_login_form(email or "", password or "")
        except ValidationError as e:
            return LoginRejected(status_code=400, message=e.description, email=email or "")

        account = self._accounts.authenticate(form.email, form.password)
        if account is None:
            logger.info("Login failed for client_id=%s email=%s", client_id, sanitize_for_logging(form.email))
            self._audit.record(EVENT_LOGIN_FAIL, client_id=client_id, ip=ip, outcome=OUTCOME_FAIL)
            err = AuthenticationError()
            return LoginRejected(status_code=err.status_code, message=err.description, email=form.email)

        if not account.oauth_authorized:
            interaction.account_id = account.id
            self.finish(interaction, InteractionState.ERRORED)
            self._audit.record(
                EVENT_LOGIN_UNAUTHORIZED, client_id=client_id, account_id=account.id, ip=ip, outcome=OUTCOME_FAIL
            )
            err = AuthorizationError()
            return Redirect(
                build_error_redirect_url(
                    interaction.request.redirect_uri, err.error, describe(err.error), interaction.request.state
                )
            )

        interaction.account_id = account.id
        interaction.result = {
            **interaction.result,
            "login": {"account_id": account.id, "ts": int(self._store.now().timestamp())},
        }
        self._save(interaction)
        self._audit.record(EVENT_LOGIN_OK, client_id=client_id, account_id=account.id, ip=ip)
        return Redirect(interaction.return_to)

    def submit_consent(self, uid: str, *, ip: str | None = None) -> Redirect:
        interaction = self.load_pending(uid)
        prompt = interaction.prompt
        if not isinstance(prompt, ConsentPrompt):
            raise InvalidRequest("consent is not the current prompt")
        if not interaction.account_id:
            raise InvalidRequest("login is required before consent")
        request = interaction.request

        if interaction.grant_id:
            grant = self._grants.find(interaction.grant_id)
            if grant is None:
                raise InvalidGrant("grant not found")
            if grant.account_id != interaction.account_id or grant.client_id != request.client_id:
                raise InvalidGrant("grant does not belong to this account and client")
        else:
            grant = Grant(account_id=interaction.account_id, client_id=request.client_id)

        grant.add_oidc_scope(request.oidc_scopes)
        grant.add_oidc_scope(prompt.missing_oidc_scopes)
        grant.add_oidc_claims(prompt.missing_oidc_claims)
        for indicator, scopes in prompt.missing_resource_scopes.items():
            grant.add_resource_scope(indicator, scopes)
        grant_id = self._grants.save(grant)

        interaction.grant_id = grant_id
        interaction.result = {**interaction.result, "consent": {"grant_id": grant_id}}
        self._save(interaction)
        self._audit.record(EVENT_CONSENT_ALLOW, client_id=request.client_id, account_id=grant.account_id, ip=ip)
        return Redirect(interaction.return_to)

    def cancel(self, uid: str, *, ip: str | None = None) -> Redirect:
        interaction = self.load_pending(uid)
        self.finish(interaction, InteractionState.CANCELLED)
        request = interaction.request
        self._audit.record(EVENT_CANCEL, client_id=request.client_id, account_id=interaction.account_id, ip=ip)
        return Redirect(build_error_redirect_url(request.redirect_uri, "access_denied", state=request.state))

    def fail(self, uid: str, error: BaseException, *, ip: str | None = None) -> Redirect | None:
        """
        Turn an unexpected failure into an OAuth error redirect for the client.
        Returns None when there is no pending interaction to take redirect_uri/state from.
        """
        try:
            interaction = self.load(uid)
        except OPError:
            return None
        if not interaction.is_pending:
            return None
        self.finish(interaction, InteractionState.ERRORED)
        classification = classify(error)
        request = interaction.request
        self._audit.record(
            EVENT_INTERACTION_ERROR,
            client_id=request.client_id,
            account_id=interaction.account_id,
            ip=ip,
            outcome=OUTCOME_FAIL,
            detail=classification.error,
        )
        return Redirect(
            build_error_redirect_url(
                request.redirect_uri, classification.error, classification.description, request.state
            )
        )

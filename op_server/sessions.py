"""
Browser sessions: who is logged in at this user agent, and which grant each client got.
"""
import logging
from dataclasses import dataclass, field

from fastapi import Response

from op_server.config import SESSION_COOKIE, Settings
from op_server.storage import RecordStore, new_id

logger = logging.getLogger(__name__)

KIND = "Session"


@dataclass
class BrowserSession:
    id: str
    account_id: str
    login_ts: int
    authorizations: dict[str, str] = field(default_factory=dict)

    def grant_id_for(self, client_id: str) -> str | None:
        return self.authorizations.get(client_id)


class SessionManager:
    def __init__(self, store: RecordStore, ttl: int):
        self._store = store
        self._ttl = ttl

    def load(self, session_id: str | None) -> BrowserSession | None:
        payload = self._store.find(KIND, session_id)
        if payload is None:
            return None
        return BrowserSession(
            id=session_id,
            account_id=payload["account_id"],
            login_ts=payload["login_ts"],
            authorizations=dict(payload.get("authorizations", {})),
        )

    def _save(self, session: BrowserSession) -> BrowserSession:
        payload = {
            "account_id": session.account_id,
            "login_ts": session.login_ts,
            "authorizations": session.authorizations,
        }
        self._store.save(KIND, payload, self._ttl, record_id=session.id)
        return session

    def login(self, session: BrowserSession | None, account_id: str, login_ts: int) -> BrowserSession:
        """Same account keeps its session and grants; a different account starts a fresh one."""
        if session is not None and session.account_id == account_id:
            session.login_ts = login_ts
            return self._save(session)
        if session is not None:
            self.destroy(session.id)
        logger.debug("New browser session for account_id=%s", account_id)
        return self._save(BrowserSession(id=new_id(), account_id=account_id, login_ts=login_ts))

    def remember_grant(self, session: BrowserSession, client_id: str, grant_id: str) -> BrowserSession:
        session.authorizations[client_id] = grant_id
        return self._save(session)

    def destroy(self, session_id: str | None) -> None:
        if session_id:
            self._store.destroy(KIND, session_id)


def set_session_cookie(response: Response, session: BrowserSession, settings: Settings) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session.id,
        max_age=settings.ttl.session,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(SESSION_COOKIE, httponly=True, samesite="lax", secure=settings.cookie_secure)

"""
Audit logging. Security-relevant events only; no tokens, passwords, or full request bodies.
The token endpoint reports issuance to TokenIssuanceObserver instances; the default one
writes an audit event.
"""
import logging
from dataclasses import dataclass
from typing import Protocol

from fastapi import Request
from sqlalchemy.orm import Session

from op_server.database import Database
from op_server.models import AuditLog

logger = logging.getLogger(__name__)

EVENT_LOGIN_OK = "login_ok"
EVENT_LOGIN_FAIL = "login_fail"
EVENT_LOGIN_UNAUTHORIZED = "login_unauthorized"
EVENT_CONSENT_ALLOW = "consent_allow"
EVENT_CANCEL = "interaction_cancel"
EVENT_INTERACTION_ERROR = "interaction_error"
EVENT_CODE_ISSUED = "code_issued"
EVENT_CODE_REPLAY = "code_replay"
EVENT_TOKEN_ISSUED = "token_issued"
EVENT_TOKEN_REFRESHED = "token_refreshed"
EVENT_LOGOUT = "logout"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    """Client IP if available (request.client.host). Forwarding headers are not trusted."""
    if request is None or request.client is None:
        return None
    return getattr(request.client, "host", None)


def log_audit(
    db: Session,
    event_type: str,
    *,
    client_id: str | None = None,
    account_id: str | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
    detail: str | None = None,
) -> None:
    """Append one audit record. Never log tokens or passwords."""
    db.add(
        AuditLog(
            event_type=event_type,
            client_id=client_id,
            account_id=account_id,
            ip=ip,
            outcome=outcome,
            detail=detail,
        )
    )
    db.commit()


def query_audit_logs(
    db: Session,
    *,
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
) -> list[dict]:
    """Query audit logs with optional filters. Most recent first."""
    q = db.query(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if event_type:
        q = q.filter(AuditLog.event_type == event_type)
    if outcome:
        q = q.filter(AuditLog.outcome == outcome)
    if client_id:
        q = q.filter(AuditLog.client_id == client_id)
    rows = q.limit(min(limit, 500)).all()
    return [
        {
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "event_type": r.event_type,
            "client_id": r.client_id,
            "account_id": r.account_id,
            "ip": r.ip,
            "outcome": r.outcome,
            "detail": r.detail,
        }
        for r in rows
    ]


class AuditTrail:
    """Binds log_audit/query_audit_logs to the provider's database."""

    def __init__(self, database: Database):
        self._db = database

    def record(self, event_type: str, **fields) -> None:
        with self._db.session() as db:
            log_audit(db, event_type, **fields)

    def recent(self, **filters) -> list[dict]:
        with self._db.session() as db:
            return query_audit_logs(db, **filters)


@dataclass(frozen=True)
class IssuedTokens:
    """What was issued at the token endpoint. Token values are deliberately absent."""

    grant_type: str
    client_id: str
    account_id: str
    scope: str
    access_token_format: str
    audience: str | None
    id_token_issued: bool
    refresh_token_issued: bool
    ip: str | None = None


class TokenIssuanceObserver(Protocol):
    def token_issued(self, event: IssuedTokens) -> None: ...


class AuditTokenObserver:
    def __init__(self, audit: AuditTrail):
        self._audit = audit

    def token_issued(self, event: IssuedTokens) -> None:
        event_type = EVENT_TOKEN_REFRESHED if event.grant_type == "refresh_token" else EVENT_TOKEN_ISSUED
        detail = f"format={event.access_token_format} refresh={'yes' if event.refresh_token_issued else 'no'}"
        self._audit.record(
            event_type,
            client_id=event.client_id,
            account_id=event.account_id,
            ip=event.ip,
            detail=detail,
        )
        logger.info(
            "Issued %s access token to client_id=%s (aud=%s, scope=%s, id_token=%s, refresh_token=%s)",
            event.access_token_format,
            event.client_id,
            event.audience,
            event.scope,
            event.id_token_issued,
            event.refresh_token_issued,
        )

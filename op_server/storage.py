"""
TTL-bound record store for protocol state (interactions, sessions, grants, codes, tokens).
The state machine only sees find/save/destroy/consume, so the backend can be swapped by URL.
"""
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete

from op_server.database import Database
from op_server.models import StoredRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Opaque, URL-safe identifier ([A-Za-z0-9_-])."""
    return secrets.token_urlsafe(32)


def _aware(value: datetime) -> datetime:
    # SQLite returns naive datetimes; everything is stored in UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class RecordStore:
    def __init__(self, database: Database, clock: Clock = utc_now):
        self._db = database
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def find(self, kind: str, record_id: str | None) -> dict | None:
        """Return the payload, or None if unknown, expired or already consumed."""
        if not record_id:
            return None
        with self._db.session() as db:
            row = db.get(StoredRecord, (kind, record_id))
            if row is None or self._expired(row) or row.consumed_at is not None:
                return None
            return dict(row.payload)

    def save(
        self,
        kind: str,
        payload: dict,
        ttl: int,
        record_id: str | None = None,
        grant_id: str | None = None,
    ) -> str:
        """Insert or replace a record; returns its id."""
        record_id = record_id or new_id()
        expires_at = self._clock() + timedelta(seconds=ttl)
        with self._db.session() as db:
            row = db.get(StoredRecord, (kind, record_id))
            if row is None:
                row = StoredRecord(kind=kind, id=record_id)
                db.add(row)
            row.payload = dict(payload)
            row.grant_id = grant_id
            row.expires_at = expires_at.replace(tzinfo=None)
            row.consumed_at = None
            db.commit()
        return record_id

    def update(self, kind: str, record_id: str, payload: dict) -> bool:
        """Replace the payload of an existing record, keeping its expiry. False if there is no such record."""
        with self._db.session() as db:
            row = db.get(StoredRecord, (kind, record_id))
            if row is None:
                return False
            row.payload = dict(payload)
            db.commit()
            return True

    def destroy(self, kind: str, record_id: str) -> None:
        with self._db.session() as db:
            db.execute(delete(StoredRecord).where(StoredRecord.kind == kind, StoredRecord.id == record_id))
            db.commit()

    def consume(self, kind: str, record_id: str | None) -> tuple[dict | None, bool]:
        """
        Mark a single-use record as consumed. Returns (payload, replayed):
        payload is None if unknown or expired; replayed is True if it was consumed before.
        """
        if not record_id:
            return None, False
        with self._db.session() as db:
            row = db.get(StoredRecord, (kind, record_id))
            if row is None or self._expired(row):
                return None, False
            payload = dict(row.payload)
            if row.consumed_at is not None:
                return payload, True
            row.consumed_at = self._clock().replace(tzinfo=None)
            db.commit()
            return payload, False

    def revoke_by_grant(self, grant_id: str) -> int:
        """Delete every record tied to a grant (codes, tokens). Returns the number removed."""
        with self._db.session() as db:
            result = db.execute(delete(StoredRecord).where(StoredRecord.grant_id == grant_id))
            db.commit()
            return result.rowcount or 0

    def _expired(self, row: StoredRecord) -> bool:
        return _aware(row.expires_at) <= self._clock()

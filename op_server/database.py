"""
Database engine and sessions. In-memory SQLite by default (ephemeral per process).
"""
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from op_server.models import Base


class Database:
    def __init__(self, url: str):
        self.url = url
        # SQLite: in-memory needs StaticPool so all connections share the same DB
        # File-based SQLite needs check_same_thread=False for FastAPI
        if url in ("sqlite://", "sqlite:///:memory:"):
            self.engine = create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
            self.engine = create_engine(url, connect_args=connect_args)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init(self) -> None:
        """Create all tables."""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()

"""SQLite SQLAlchemy store wrapper."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from memory.errors import PersistenceError
from memory.schemas import Base


class SQLStore:
    """Provides SQLAlchemy session management for SQLite persistence."""

    def __init__(self, db_path: Path | None = None, engine: Engine | None = None) -> None:
        self.db_path = db_path
        if engine is None:
            if db_path is None:
                raise ValueError("SQLStore needs a db_path or an engine")
            db_path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(f"sqlite+pysqlite:///{db_path}", future=True)
        self.engine = engine
        self._session_factory = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)

    @classmethod
    def in_memory(cls) -> SQLStore:
        """Single-connection in-memory database, mostly for tests."""
        engine = create_engine(
            "sqlite+pysqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        store = cls(engine=engine)
        store.create_all()
        return store

    def create_all(self) -> None:
        """Create all schema tables if missing."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not create schema: {exc}") from exc

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager that commits on success and rolls back on error.

        Database failures surface as PersistenceError; anything else raised
        inside the block propagates unchanged after rollback.
        """
        sess = self._session_factory()
        try:
            yield sess
            sess.commit()
        except SQLAlchemyError as exc:
            sess.rollback()
            raise PersistenceError(str(exc)) from exc
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()

"""Durable key-value session store with repository abstractions."""

from __future__ import annotations

from datetime import UTC, datetime
from threading import Lock
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .database import get_session_factory, is_database_configured
from .db_models import SessionEntryModel
from .utils import logger

AUTH_TOKEN_KEY = "authToken"
BYPASS_START_KEY = "pinBypassTime"
FAILED_ATTEMPTS_KEY = "failedAttempts"
LOCKED_UNTIL_KEY = "lockedUntil"


class SessionStore(Protocol):
    """Port for opaque string values that outlive the process."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemorySessionStore(SessionStore):
    """Store that lives only as long as the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._lock = Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)


class SQLAlchemySessionStore(SessionStore):
    """Store backed by a SQL table, durable across restarts."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> str | None:
        with self._session_factory() as session:
            row = session.get(SessionEntryModel, key)
            return row.value if row is not None else None

    def set(self, key: str, value: str) -> None:
        updated_at = datetime.now(tz=UTC).isoformat()
        with self._session_factory() as session:
            instance = session.get(SessionEntryModel, key)
            if instance is None:
                session.add(
                    SessionEntryModel(key=key, value=value, updated_at=updated_at)
                )
            else:
                instance.value = value
                instance.updated_at = updated_at
            session.commit()

    def delete(self, key: str) -> None:
        with self._session_factory() as session:
            session.execute(delete(SessionEntryModel).where(SessionEntryModel.key == key))
            session.commit()

    def keys(self) -> list[str]:
        with self._session_factory() as session:
            return list(session.execute(select(SessionEntryModel.key)).scalars().all())


_DEFAULT_STORE = InMemorySessionStore()
_SQL_STORE: SQLAlchemySessionStore | None = None


def get_session_store() -> SessionStore:
    """Return the configured session store."""
    global _SQL_STORE
    try:
        if not is_database_configured():
            return _DEFAULT_STORE
        if _SQL_STORE is None:
            _SQL_STORE = SQLAlchemySessionStore(get_session_factory())
        return _SQL_STORE
    except (RuntimeError, OSError, OperationalError) as exc:
        logger.warning("Durable session store unavailable; using in-memory store: {}", exc)
        return _DEFAULT_STORE


__all__ = [
    "AUTH_TOKEN_KEY",
    "BYPASS_START_KEY",
    "FAILED_ATTEMPTS_KEY",
    "LOCKED_UNTIL_KEY",
    "SessionStore",
    "InMemorySessionStore",
    "SQLAlchemySessionStore",
    "get_session_store",
]

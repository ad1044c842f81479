"""Engine and session wiring for the durable session store."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from .db_models import Base

DEFAULT_DB_PATH = Path.home() / ".devicewatch" / "session.db"

StoreMode = Literal["memory", "database", "auto"]


class DatabaseSettings(BaseModel):
    """Where session state is kept, read from ``DEVICEWATCH_DB_*``."""

    url: str = Field(default=f"sqlite:///{DEFAULT_DB_PATH}")
    echo: bool = False
    mode: StoreMode = "database"

    @classmethod
    def from_env(cls) -> DatabaseSettings:
        values: dict[str, object] = {
            "echo": os.getenv("DEVICEWATCH_DB_ECHO", "false").strip().lower()
            in {"1", "true", "yes", "on"},
            "mode": os.getenv("DEVICEWATCH_DB_MODE", "database").strip().lower(),
        }
        if values["mode"] not in {"memory", "database", "auto"}:
            raise RuntimeError(
                "DEVICEWATCH_DB_MODE must be one of memory, database, auto; "
                f"got {values['mode']!r}."
            )
        url = os.getenv("DEVICEWATCH_DB_URL", "").strip()
        if url:
            values["url"] = url
        return cls.model_validate(values)

    @property
    def durable(self) -> bool:
        return self.mode != "memory"


@lru_cache
def get_database_settings() -> DatabaseSettings:
    return DatabaseSettings.from_env()


def is_database_configured() -> bool:
    """Return True when session state should go to the SQL store."""
    return get_database_settings().durable


def create_store_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``url`` with the session store schema in place.

    SQLite database files get their parent directory created first.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, echo=echo, future=True)
    Base.metadata.create_all(engine)
    return engine


@lru_cache
def _session_factory_for(url: str, echo: bool) -> sessionmaker[Session]:
    engine = create_store_engine(url, echo=echo)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


def get_session_factory() -> sessionmaker[Session]:
    """Return the shared session factory for the configured store database.

    Raises ``RuntimeError`` when the environment selects the in-memory store.
    """
    settings = get_database_settings()
    if not settings.durable:
        raise RuntimeError(
            "Durable session storage is disabled (DEVICEWATCH_DB_MODE=memory)."
        )
    return _session_factory_for(settings.url, settings.echo)


__all__ = [
    "DEFAULT_DB_PATH",
    "DatabaseSettings",
    "StoreMode",
    "get_database_settings",
    "is_database_configured",
    "create_store_engine",
    "get_session_factory",
]

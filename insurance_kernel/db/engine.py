"""
Engine and session management for the legacy worksheet database.

One engine per process.  ``init_engine_from_url`` must run before any
selector opens a session; until then every accessor raises RuntimeError.
Driver errors propagate unchanged and are wrapped in SourceError by the
selectors.
"""

import atexit
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from insurance_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


class _EngineState:
    engine: Engine | None = None
    sessions: sessionmaker[Session] | None = None


_state = _EngineState()


def _is_shared_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and ":memory:" in url


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_pre_ping: bool = True,
) -> Engine:
    """
    Build the process engine and its session factory, replacing any
    previous one.

    In-memory SQLite is pinned to a single connection so all sessions share
    one database.
    """
    reset_engine()

    if _is_shared_memory_sqlite(database_url):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(database_url, echo=echo, pool_pre_ping=pool_pre_ping)

    _state.engine = engine
    _state.sessions = sessionmaker(bind=engine, expire_on_commit=False)
    logger.info("engine_initialized", extra={"dialect": engine.dialect.name, "echo": echo})
    return engine


def get_engine() -> Engine:
    if _state.engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _state.engine


def get_session_factory() -> sessionmaker[Session]:
    if _state.sessions is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _state.sessions


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on any error."""
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the legacy tables (test and dry-run databases only)."""
    from insurance_kernel.db.base import Base
    import insurance_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def reset_engine() -> None:
    if _state.engine is not None:
        _state.engine.dispose()
    _state.engine = None
    _state.sessions = None


atexit.register(reset_engine)

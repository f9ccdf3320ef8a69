"""
Database infrastructure for the legacy worksheet source.

    base.py     Declarative base (Decimal -> Numeric(38, 9))
    engine.py   Engine init, session factory, session_scope
"""

from insurance_kernel.db.base import Base
from insurance_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]

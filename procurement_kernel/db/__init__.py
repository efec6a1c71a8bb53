"""Database plumbing: declarative base, column types, engine and sessions."""

from procurement_kernel.db.base import Base, ExactDecimal, TrackedBase, UUIDString
from procurement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
    translate_store_errors,
)

__all__ = [
    "Base",
    "ExactDecimal",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
    "translate_store_errors",
]

"""Database layer - engine, base classes and session scope."""

from certify_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from certify_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    session_scope,
)

__all__ = [
    "build_engine",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]

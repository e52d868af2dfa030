"""Database layer - engine and base classes."""

from hoa_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from hoa_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]

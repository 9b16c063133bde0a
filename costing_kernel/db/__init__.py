"""Database layer - engine, base classes, column types and write guards."""

from costing_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from costing_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from costing_kernel.db.guards import (
    engine_write_scope,
    register_write_guards,
    unregister_write_guards,
)
from costing_kernel.db.types import DecimalAmount, round_money

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "init_engine_from_url",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "DecimalAmount",
    "round_money",
    "engine_write_scope",
    "register_write_guards",
    "unregister_write_guards",
]

"""Database infrastructure module."""

from p2p_approvals.infrastructure.database.schema import (
    find_schema_mismatches,
    verify_schema,
)
from p2p_approvals.infrastructure.database.session import (
    AsyncSessionLocal,
    async_engine,
    get_async_db,
)

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "get_async_db",
    "find_schema_mismatches",
    "verify_schema",
]

"""Database layer - engine, base classes, column types, immutability."""

from approval_kernel.db.base import UUID, Base, UUIDString
from approval_kernel.db.engine import create_tables, get_engine, get_session
from approval_kernel.db.types import JSONDocument, UTCDateTime

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "UUIDString",
    "UUID",
    "JSONDocument",
    "UTCDateTime",
]

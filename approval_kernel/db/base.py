"""
Module: approval_kernel.db.base
Responsibility: Declarative base for the approval tables.  Provides the UUID
    primary key convention and the type annotation map that keeps column
    types identical on PostgreSQL and SQLite.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, services/, selectors/, domain/,
    or outer layers.

Invariants enforced:
    - Request, action and purge-record ids are uuid4 values stored in
      canonical lowercase text form, so ids compare equal in SQL on every
      backend and in the hash chain.
    - datetime maps to UTCDateTime: timestamps come back timezone-aware UTC.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from approval_kernel.db.types import UTCDateTime


class UUIDString(TypeDecorator):
    """
    UUID stored as String(36).

    Accepts ``uuid.UUID`` or any string ``uuid.UUID()`` parses; binds the
    canonical hyphenated lowercase form and always loads ``uuid.UUID``.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, PyUUID):
            value = PyUUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        return PyUUID(value) if value is not None else None


class Base(DeclarativeBase):
    """
    Declarative base for approval models.

    Guarantees:
        - ``id`` defaults to uuid4() and is stored through UUIDString.
        - ``Mapped[datetime]`` columns use UTCDateTime, ``Mapped[int]`` BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


UUID = PyUUID

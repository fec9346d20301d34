"""
Module: approval_kernel.db.types
Responsibility: Column types and annotated aliases shared by every approval
    model, so that timestamps, hashes and opaque documents are stored the same
    way on PostgreSQL (production) and SQLite (development, tests).
Architecture position: Kernel > DB.  May be imported by models/ and
    services/.  MUST NOT import from models/, services/, selectors/, domain/.

Invariants enforced:
    - Timestamps are stored in UTC and always returned timezone-aware.
      SQLite has no timezone support, so naive values read back are tagged
      as UTC.
    - Opaque payload documents are stored verbatim: JSONB on PostgreSQL,
      JSON text on SQLite.  A Python ``None`` is stored as SQL NULL, never
      as the JSON literal ``null``.

Failure modes:
    - ValueError if a naive datetime is bound (every clock in the kernel
      produces aware datetimes).
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime normalized to UTC on the way in and out."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            # SQLite stores the wall-clock string; keep it in UTC.
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# Opaque structured document (JSONB on PostgreSQL)
JSONDocument = JSON(none_as_null=True).with_variant(
    JSONB(none_as_null=True), "postgresql"
)

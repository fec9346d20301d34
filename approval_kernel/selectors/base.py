"""
Module: approval_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors, the "Q"
    side of the kernel.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - Fresh reads: a selector often shares its session with an
      ApprovalManager, so every ORM query overwrites identity-map state
      with the row as stored (``populate_existing``).
    - DTO return convention: selectors return frozen dataclasses, never ORM
      instances.
"""

from abc import ABC
from typing import Any, Generic, TypeVar

from sqlalchemy import Executable, Result
from sqlalchemy.orm import Session

from approval_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries through ``_read()``, and return DTOs.
    """

    def __init__(self, session: Session):
        self.session = session

    def _read(self, stmt: Executable, **options: Any) -> Result[Any]:
        """Execute ``stmt`` refreshing any already-loaded instances."""
        return self.session.execute(
            stmt.execution_options(populate_existing=True, **options)
        )

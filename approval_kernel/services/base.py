"""
BaseService -- abstract base for kernel services that write approval state.

Responsibility:
    Holds the caller's session and provides ``savepoint()``, the unit in
    which a request mutation and its action row are flushed together.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Services flush and never commit.  The caller (ApprovalOrchestrator, a
    session_scope() block, or a test harness) owns commit/rollback.
    A failed savepoint is rolled back before the exception leaves it, so
    handlers may re-query the session to classify the failure.
"""

from abc import ABC
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base
from approval_kernel.logging_config import get_logger

logger = get_logger("services.base")

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and persists changes
        with ``session.flush()`` inside the active transaction.

    Non-goals:
        - Does NOT manage the outer transaction (commit/rollback).
        - Does NOT provide read projections -- those belong in selectors/.
    """

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def savepoint(self) -> Iterator[Session]:
        """Flush the block's work inside a SAVEPOINT; roll it back on any error."""
        try:
            with self.session.begin_nested():
                yield self.session
        except Exception as exc:
            logger.debug(
                "savepoint_rolled_back",
                extra={"service": type(self).__name__, "error": type(exc).__name__},
            )
            raise

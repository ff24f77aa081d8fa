"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service in the kernel layer.  Kernel services persist with
    ``session.flush()`` and never call ``session.commit()``; the caller
    (a module service, the scheduler, a script, or a test) owns the
    transaction boundary, so several kernel calls compose atomically.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.  Partial failure inside one operation is
          undone with a SAVEPOINT (``session.begin_nested()``).

    Non-goals:
        - Does NOT provide query-only methods; those belong in
          ``ledger_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

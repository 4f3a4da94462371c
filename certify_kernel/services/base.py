"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services inherit
    from BaseService, receiving a SQLAlchemy ``Session`` that they use
    via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The caller (CertifyKernel or
    a test harness) owns commit/rollback, so a lot and all of its units,
    or a transfer and all of its reassignments, land together or not at all.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from certify_kernel.db.base import Base
from certify_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only (read) projections -- those belong
          in ``certify_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()

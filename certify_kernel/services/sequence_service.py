"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly monotonically increasing sequence numbers for unit
    virtual codes and per-manufacturer lot serials.  Uses a dedicated
    counter table with row-level locking (``SELECT ... FOR UPDATE``) to
    guarantee uniqueness and ordering under concurrent allocation.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by LotAllocator.

Invariants enforced:
    - Monotonicity: the SQL aggregate-max-plus-one anti-pattern is
      FORBIDDEN -- the locked counter row is the sole source of truth for
      the next value, so two concurrent lots can never mint the same code.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the values.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).

Audit relevance:
    Allocation is logged at DEBUG level with sequence_name and the
    allocated range.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from certify_kernel.logging_config import get_logger
from certify_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value, or a contiguous block of values.

    Guarantees:
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations for
          the same sequence.
        - A block of ``count`` values is contiguous and never overlaps
          another block.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    VIRTUAL_CODE = "virtual_code"
    LEDGER_EVENT = "ledger_event"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def lot_serial_name(manufacturer_id: UUID) -> str:
        return f"lot:{manufacturer_id}"

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_block(self, sequence_name: str, count: int) -> range:
        """
        Reserve ``count`` consecutive values.

        Preconditions:
            - ``count`` >= 1.
            - The caller is within an active database transaction.

        Postconditions:
            - Every returned value is strictly greater than any value
              previously returned for this sequence name.
            - The counter row is locked until the transaction completes.

        Returns:
            ``range(first, first + count)``.
        """
        if count < 1:
            raise ValueError(f"count must be >= 1, got {count}")

        counter = self._lock_counter(sequence_name)

        if counter is None:
            # First use of this sequence; another transaction may race us.
            # A savepoint keeps the rest of the caller's work intact.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=count)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "first": 1, "count": count},
                )
                return range(1, count + 1)
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._lock_counter(sequence_name)
                if counter is None:
                    raise

        first = counter.current_value + 1
        counter.current_value += count
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "first": first, "count": count},
        )
        return range(first, first + count)

    def next_value(self, sequence_name: str) -> int:
        """Get the next value for a named sequence (always > 0)."""
        return self.next_block(sequence_name, 1)[0]

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

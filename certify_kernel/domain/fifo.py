"""
FIFO unit selection -- pure, deterministic allocation of units.

Responsibility:
    Given the InStock units an organization owns for a product, choose which
    ``quantity`` units leave first.  Oldest production date first, then unit
    creation order (the global virtual-code sequence).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Services load
    candidates with a locking read and hand them here; the storage query's
    own ORDER BY is never trusted as the policy.

Invariants enforced:
    - Determinism: the same candidate set, in any input order, yields the
      same selection in the same order.
    - All-or-nothing: a selection is either exactly ``quantity`` long or
      reported as insufficient with nothing chosen.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from uuid import UUID


@dataclass(frozen=True)
class UnitCandidate:
    """A selectable InStock unit, flattened from the ledger."""

    unit_id: UUID
    code: str
    lot_id: UUID
    production_date: date
    serial: int


@dataclass(frozen=True)
class FifoSelection:
    """Outcome of a FIFO pick."""

    requested: int
    available: int
    selected: tuple[UnitCandidate, ...] = ()

    @property
    def is_sufficient(self) -> bool:
        return self.available >= self.requested

    @property
    def unit_ids(self) -> tuple[UUID, ...]:
        return tuple(c.unit_id for c in self.selected)


def fifo_key(candidate: UnitCandidate) -> tuple[date, int, str]:
    """Sort key: production date, then creation order, then code."""
    return (candidate.production_date, candidate.serial, candidate.code)


def order_fifo(candidates: Iterable[UnitCandidate]) -> list[UnitCandidate]:
    return sorted(candidates, key=fifo_key)


def select_fifo(candidates: Iterable[UnitCandidate], quantity: int) -> FifoSelection:
    """
    Pick the first ``quantity`` units in FIFO order.

    Preconditions:
        - ``quantity`` >= 1.

    Returns:
        FifoSelection.  When ``available < quantity`` nothing is selected.

    Raises:
        ValueError: If quantity is less than 1.
    """
    if quantity < 1:
        raise ValueError(f"quantity must be >= 1, got {quantity}")

    ordered = order_fifo(candidates)
    if len(ordered) < quantity:
        return FifoSelection(requested=quantity, available=len(ordered))

    return FifoSelection(
        requested=quantity,
        available=len(ordered),
        selected=tuple(ordered[:quantity]),
    )

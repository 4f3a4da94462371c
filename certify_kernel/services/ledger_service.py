"""
UnitLedger -- the authoritative record of every unit's owner and state.

Responsibility:
    Locking reads of units, FIFO allocation, and the only code paths that
    change ``Unit.owner_id`` or ``Unit.state``.  Also verifies the two
    ledger invariants on demand: per-lot conservation and ownership
    provenance.

Architecture position:
    Kernel > Services -- imperative shell.  Used by LotAllocator,
    TransferEngine, ConsumptionEngine and RecallService.  Delegates the
    choice of units to the pure ``domain.fifo`` selector.

Invariants enforced:
    - Locking read before mutation: candidate units are read with
      ``SELECT ... FOR UPDATE`` so two concurrent transactions can never
      select the same InStock unit.
    - Optimistic lock: ``Unit.version_id`` turns a lost race that slips
      past the row lock (e.g. on SQLite) into StaleDataError.
    - All-or-nothing: allocation raises before touching any row when the
      owner holds fewer units than requested.
    - Conservation: units per lot == lot quantity, always.
    - Provenance: replaying transfers and returns in ledger order from the
      producing manufacturer ends at the unit's current owner.

Failure modes:
    - InsufficientInventoryError: requested > available.
    - ConservationViolationError / ProvenanceViolationError: internal
      invariant broken (programming error, never a business result).

Audit relevance:
    Every mutation is logged with the affected unit count and owner ids.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import func, select

from certify_kernel.domain.enums import TransferStatus, UnitState
from certify_kernel.domain.fifo import UnitCandidate, select_fifo
from certify_kernel.exceptions import (
    ConservationViolationError,
    InsufficientInventoryError,
    InvariantViolationError,
    LotNotFoundError,
)
from certify_kernel.logging_config import get_logger
from certify_kernel.models.lot import Lot
from certify_kernel.models.transfer import TransferEvent, TransferUnit
from certify_kernel.models.unit import Unit
from certify_kernel.services.base import BaseService

logger = get_logger("services.ledger")


class ProvenanceViolationError(InvariantViolationError):
    code: str = "PROVENANCE_VIOLATION"

    def __init__(self, unit_id: UUID, expected_owner: UUID, actual_owner: UUID):
        self.unit_id = unit_id
        self.expected_owner = expected_owner
        self.actual_owner = actual_owner
        super().__init__(
            f"Unit {unit_id} is owned by {actual_owner} but its transfer "
            f"chain ends at {expected_owner}"
        )


class UnitLedger(BaseService[Unit]):
    """
    Read/mutate access to units.

    Contract:
        Every method runs inside the caller's transaction and only
        flushes.

    Guarantees:
        - ``allocate`` returns exactly ``quantity`` locked InStock units in
          FIFO order or raises without mutating.
        - ``reassign``/``mark_*``/``restore`` refuse units in the wrong
          state with an InvariantViolationError.
    """

    # =========================================================================
    # Locking reads
    # =========================================================================

    def lock_available(
        self,
        owner_id: UUID,
        product_id: UUID,
        lot_id: UUID | None = None,
    ) -> tuple[list[UnitCandidate], dict[UUID, Unit]]:
        """
        Lock every InStock unit the owner holds for the product.

        Returns:
            (candidates, units_by_id).  Candidates carry the lot's
            production date for the FIFO key.
        """
        stmt = (
            select(Unit, Lot.production_date)
            .join(Lot, Unit.lot_id == Lot.id)
            .where(
                Unit.owner_id == owner_id,
                Unit.product_id == product_id,
                Unit.state == UnitState.IN_STOCK,
            )
            .order_by(Lot.production_date, Unit.serial)
            .with_for_update(of=Unit)
            .execution_options(populate_existing=True)
        )
        if lot_id is not None:
            stmt = stmt.where(Unit.lot_id == lot_id)

        candidates: list[UnitCandidate] = []
        units_by_id: dict[UUID, Unit] = {}
        for unit, production_date in self.session.execute(stmt).all():
            units_by_id[unit.id] = unit
            candidates.append(
                UnitCandidate(
                    unit_id=unit.id,
                    code=unit.code,
                    lot_id=unit.lot_id,
                    production_date=production_date,
                    serial=unit.serial,
                )
            )
        return candidates, units_by_id

    def allocate(
        self,
        owner_id: UUID,
        product_id: UUID,
        quantity: int,
        lot_id: UUID | None = None,
    ) -> list[Unit]:
        """
        Select and lock the next ``quantity`` units in FIFO order.

        Preconditions:
            - quantity >= 1 (validated by the caller).

        Raises:
            InsufficientInventoryError: Fewer InStock units than requested.
        """
        candidates, units_by_id = self.lock_available(owner_id, product_id, lot_id)
        selection = select_fifo(candidates, quantity)
        if not selection.is_sufficient:
            logger.info(
                "allocation_insufficient",
                extra={
                    "owner_id": str(owner_id),
                    "product_id": str(product_id),
                    "requested": quantity,
                    "available": selection.available,
                },
            )
            raise InsufficientInventoryError(
                owner_id=str(owner_id),
                product_id=str(product_id),
                requested=quantity,
                available=selection.available,
                lot_id=str(lot_id) if lot_id else None,
            )
        return [units_by_id[unit_id] for unit_id in selection.unit_ids]

    def lock_units(self, unit_ids: Sequence[UUID]) -> list[Unit]:
        """Lock a specific unit set, returned in creation order."""
        if not unit_ids:
            return []
        return list(
            self.session.execute(
                select(Unit)
                .where(Unit.id.in_(list(unit_ids)))
                .order_by(Unit.serial)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    def _require_state(self, units: Sequence[Unit], state: UnitState) -> None:
        wrong = [u.code for u in units if u.state != state]
        if wrong:
            raise InvariantViolationError(
                f"{len(wrong)} unit(s) not in state {state.value}: {wrong[:5]}"
            )

    def reassign(self, units: Sequence[Unit], new_owner_id: UUID) -> None:
        self._require_state(units, UnitState.IN_STOCK)
        for unit in units:
            unit.owner_id = new_owner_id
        self.session.flush()
        logger.debug(
            "units_reassigned",
            extra={"count": len(units), "new_owner_id": str(new_owner_id)},
        )

    def mark_consumed(self, units: Sequence[Unit]) -> None:
        self._set_terminal(units, UnitState.CONSUMED)

    def mark_disposed(self, units: Sequence[Unit]) -> None:
        self._set_terminal(units, UnitState.DISPOSED)

    def _set_terminal(self, units: Sequence[Unit], state: UnitState) -> None:
        self._require_state(units, UnitState.IN_STOCK)
        for unit in units:
            unit.state = state
        self.session.flush()
        logger.debug("units_state_changed", extra={"count": len(units), "state": state.value})

    def restore(self, units: Sequence[Unit], owner_id: UUID) -> None:
        """Put consumed units back InStock under ``owner_id`` (treatment recall)."""
        self._require_state(units, UnitState.CONSUMED)
        for unit in units:
            unit.state = UnitState.IN_STOCK
            unit.owner_id = owner_id
        self.session.flush()
        logger.debug(
            "units_restored", extra={"count": len(units), "owner_id": str(owner_id)}
        )

    # =========================================================================
    # Queries and invariant checks
    # =========================================================================

    def owned_count(
        self,
        owner_id: UUID,
        product_id: UUID | None = None,
        lot_id: UUID | None = None,
        state: UnitState = UnitState.IN_STOCK,
    ) -> int:
        stmt = select(func.count(Unit.id)).where(
            Unit.owner_id == owner_id, Unit.state == state
        )
        if product_id is not None:
            stmt = stmt.where(Unit.product_id == product_id)
        if lot_id is not None:
            stmt = stmt.where(Unit.lot_id == lot_id)
        return self.session.execute(stmt).scalar_one()

    def unit_ids_for_lot(self, lot_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(Unit.id).where(Unit.lot_id == lot_id).order_by(Unit.serial)
            ).scalars()
        )

    def verify_conservation(self, lot_id: UUID) -> int:
        """
        Check that the lot still has exactly ``quantity`` units.

        Returns:
            The unit count.

        Raises:
            LotNotFoundError: Unknown lot.
            ConservationViolationError: Count differs from lot quantity.
        """
        lot = self.session.get(Lot, lot_id)
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        actual = self.session.execute(
            select(func.count(Unit.id)).where(Unit.lot_id == lot_id)
        ).scalar_one()
        if actual != lot.quantity:
            logger.error(
                "conservation_violated",
                extra={"lot_id": str(lot_id), "expected": lot.quantity, "actual": actual},
            )
            raise ConservationViolationError(str(lot_id), lot.quantity, actual)
        return actual

    def verify_provenance(self, unit_id: UUID) -> UUID:
        """
        Replay a unit's transfers and returns and confirm the current owner.

        Returns:
            The owner the replay ends at (equal to the unit's owner).

        Raises:
            ProvenanceViolationError: Replay does not match the ledger.
        """
        unit = self.session.get(Unit, unit_id)
        if unit is None:
            raise InvariantViolationError(f"Unit not found: {unit_id}")
        lot = self.session.get(Lot, unit.lot_id)

        transfers = self.session.execute(
            select(TransferEvent)
            .join(TransferUnit, TransferUnit.transfer_id == TransferEvent.id)
            .where(TransferUnit.unit_id == unit_id)
        ).scalars().all()

        moves: list[tuple[int, UUID, UUID]] = []
        for t in transfers:
            moves.append((t.sequence, t.source_org_id, t.dest_org_id))
            if t.status == TransferStatus.RETURNED:
                moves.append((t.return_sequence, t.dest_org_id, t.source_org_id))
        moves.sort(key=lambda m: m[0])

        owner = lot.manufacturer_id
        for _, source, dest in moves:
            if source != owner:
                raise ProvenanceViolationError(unit_id, owner, source)
            owner = dest
        if owner != unit.owner_id:
            raise ProvenanceViolationError(unit_id, owner, unit.owner_id)
        return owner

"""
TransferEngine -- shipments between organizations.

Responsibility:
    Moves ownership of ``quantity`` units of a product from a source
    organization to a destination, choosing the units FIFO, and appends
    the TransferEvent that records which units moved.

Architecture position:
    Kernel > Services -- imperative shell.  Pair rules come from the
    injected TransferPolicy; unit choice from UnitLedger.allocate.

Invariants enforced:
    - Both parties ACTIVE, distinct, and an allowed (source, destination)
      type pair.
    - Locking read, FIFO selection, reassignment and event append happen
      in one transaction; an InsufficientInventoryError mutates nothing.
    - The ledger event sequence is taken after the unit locks, so every
      operation acquires locks in the same order.

Audit relevance:
    ``transfer_completed`` is logged with both parties, quantity and the
    first/last unit code.
"""

from uuid import UUID

from certify_kernel.domain.dtos import TransferRecord
from certify_kernel.domain.enums import OrganizationType, TransferStatus
from certify_kernel.domain.rules import LedgerRules
from certify_kernel.exceptions import InvalidQuantityError
from certify_kernel.logging_config import get_logger
from certify_kernel.models.transfer import TransferEvent, TransferUnit
from certify_kernel.services.base import BaseService
from certify_kernel.services.ledger_service import UnitLedger
from certify_kernel.services.organization_service import OrganizationService
from certify_kernel.services.sequence_service import SequenceService

logger = get_logger("services.transfer")


class TransferEngine(BaseService[TransferEvent]):
    """
    Records shipments.

    Guarantees:
        - The returned record lists the moved unit codes in FIFO order.
        - After success every listed unit is owned by the destination.
    """

    def __init__(self, session, clock=None, rules: LedgerRules | None = None):
        super().__init__(session, clock)
        self.rules = rules or LedgerRules()
        self._organizations = OrganizationService(session, self.clock, self.rules)
        self._ledger = UnitLedger(session, self.clock)
        self._sequences = SequenceService(session)

    def transfer(
        self,
        source_org_id: UUID,
        dest_org_id: UUID,
        product_id: UUID,
        quantity: int,
        lot_id: UUID | None = None,
    ) -> TransferRecord:
        """
        Ship units from source to destination.

        Raises:
            InvalidQuantityError: quantity < 1.
            OrganizationNotFoundError / OrganizationInactiveError: party unusable.
            TransferNotAllowedError: self-transfer or disallowed type pair.
            ProductNotFoundError: unknown product.
            InsufficientInventoryError: source holds fewer units.
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)

        source = self._organizations.require_active(source_org_id)
        dest = self._organizations.require_active(dest_org_id)
        self.rules.transfer_policy.check(
            source.id,
            OrganizationType(source.org_type),
            dest.id,
            OrganizationType(dest.org_type),
        )
        self._organizations.get_product(product_id)

        units = self._ledger.allocate(source_org_id, product_id, quantity, lot_id)
        self._ledger.reassign(units, dest_org_id)

        event = TransferEvent(
            source_org_id=source_org_id,
            dest_org_id=dest_org_id,
            product_id=product_id,
            lot_id=lot_id,
            quantity=quantity,
            occurred_at=self.clock.now_utc(),
            status=TransferStatus.ACTIVE,
            sequence=self._sequences.next_value(SequenceService.LEDGER_EVENT),
        )
        event.unit_links = [
            TransferUnit(unit_id=unit.id, unit=unit, position=position)
            for position, unit in enumerate(units)
        ]
        self.session.add(event)
        self.session.flush()

        logger.info(
            "transfer_completed",
            extra={
                "event_id": str(event.id),
                "source_org_id": str(source_org_id),
                "dest_org_id": str(dest_org_id),
                "product_id": str(product_id),
                "quantity": quantity,
                "first_code": units[0].code,
                "last_code": units[-1].code,
            },
        )
        return TransferRecord.from_model(event)

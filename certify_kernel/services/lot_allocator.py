"""
LotAllocator -- production of a lot and all of its units.

Responsibility:
    Validates the manufacturer and product, assigns the lot number and
    expiry date from the manufacturer's settings, mints one virtual code
    per unit and records the lot and its units in a single flush.

Architecture position:
    Kernel > Services -- imperative shell.  Pure helpers for numbering and
    expiry live in ``domain.lot_numbering``; sequence values come from
    SequenceService.

Invariants enforced:
    - Conservation: exactly ``quantity`` units are inserted for the lot,
      verified by UnitLedger before returning.
    - Unique codes: codes come from the ``virtual_code`` counter row, never
      from ``MAX(code) + 1``.
    - Atomicity: any failure leaves neither the lot nor any unit behind
      (the caller rolls back).

Failure modes:
    - InvalidQuantityError: quantity outside 1..max_production_quantity.
    - OrganizationNotFoundError / OrganizationInactiveError /
      InvalidOrganizationTypeError: manufacturer unusable.
    - ProductNotFoundError / ProductNotOwnedError: product unusable.
    - InvalidSettingsError: the lot serial outgrew ``lot_model_digits``.
"""

from datetime import date
from uuid import UUID

from certify_kernel.domain.dtos import LotRecord
from certify_kernel.domain.enums import OrganizationType, UnitState
from certify_kernel.domain.lot_numbering import (
    compute_expiry_date,
    format_lot_number,
    format_virtual_code,
)
from certify_kernel.domain.rules import LedgerRules
from certify_kernel.exceptions import InvalidQuantityError, InvalidSettingsError
from certify_kernel.logging_config import get_logger
from certify_kernel.models.lot import Lot
from certify_kernel.models.unit import Unit
from certify_kernel.services.base import BaseService
from certify_kernel.services.ledger_service import UnitLedger
from certify_kernel.services.organization_service import OrganizationService
from certify_kernel.services.sequence_service import SequenceService

logger = get_logger("services.lot_allocator")

_MANUFACTURER_ONLY = frozenset({OrganizationType.MANUFACTURER})


class LotAllocator(BaseService[Lot]):
    """
    Creates lots.

    Contract:
        ``create_lot`` either inserts one Lot plus ``quantity`` InStock
        units owned by the manufacturer, or raises.

    Non-goals:
        - Lots are never edited or merged after creation.
    """

    def __init__(self, session, clock=None, rules: LedgerRules | None = None):
        super().__init__(session, clock)
        self.rules = rules or LedgerRules()
        self._organizations = OrganizationService(session, self.clock, self.rules)
        self._sequences = SequenceService(session)
        self._ledger = UnitLedger(session, self.clock)

    def create_lot(
        self,
        manufacturer_id: UUID,
        product_id: UUID,
        quantity: int,
        production_date: date,
    ) -> LotRecord:
        """
        Produce a lot.

        Postconditions:
            - ``lot.quantity == quantity`` and the lot has exactly that many
              units, all IN_STOCK and owned by ``manufacturer_id``.
            - Unit codes are in creation order; FIFO uses the same order.
        """
        if not 1 <= quantity <= self.rules.max_production_quantity:
            raise InvalidQuantityError(quantity, 1, self.rules.max_production_quantity)

        manufacturer = self._organizations.require_active(
            manufacturer_id, _MANUFACTURER_ONLY, "produce lots"
        )
        self._organizations.require_owned_product(product_id, manufacturer_id)
        lot_rules = self._organizations.get_lot_rules(manufacturer)

        lot_serial = self._sequences.next_value(
            SequenceService.lot_serial_name(manufacturer_id)
        )
        try:
            lot_number = format_lot_number(lot_rules, lot_serial, production_date)
        except ValueError as exc:
            raise InvalidSettingsError(
                "lot_model_digits", lot_rules.model_digits, str(exc)
            ) from exc

        serials = self._sequences.next_block(SequenceService.VIRTUAL_CODE, quantity)
        now = self.clock.now_utc()

        lot = Lot(
            product_id=product_id,
            manufacturer_id=manufacturer_id,
            lot_number=lot_number,
            quantity=quantity,
            production_date=production_date,
            expiry_date=compute_expiry_date(production_date, lot_rules.expiry_months),
            produced_at=now,
            sequence=self._sequences.next_value(SequenceService.LEDGER_EVENT),
        )
        self.session.add(lot)
        self.session.flush()

        units = [
            Unit(
                code=format_virtual_code(
                    serial, self.rules.code_prefix, self.rules.code_digits
                ),
                serial=serial,
                lot_id=lot.id,
                product_id=product_id,
                owner_id=manufacturer_id,
                state=UnitState.IN_STOCK,
            )
            for serial in serials
        ]
        self.session.add_all(units)
        self.session.flush()

        self._ledger.verify_conservation(lot.id)

        logger.info(
            "lot_created",
            extra={
                "lot_id": str(lot.id),
                "lot_number": lot_number,
                "manufacturer_id": str(manufacturer_id),
                "product_id": str(product_id),
                "quantity": quantity,
                "first_code": units[0].code,
                "last_code": units[-1].code,
            },
        )
        return LotRecord.from_model(lot, tuple(u.code for u in units))

"""
ConsumptionEngine -- terminal use of units: treatments and disposals.

Responsibility:
    Marks ``quantity`` FIFO-selected units CONSUMED (treatment of a
    patient at a hospital) or DISPOSED (loss, expiry, defect, other) and
    appends the ConsumptionEvent recording them.

Architecture position:
    Kernel > Services -- imperative shell.  Same locking/FIFO path as
    TransferEngine via UnitLedger.allocate.

Invariants enforced:
    - Only ACTIVE hospitals record treatments; ADMIN organizations never
      hold or dispose of stock.
    - Patients are found or created per hospital by normalized phone.
    - A treatment date may not be later than today in the display
      timezone.
    - All-or-nothing, as for transfers.

Failure modes:
    - InvalidPhoneNumberError, InvalidQuantityError, InvalidReasonError,
      ValidationError (future treatment date, unknown disposal reason).
    - InvalidOrganizationTypeError / OrganizationInactiveError.
    - InsufficientInventoryError.

Audit relevance:
    Events are logged with the masked patient phone only.
"""

from datetime import date
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from certify_kernel.domain.dtos import ConsumptionRecord
from certify_kernel.domain.enums import (
    ConsumptionKind,
    ConsumptionStatus,
    DisposalReason,
    OrganizationType,
)
from certify_kernel.domain.phone import mask_phone, normalize_phone
from certify_kernel.domain.rules import LedgerRules
from certify_kernel.exceptions import (
    InvalidQuantityError,
    InvalidReasonError,
    ValidationError,
)
from certify_kernel.logging_config import get_logger
from certify_kernel.models.consumption import ConsumptionEvent, ConsumptionUnit
from certify_kernel.models.patient import Patient
from certify_kernel.models.unit import Unit
from certify_kernel.services.base import BaseService
from certify_kernel.services.ledger_service import UnitLedger
from certify_kernel.services.organization_service import OrganizationService
from certify_kernel.services.sequence_service import SequenceService

logger = get_logger("services.consumption")

_HOSPITAL_ONLY = frozenset({OrganizationType.HOSPITAL})
_STOCK_HOLDERS = frozenset(
    {OrganizationType.MANUFACTURER, OrganizationType.DISTRIBUTOR, OrganizationType.HOSPITAL}
)


class ConsumptionEngine(BaseService[ConsumptionEvent]):
    """
    Records treatments and disposals.

    Non-goals:
        - Does NOT send the patient notification; the facade publishes it
          after commit.
    """

    def __init__(self, session, clock=None, rules: LedgerRules | None = None):
        super().__init__(session, clock)
        self.rules = rules or LedgerRules()
        self._organizations = OrganizationService(session, self.clock, self.rules)
        self._ledger = UnitLedger(session, self.clock)
        self._sequences = SequenceService(session)

    def today(self) -> date:
        """Current calendar date in the display timezone."""
        return self.clock.now_utc().astimezone(ZoneInfo(self.rules.display_timezone)).date()

    # =========================================================================
    # Treatment
    # =========================================================================

    def consume_for_treatment(
        self,
        hospital_org_id: UUID,
        product_id: UUID,
        quantity: int,
        patient_phone: str,
        treatment_date: date,
        lot_id: UUID | None = None,
    ) -> ConsumptionRecord:
        """
        Use units on a patient.

        Postconditions:
            - The selected units are CONSUMED and linked to the event.
            - A Patient row exists for (hospital, normalized phone).
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)
        phone = normalize_phone(patient_phone)
        if treatment_date > self.today():
            raise ValidationError(
                f"Treatment date {treatment_date.isoformat()} is in the future",
                field="treatment_date",
            )

        self._organizations.require_active(hospital_org_id, _HOSPITAL_ONLY, "record treatments")
        self._organizations.get_product(product_id)

        units = self._ledger.allocate(hospital_org_id, product_id, quantity, lot_id)
        self._ledger.mark_consumed(units)
        patient = self.find_or_create_patient(hospital_org_id, phone)

        event = self._append_event(
            org_id=hospital_org_id,
            kind=ConsumptionKind.TREATMENT,
            product_id=product_id,
            lot_id=lot_id,
            units=units,
            patient_id=patient.id,
            treatment_date=treatment_date,
        )
        event.patient = patient

        logger.info(
            "treatment_recorded",
            extra={
                "event_id": str(event.id),
                "organization_id": str(hospital_org_id),
                "product_id": str(product_id),
                "quantity": quantity,
                "patient_phone": mask_phone(phone),
            },
        )
        return ConsumptionRecord.from_model(event)

    def find_or_create_patient(self, hospital_id: UUID, phone: str) -> Patient:
        """Look up the hospital's patient by normalized phone, creating it once."""
        stmt = select(Patient).where(Patient.hospital_id == hospital_id, Patient.phone == phone)
        patient = self.session.execute(stmt).scalar_one_or_none()
        if patient is not None:
            return patient

        savepoint = self.session.begin_nested()
        try:
            patient = Patient(hospital_id=hospital_id, phone=phone, created_at=self.clock.now_utc())
            self.session.add(patient)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Another treatment registered the same phone concurrently.
            savepoint.rollback()
            patient = self.session.execute(stmt).scalar_one()
            return patient
        logger.debug(
            "patient_created",
            extra={"organization_id": str(hospital_id), "patient_phone": mask_phone(phone)},
        )
        return patient

    # =========================================================================
    # Disposal
    # =========================================================================

    def consume_for_disposal(
        self,
        org_id: UUID,
        product_id: UUID,
        quantity: int,
        reason_type: DisposalReason | str,
        lot_id: UUID | None = None,
        reason_detail: str | None = None,
    ) -> ConsumptionRecord:
        """
        Take units out of circulation.

        ``reason_type`` OTHER requires ``reason_detail``; for the other
        reasons the detail is optional.
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)
        try:
            reason = DisposalReason(reason_type)
        except ValueError:
            raise ValidationError(
                f"Unknown disposal reason: {reason_type!r}", field="reason_type"
            ) from None
        detail = self._validate_detail(reason, reason_detail)

        self._organizations.require_active(org_id, _STOCK_HOLDERS, "dispose of units")
        self._organizations.get_product(product_id)

        units = self._ledger.allocate(org_id, product_id, quantity, lot_id)
        self._ledger.mark_disposed(units)

        event = self._append_event(
            org_id=org_id,
            kind=ConsumptionKind.DISPOSAL,
            product_id=product_id,
            lot_id=lot_id,
            units=units,
            disposal_reason=reason.value,
            disposal_reason_detail=detail,
        )

        logger.info(
            "disposal_recorded",
            extra={
                "event_id": str(event.id),
                "organization_id": str(org_id),
                "product_id": str(product_id),
                "quantity": quantity,
                "disposal_reason": reason.value,
            },
        )
        return ConsumptionRecord.from_model(event)

    def _validate_detail(self, reason: DisposalReason, detail: str | None) -> str | None:
        detail = detail.strip() if detail else None
        if reason == DisposalReason.OTHER and not detail:
            raise InvalidReasonError(
                "A reason detail is required for disposal reason 'other'",
                self.rules.max_reason_length,
            )
        if detail and len(detail) > self.rules.max_reason_length:
            raise InvalidReasonError(
                f"Reason detail exceeds {self.rules.max_reason_length} characters",
                self.rules.max_reason_length,
            )
        return detail

    # =========================================================================
    # Shared
    # =========================================================================

    def _append_event(
        self,
        org_id: UUID,
        kind: ConsumptionKind,
        product_id: UUID,
        lot_id: UUID | None,
        units: list[Unit],
        **fields,
    ) -> ConsumptionEvent:
        event = ConsumptionEvent(
            org_id=org_id,
            kind=kind,
            product_id=product_id,
            lot_id=lot_id,
            quantity=len(units),
            occurred_at=self.clock.now_utc(),
            status=ConsumptionStatus.ACTIVE,
            sequence=self._sequences.next_value(SequenceService.LEDGER_EVENT),
            **fields,
        )
        event.unit_links = [
            ConsumptionUnit(unit_id=unit.id, unit=unit, position=position)
            for position, unit in enumerate(units)
        ]
        self.session.add(event)
        self.session.flush()
        return event

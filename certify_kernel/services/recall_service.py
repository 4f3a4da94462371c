"""
RecallService -- time-boxed reversal of treatments and return of shipments.

Responsibility:
    - ``recall_treatment``: a hospital withdraws a treatment within the
      recall window; the units return to the hospital's stock.
    - ``return_shipment``: the receiver sends a whole shipment back to the
      source, at any time, as long as it still owns every unit.
    - Non-mutating eligibility checks and the list of returnable incoming
      shipments.

Architecture position:
    Kernel > Services -- imperative shell.  Window arithmetic lives in
    ``domain.recall_window``; unit mutations go through UnitLedger.

Invariants enforced:
    - The event row is read with ``SELECT ... FOR UPDATE`` before any
      check, so two concurrent reversals of one event serialize and the
      second sees the first one's status.
    - One clock read per call; the window compares UTC instants and the
      deadline itself is already outside the window.
    - A return moves every unit of the shipment or none.

Failure modes:
    - TreatmentNotFoundError / ShipmentNotFoundError.
    - NotReceiverError: requester is not the consuming hospital or the
      shipment's destination.
    - AlreadyRecalledError / AlreadyReturnedError.
    - RecallTimeExceededError (treatments only).
    - CodesNotOwnedError (shipments only).
    - InvalidReasonError: missing or oversize reason.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, exists, or_, select

from certify_kernel.domain.dtos import (
    ConsumptionRecord,
    RecallEligibility,
    TransferRecord,
)
from certify_kernel.domain.enums import (
    ConsumptionKind,
    ConsumptionStatus,
    TransferStatus,
    UnitState,
)
from certify_kernel.domain.rules import LedgerRules
from certify_kernel.exceptions import (
    AlreadyRecalledError,
    AlreadyReturnedError,
    CertifyKernelError,
    CodesNotOwnedError,
    InvalidReasonError,
    NotReceiverError,
    RecallTimeExceededError,
    ShipmentNotFoundError,
    TreatmentNotFoundError,
)
from certify_kernel.logging_config import get_logger
from certify_kernel.models.consumption import ConsumptionEvent
from certify_kernel.models.transfer import TransferEvent, TransferUnit
from certify_kernel.models.unit import Unit
from certify_kernel.services.base import BaseService
from certify_kernel.services.ledger_service import UnitLedger
from certify_kernel.services.sequence_service import SequenceService

logger = get_logger("services.recall")


class RecallService(BaseService[ConsumptionEvent]):
    """
    Reversals of ledger events.

    Contract:
        Each mutating call validates and mutates under the event row lock
        inside the caller's transaction.

    Guarantees:
        - Calling a reversal twice on one event succeeds once and raises
          an AlreadyReversedError subclass the second time.
    """

    def __init__(self, session, clock=None, rules: LedgerRules | None = None):
        super().__init__(session, clock)
        self.rules = rules or LedgerRules()
        self._ledger = UnitLedger(session, self.clock)
        self._sequences = SequenceService(session)

    def _validate_reason(self, reason: str | None) -> str:
        text = (reason or "").strip()
        if not text:
            raise InvalidReasonError("A reason is required", self.rules.max_reason_length)
        if len(text) > self.rules.max_reason_length:
            raise InvalidReasonError(
                f"Reason exceeds {self.rules.max_reason_length} characters",
                self.rules.max_reason_length,
            )
        return text

    # =========================================================================
    # Treatment recall
    # =========================================================================

    def _load_treatment(self, event_id: UUID, lock: bool) -> ConsumptionEvent:
        stmt = select(ConsumptionEvent).where(ConsumptionEvent.id == event_id)
        if lock:
            stmt = stmt.with_for_update(of=ConsumptionEvent).execution_options(
                populate_existing=True
            )
        event = self.session.execute(stmt).unique().scalar_one_or_none()
        if event is None or event.kind != ConsumptionKind.TREATMENT:
            raise TreatmentNotFoundError(str(event_id))
        return event

    def _check_treatment(
        self, event: ConsumptionEvent, requesting_org_id: UUID, now: datetime
    ) -> None:
        if event.org_id != requesting_org_id:
            raise NotReceiverError(str(event.id), str(requesting_org_id))
        if event.status == ConsumptionStatus.RECALLED:
            raise AlreadyRecalledError(str(event.id), event.recalled_at)
        policy = self.rules.recall_policy
        if not policy.is_open(event.occurred_at, now):
            raise RecallTimeExceededError(
                str(event.id), event.occurred_at, policy.deadline(event.occurred_at)
            )

    def recall_treatment(
        self, treatment_event_id: UUID, requesting_org_id: UUID, reason: str
    ) -> ConsumptionRecord:
        """
        Withdraw a treatment inside the recall window.

        Postconditions:
            - Every unit of the event is IN_STOCK and owned by the hospital.
            - The event is RECALLED with ``recalled_at`` and the reason.
        """
        text = self._validate_reason(reason)
        now = self.clock.now_utc()

        event = self._load_treatment(treatment_event_id, lock=True)
        self._check_treatment(event, requesting_org_id, now)

        units = self._ledger.lock_units([link.unit_id for link in event.unit_links])
        self._ledger.restore(units, event.org_id)

        event.status = ConsumptionStatus.RECALLED
        event.recalled_at = now
        event.recall_reason = text
        event.recall_sequence = self._sequences.next_value(SequenceService.LEDGER_EVENT)
        self.session.flush()

        logger.info(
            "treatment_recalled",
            extra={
                "event_id": str(event.id),
                "organization_id": str(requesting_org_id),
                "quantity": len(units),
                "occurred_at": event.occurred_at,
                "recalled_at": now,
            },
        )
        return ConsumptionRecord.from_model(event)

    def can_recall_treatment(
        self, treatment_event_id: UUID, requesting_org_id: UUID
    ) -> RecallEligibility:
        """Report whether ``recall_treatment`` would currently be accepted."""
        now = self.clock.now_utc()
        try:
            event = self._load_treatment(treatment_event_id, lock=False)
        except TreatmentNotFoundError as exc:
            return RecallEligibility(treatment_event_id, False, exc.code)

        policy = self.rules.recall_policy
        deadline = policy.deadline(event.occurred_at)
        remaining = policy.remaining(event.occurred_at, now)
        try:
            self._check_treatment(event, requesting_org_id, now)
        except CertifyKernelError as exc:
            return RecallEligibility(event.id, False, exc.code, deadline, remaining)
        return RecallEligibility(event.id, True, None, deadline, remaining)

    # =========================================================================
    # Shipment return
    # =========================================================================

    def _load_shipment(self, event_id: UUID, lock: bool) -> TransferEvent:
        stmt = select(TransferEvent).where(TransferEvent.id == event_id)
        if lock:
            stmt = stmt.with_for_update(of=TransferEvent).execution_options(
                populate_existing=True
            )
        event = self.session.execute(stmt).scalar_one_or_none()
        if event is None:
            raise ShipmentNotFoundError(str(event_id))
        return event

    def _check_shipment(
        self, event: TransferEvent, requesting_org_id: UUID, units: list[Unit]
    ) -> None:
        if event.dest_org_id != requesting_org_id:
            raise NotReceiverError(str(event.id), str(requesting_org_id))
        if event.status == TransferStatus.RETURNED:
            raise AlreadyReturnedError(str(event.id), event.returned_at)
        missing = [
            unit.code
            for unit in units
            if unit.owner_id != requesting_org_id or unit.state != UnitState.IN_STOCK
        ]
        if missing:
            raise CodesNotOwnedError(str(event.id), str(requesting_org_id), missing)

    def return_shipment(
        self, transfer_event_id: UUID, requesting_org_id: UUID, reason: str
    ) -> TransferRecord:
        """
        Send a whole shipment back to its source.

        Postconditions:
            - Every unit of the event is owned by the source again.
            - The event is RETURNED with ``returned_at`` and the reason.
        """
        text = self._validate_reason(reason)
        now = self.clock.now_utc()

        event = self._load_shipment(transfer_event_id, lock=True)
        units = self._ledger.lock_units([link.unit_id for link in event.unit_links])
        self._check_shipment(event, requesting_org_id, units)

        self._ledger.reassign(units, event.source_org_id)

        event.status = TransferStatus.RETURNED
        event.returned_at = now
        event.return_reason = text
        event.return_sequence = self._sequences.next_value(SequenceService.LEDGER_EVENT)
        self.session.flush()

        logger.info(
            "shipment_returned",
            extra={
                "event_id": str(event.id),
                "organization_id": str(requesting_org_id),
                "source_org_id": str(event.source_org_id),
                "quantity": len(units),
            },
        )
        return TransferRecord.from_model(event)

    def can_return_shipment(
        self, transfer_event_id: UUID, requesting_org_id: UUID
    ) -> RecallEligibility:
        """Report whether ``return_shipment`` would currently be accepted."""
        try:
            event = self._load_shipment(transfer_event_id, lock=False)
            units = [link.unit for link in event.unit_links]
            self._check_shipment(event, requesting_org_id, units)
        except CertifyKernelError as exc:
            return RecallEligibility(transfer_event_id, False, exc.code)
        return RecallEligibility(event.id, True)

    def list_returnable_shipments(self, organization_id: UUID) -> list[TransferRecord]:
        """
        Incoming shipments the organization could return right now.

        ACTIVE events addressed to the organization where every unit is
        still IN_STOCK and owned by it, newest first.
        """
        moved_on = exists().where(
            and_(
                TransferUnit.transfer_id == TransferEvent.id,
                TransferUnit.unit_id == Unit.id,
                or_(Unit.owner_id != organization_id, Unit.state != UnitState.IN_STOCK),
            )
        )
        stmt = (
            select(TransferEvent)
            .where(
                TransferEvent.dest_org_id == organization_id,
                TransferEvent.status == TransferStatus.ACTIVE,
                ~moved_on,
            )
            .order_by(TransferEvent.occurred_at.desc(), TransferEvent.sequence.desc())
        )
        return [TransferRecord.from_model(e) for e in self.session.execute(stmt).scalars()]

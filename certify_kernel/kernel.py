"""
CertifyKernel -- request-per-operation entry point of the ledger.

Responsibility:
    Runs every ledger operation in its own transaction, turns business
    refusals into ``KernelResult`` failures, retries a conflicting
    transaction once, and publishes patient notifications after commit.

Architecture position:
    Kernel > top-level facade.  The only kernel module that commits.
    Composes services and selectors; outer layers (HTTP handlers, jobs,
    scripts) call it with a session factory from ``certify_kernel.db``
    and rules from ``certify_config``.

Invariants enforced:
    - One transaction per operation; a failure rolls back everything the
      operation flushed.
    - Conflicts (ConcurrencyError, OperationalError, StaleDataError) are
      retried once on a fresh session; a second conflict surfaces as a
      retryable CONFLICT failure.
    - Expected refusals never raise.  InvariantViolationError and
      non-kernel exceptions propagate after rollback.
    - Notifications are only published for committed transactions, and
      a failing publisher never changes the result.

Audit relevance:
    Each call logs ``operation_started`` and ``operation_completed`` /
    ``operation_refused`` / ``operation_failed`` with ``duration_ms``,
    under a LogContext carrying correlation_id, organization_id and
    operation.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import date
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from certify_kernel.db.engine import get_session_factory
from certify_kernel.domain.clock import Clock, SystemClock
from certify_kernel.domain.dtos import (
    ConsumptionRecord,
    HistoryEntry,
    HistoryFilters,
    InventorySummary,
    LotRecord,
    OrganizationRecord,
    PaginatedResult,
    ProductRecord,
    RecallEligibility,
    TransferRecord,
    TreatmentCertificate,
)
from certify_kernel.domain.enums import DisposalReason, OrganizationType
from certify_kernel.domain.lot_numbering import LotNumberingRules
from certify_kernel.domain.notifications import (
    NotificationPublisher,
    NullPublisher,
    PatientNotification,
    ProductLine,
    build_certification_notice,
    build_recall_notice,
    publish_safely,
)
from certify_kernel.domain.phone import normalize_phone
from certify_kernel.domain.results import KernelFailure, KernelResult
from certify_kernel.domain.rules import LedgerRules
from certify_kernel.exceptions import (
    CertifyKernelError,
    ConcurrencyError,
    InvariantViolationError,
)
from certify_kernel.logging_config import LogContext, get_logger
from certify_kernel.models.consumption import ConsumptionEvent
from certify_kernel.models.organization import Organization
from certify_kernel.models.product import Product
from certify_kernel.selectors.history_selector import HistoryProjector
from certify_kernel.selectors.inventory_selector import InventorySelector
from certify_kernel.selectors.verification_selector import VerificationSelector
from certify_kernel.services.consumption_engine import ConsumptionEngine
from certify_kernel.services.ledger_service import UnitLedger
from certify_kernel.services.lot_allocator import LotAllocator
from certify_kernel.services.organization_service import OrganizationService
from certify_kernel.services.recall_service import RecallService
from certify_kernel.services.transfer_engine import TransferEngine

logger = get_logger("kernel")

T = TypeVar("T")

# First attempt plus one retry on conflict
MAX_ATTEMPTS = 2

_CONFLICTS = (ConcurrencyError, OperationalError, StaleDataError)

Work = Callable[[Session], tuple[T, list[PatientNotification]]]


class CertifyKernel:
    """
    Facade over the unit ledger.

    Contract:
        Every public method returns a ``KernelResult``.  On success
        ``result.value`` holds a frozen DTO; on refusal ``result.failure``
        carries the error kind, code, display message and details.

    Non-goals:
        - No authentication: callers pass the acting organization id and
          are trusted to have verified it.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        rules: LedgerRules | None = None,
        publisher: NotificationPublisher | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._rules = rules or LedgerRules()
        self._publisher = publisher or NullPublisher()

    @property
    def rules(self) -> LedgerRules:
        return self._rules

    # =========================================================================
    # Transaction runner
    # =========================================================================

    def _run(
        self,
        operation: str,
        organization_id: UUID | None,
        work: Work,
        read_only: bool = False,
    ) -> KernelResult:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            organization_id=str(organization_id) if organization_id else None,
            operation=operation,
        ):
            logger.info("operation_started")
            t0 = time.monotonic()
            attempt = 0
            while True:
                attempt += 1
                session = self._session_factory()
                try:
                    value, notifications = work(session)
                    if read_only:
                        session.rollback()
                    else:
                        session.commit()
                except InvariantViolationError:
                    session.rollback()
                    logger.error("operation_failed", exc_info=True, extra={"attempt": attempt})
                    raise
                except _CONFLICTS as exc:
                    session.rollback()
                    if attempt < MAX_ATTEMPTS:
                        logger.warning(
                            "operation_conflict_retry",
                            extra={"attempt": attempt, "error": type(exc).__name__},
                        )
                        continue
                    failure = (
                        KernelFailure.from_error(exc)
                        if isinstance(exc, CertifyKernelError)
                        else KernelFailure.conflict(type(exc).__name__)
                    )
                    return self._refused(failure, attempt, t0)
                except CertifyKernelError as exc:
                    session.rollback()
                    return self._refused(KernelFailure.from_error(exc), attempt, t0)
                except Exception:
                    session.rollback()
                    logger.error("operation_failed", exc_info=True, extra={"attempt": attempt})
                    raise
                finally:
                    session.close()

                for notification in notifications:
                    publish_safely(self._publisher, notification)
                logger.info(
                    "operation_completed",
                    extra={
                        "attempts": attempt,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return KernelResult.ok(value, attempt)

    def _refused(self, failure: KernelFailure, attempt: int, t0: float) -> KernelResult:
        logger.info(
            "operation_refused",
            extra={
                "code": failure.code,
                "kind": failure.kind.value,
                "attempts": attempt,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return KernelResult.fail(failure, attempt)

    # =========================================================================
    # Organizations and catalog
    # =========================================================================

    def register_organization(
        self,
        name: str,
        org_type: OrganizationType,
        business_number: str | None = None,
        representative_contact: str | None = None,
    ) -> KernelResult[OrganizationRecord]:
        def work(session):
            service = OrganizationService(session, self._clock, self._rules)
            return service.register(name, org_type, business_number, representative_contact), []

        return self._run("register_organization", None, work)

    def _org_transition(self, operation: str, organization_id: UUID) -> KernelResult[OrganizationRecord]:
        def work(session):
            service = OrganizationService(session, self._clock, self._rules)
            return getattr(service, operation)(organization_id), []

        return self._run(f"{operation}_organization", organization_id, work)

    def approve_organization(self, organization_id: UUID) -> KernelResult[OrganizationRecord]:
        return self._org_transition("approve", organization_id)

    def reject_organization(self, organization_id: UUID) -> KernelResult[OrganizationRecord]:
        return self._org_transition("reject", organization_id)

    def deactivate_organization(self, organization_id: UUID) -> KernelResult[OrganizationRecord]:
        return self._org_transition("deactivate", organization_id)

    def reactivate_organization(self, organization_id: UUID) -> KernelResult[OrganizationRecord]:
        return self._org_transition("reactivate", organization_id)

    def delete_organization(self, organization_id: UUID) -> KernelResult[OrganizationRecord]:
        return self._org_transition("delete", organization_id)

    def update_manufacturer_settings(
        self, manufacturer_id: UUID, **changes: Any
    ) -> KernelResult[LotNumberingRules]:
        def work(session):
            service = OrganizationService(session, self._clock, self._rules)
            return service.update_manufacturer_settings(manufacturer_id, **changes), []

        return self._run("update_manufacturer_settings", manufacturer_id, work)

    def register_product(
        self, manufacturer_id: UUID, name: str, model_name: str, udi_di: str
    ) -> KernelResult[ProductRecord]:
        def work(session):
            service = OrganizationService(session, self._clock, self._rules)
            return service.register_product(manufacturer_id, name, model_name, udi_di), []

        return self._run("register_product", manufacturer_id, work)

    def deactivate_product(
        self, product_id: UUID, manufacturer_id: UUID
    ) -> KernelResult[ProductRecord]:
        def work(session):
            service = OrganizationService(session, self._clock, self._rules)
            return service.deactivate_product(product_id, manufacturer_id), []

        return self._run("deactivate_product", manufacturer_id, work)

    # =========================================================================
    # Ledger operations
    # =========================================================================

    def create_lot(
        self,
        manufacturer_id: UUID,
        product_id: UUID,
        quantity: int,
        production_date: date,
    ) -> KernelResult[LotRecord]:
        def work(session):
            allocator = LotAllocator(session, self._clock, self._rules)
            return allocator.create_lot(manufacturer_id, product_id, quantity, production_date), []

        return self._run("create_lot", manufacturer_id, work)

    def transfer(
        self,
        source_org_id: UUID,
        dest_org_id: UUID,
        product_id: UUID,
        quantity: int,
        lot_id: UUID | None = None,
    ) -> KernelResult[TransferRecord]:
        def work(session):
            engine = TransferEngine(session, self._clock, self._rules)
            return engine.transfer(source_org_id, dest_org_id, product_id, quantity, lot_id), []

        return self._run("transfer", source_org_id, work)

    def consume_for_treatment(
        self,
        hospital_org_id: UUID,
        product_id: UUID,
        quantity: int,
        patient_phone: str,
        treatment_date: date,
        lot_id: UUID | None = None,
    ) -> KernelResult[ConsumptionRecord]:
        def work(session):
            engine = ConsumptionEngine(session, self._clock, self._rules)
            record = engine.consume_for_treatment(
                hospital_org_id, product_id, quantity, patient_phone, treatment_date, lot_id
            )
            hospital = session.get(Organization, hospital_org_id)
            product = session.get(Product, product_id)
            notice = build_certification_notice(
                event_id=record.id,
                patient_phone=normalize_phone(patient_phone),
                hospital_name=hospital.name,
                treatment_date=treatment_date,
                products=[ProductLine(product.name, record.quantity)],
                unit_codes=record.unit_codes,
            )
            return record, [notice]

        return self._run("consume_for_treatment", hospital_org_id, work)

    def consume_for_disposal(
        self,
        org_id: UUID,
        product_id: UUID,
        quantity: int,
        reason_type: DisposalReason | str,
        lot_id: UUID | None = None,
        reason_detail: str | None = None,
    ) -> KernelResult[ConsumptionRecord]:
        def work(session):
            engine = ConsumptionEngine(session, self._clock, self._rules)
            return (
                engine.consume_for_disposal(
                    org_id, product_id, quantity, reason_type, lot_id, reason_detail
                ),
                [],
            )

        return self._run("consume_for_disposal", org_id, work)

    def recall_treatment(
        self, treatment_event_id: UUID, requesting_org_id: UUID, reason: str
    ) -> KernelResult[ConsumptionRecord]:
        def work(session):
            service = RecallService(session, self._clock, self._rules)
            record = service.recall_treatment(treatment_event_id, requesting_org_id, reason)
            event = session.get(ConsumptionEvent, treatment_event_id)
            hospital = session.get(Organization, event.org_id)
            product = session.get(Product, event.product_id)
            notice = build_recall_notice(
                event_id=record.id,
                patient_phone=event.patient.phone,
                hospital_name=hospital.name,
                hospital_contact=hospital.representative_contact,
                reason=record.recall_reason,
                products=[ProductLine(product.name, record.quantity)],
            )
            return record, [notice]

        return self._run("recall_treatment", requesting_org_id, work)

    def return_shipment(
        self, transfer_event_id: UUID, requesting_org_id: UUID, reason: str
    ) -> KernelResult[TransferRecord]:
        def work(session):
            service = RecallService(session, self._clock, self._rules)
            return service.return_shipment(transfer_event_id, requesting_org_id, reason), []

        return self._run("return_shipment", requesting_org_id, work)

    # =========================================================================
    # Queries
    # =========================================================================

    def can_recall_treatment(
        self, treatment_event_id: UUID, requesting_org_id: UUID
    ) -> KernelResult[RecallEligibility]:
        def work(session):
            service = RecallService(session, self._clock, self._rules)
            return service.can_recall_treatment(treatment_event_id, requesting_org_id), []

        return self._run("can_recall_treatment", requesting_org_id, work, read_only=True)

    def can_return_shipment(
        self, transfer_event_id: UUID, requesting_org_id: UUID
    ) -> KernelResult[RecallEligibility]:
        def work(session):
            service = RecallService(session, self._clock, self._rules)
            return service.can_return_shipment(transfer_event_id, requesting_org_id), []

        return self._run("can_return_shipment", requesting_org_id, work, read_only=True)

    def list_returnable_shipments(
        self, organization_id: UUID
    ) -> KernelResult[list[TransferRecord]]:
        def work(session):
            service = RecallService(session, self._clock, self._rules)
            return service.list_returnable_shipments(organization_id), []

        return self._run("list_returnable_shipments", organization_id, work, read_only=True)

    def get_history(
        self,
        organization_id: UUID,
        page: int = 1,
        page_size: int | None = None,
        filters: HistoryFilters | None = None,
    ) -> KernelResult[PaginatedResult[HistoryEntry]]:
        def work(session):
            projector = HistoryProjector(session, self._rules)
            return projector.get_history(organization_id, page, page_size, filters), []

        return self._run("get_history", organization_id, work, read_only=True)

    def get_inventory(self, organization_id: UUID) -> KernelResult[list[InventorySummary]]:
        def work(session):
            OrganizationService(session, self._clock, self._rules).get_organization(organization_id)
            return InventorySelector(session).summarize(organization_id), []

        return self._run("get_inventory", organization_id, work, read_only=True)

    def verify_lot(self, lot_id: UUID) -> KernelResult[int]:
        """
        Audit one lot: conservation of its units and the provenance of each.

        A broken invariant raises instead of returning a failure.
        """
        def work(session):
            ledger = UnitLedger(session, self._clock)
            count = ledger.verify_conservation(lot_id)
            for unit_id in ledger.unit_ids_for_lot(lot_id):
                ledger.verify_provenance(unit_id)
            return count, []

        return self._run("verify_lot", None, work, read_only=True)

    def get_verification(self, treatment_id: UUID) -> KernelResult[TreatmentCertificate]:
        """Public certificate check for a treatment; needs no organization."""
        def work(session):
            return VerificationSelector(session).get_certificate(treatment_id), []

        return self._run("get_verification", None, work, read_only=True)

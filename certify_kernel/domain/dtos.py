"""
DTOs -- Immutable records returned across the kernel boundary.

Responsibility:
    Frozen dataclasses for organizations, products, lots, ledger events,
    history entries, inventory lines, recall eligibility and treatment
    certificates.  The facade and the selectors return these, never ORM
    entities.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` class methods are
    boundary converters invoked only from services and selectors.

Invariants enforced:
    - Patient phone numbers leave the kernel masked.
    - ``unit_codes`` are returned in FIFO order of the underlying event.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Generic, TypeVar
from uuid import UUID

from certify_kernel.domain.enums import (
    ConsumptionKind,
    ConsumptionStatus,
    DisposalReason,
    HistoryAction,
    OrganizationStatus,
    OrganizationType,
    TransferStatus,
)
from certify_kernel.domain.phone import mask_phone

if TYPE_CHECKING:
    from certify_kernel.models.consumption import ConsumptionEvent
    from certify_kernel.models.lot import Lot
    from certify_kernel.models.organization import Organization
    from certify_kernel.models.product import Product
    from certify_kernel.models.transfer import TransferEvent

T = TypeVar("T")


@dataclass(frozen=True)
class OrganizationRecord:
    id: UUID
    name: str
    org_type: OrganizationType
    status: OrganizationStatus
    business_number: str | None = None

    @classmethod
    def from_model(cls, model: Organization) -> OrganizationRecord:
        return cls(
            id=model.id,
            name=model.name,
            org_type=OrganizationType(model.org_type),
            status=OrganizationStatus(model.status),
            business_number=model.business_number,
        )


@dataclass(frozen=True)
class ProductRecord:
    id: UUID
    manufacturer_id: UUID
    name: str
    model_name: str
    udi_di: str
    is_active: bool

    @classmethod
    def from_model(cls, model: Product) -> ProductRecord:
        return cls(
            id=model.id,
            manufacturer_id=model.manufacturer_id,
            name=model.name,
            model_name=model.model_name,
            udi_di=model.udi_di,
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class LotRecord:
    id: UUID
    product_id: UUID
    manufacturer_id: UUID
    lot_number: str
    quantity: int
    production_date: date
    expiry_date: date
    unit_codes: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, model: Lot, unit_codes: tuple[str, ...] = ()) -> LotRecord:
        return cls(
            id=model.id,
            product_id=model.product_id,
            manufacturer_id=model.manufacturer_id,
            lot_number=model.lot_number,
            quantity=model.quantity,
            production_date=model.production_date,
            expiry_date=model.expiry_date,
            unit_codes=unit_codes,
        )


@dataclass(frozen=True)
class TransferRecord:
    id: UUID
    source_org_id: UUID
    dest_org_id: UUID
    product_id: UUID
    quantity: int
    occurred_at: datetime
    status: TransferStatus
    lot_id: UUID | None = None
    unit_codes: tuple[str, ...] = ()
    returned_at: datetime | None = None
    return_reason: str | None = None

    @classmethod
    def from_model(cls, model: TransferEvent) -> TransferRecord:
        return cls(
            id=model.id,
            source_org_id=model.source_org_id,
            dest_org_id=model.dest_org_id,
            product_id=model.product_id,
            quantity=model.quantity,
            occurred_at=model.occurred_at,
            status=TransferStatus(model.status),
            lot_id=model.lot_id,
            unit_codes=tuple(link.unit.code for link in model.unit_links),
            returned_at=model.returned_at,
            return_reason=model.return_reason,
        )


@dataclass(frozen=True)
class ConsumptionRecord:
    id: UUID
    org_id: UUID
    kind: ConsumptionKind
    product_id: UUID
    quantity: int
    occurred_at: datetime
    status: ConsumptionStatus
    unit_codes: tuple[str, ...] = ()
    patient_phone_masked: str | None = None
    treatment_date: date | None = None
    disposal_reason: DisposalReason | None = None
    disposal_reason_detail: str | None = None
    recalled_at: datetime | None = None
    recall_reason: str | None = None

    @classmethod
    def from_model(cls, model: ConsumptionEvent) -> ConsumptionRecord:
        return cls(
            id=model.id,
            org_id=model.org_id,
            kind=ConsumptionKind(model.kind),
            product_id=model.product_id,
            quantity=model.quantity,
            occurred_at=model.occurred_at,
            status=ConsumptionStatus(model.status),
            unit_codes=tuple(link.unit.code for link in model.unit_links),
            patient_phone_masked=(
                mask_phone(model.patient.phone) if model.patient else None
            ),
            treatment_date=model.treatment_date,
            disposal_reason=(
                DisposalReason(model.disposal_reason) if model.disposal_reason else None
            ),
            disposal_reason_detail=model.disposal_reason_detail,
            recalled_at=model.recalled_at,
            recall_reason=model.recall_reason,
        )


@dataclass(frozen=True)
class HistoryEntry:
    """One line of an organization's activity feed."""

    entry_id: str
    action: HistoryAction
    occurred_at: datetime
    event_id: UUID
    product_id: UUID
    quantity: int
    product_name: str | None = None
    counterparty_id: UUID | None = None
    counterparty_name: str | None = None
    unit_codes: tuple[str, ...] = ()
    lot_number: str | None = None
    patient_phone_masked: str | None = None
    reason: str | None = None

    @property
    def is_reversal(self) -> bool:
        return self.action.is_reversal


@dataclass(frozen=True)
class HistoryFilters:
    """
    Optional filters for the history projection.

    Dates are calendar days in the display timezone, both ends inclusive.
    """

    action_types: frozenset[HistoryAction] | None = None
    start_date: date | None = None
    end_date: date | None = None
    is_reversal: bool | None = None

    def __post_init__(self) -> None:
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")


@dataclass(frozen=True)
class PaginatedResult(Generic[T]):
    items: tuple[T, ...]
    page: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.total_count else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass(frozen=True)
class InventoryLine:
    """InStock units an organization owns for one lot."""

    product_id: UUID
    product_name: str
    lot_id: UUID
    lot_number: str
    expiry_date: date
    quantity: int


@dataclass(frozen=True)
class InventorySummary:
    """InStock units an organization owns for one product, across lots."""

    product_id: UUID
    product_name: str
    quantity: int
    lots: tuple[InventoryLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RecallEligibility:
    """Whether a recall/return would currently be accepted, without mutating."""

    event_id: UUID
    allowed: bool
    reason_code: str | None = None
    deadline: datetime | None = None
    remaining: timedelta | None = None


@dataclass(frozen=True)
class CertifiedCode:
    """One genuine-product code on a treatment certificate."""

    code: str
    product_name: str
    model_name: str


@dataclass(frozen=True)
class RecallInfo:
    hospital_name: str
    recalled_at: datetime
    reason: str | None = None
    hospital_contact: str | None = None


@dataclass(frozen=True)
class TreatmentCertificate:
    """
    What a patient sees when checking the codes used on them.

    ``recall`` is set once the hospital has recalled the treatment; the
    codes are still listed so the patient can see what was withdrawn.
    """

    treatment_id: UUID
    treatment_date: date
    hospital_id: UUID
    hospital_name: str
    patient_phone_masked: str
    codes: tuple[CertifiedCode, ...]
    product_summary: tuple[tuple[str, int], ...]
    recall: RecallInfo | None = None

    @property
    def is_recalled(self) -> bool:
        return self.recall is not None

    @property
    def recall_reason(self) -> str | None:
        return self.recall.reason if self.recall else None

    @property
    def recalled_at(self) -> datetime | None:
        return self.recall.recalled_at if self.recall else None

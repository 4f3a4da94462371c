"""
Module: certify_kernel.models.consumption
Responsibility: ORM persistence for terminal consumption of units
    (treatment use and disposal).
Architecture position: Kernel > Models.

Invariants enforced:
    - TREATMENT events carry a patient and treatment_date; DISPOSAL events
      carry a disposal_reason.
    - The row is immutable except for the recall marker
      (status, recalled_at, recall_reason), written once by RecallService.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certify_kernel.db.base import Base
from certify_kernel.domain.enums import ConsumptionKind, ConsumptionStatus
from certify_kernel.models.patient import Patient
from certify_kernel.models.unit import Unit


class ConsumptionEvent(Base):
    """Units consumed by a treatment or removed by a disposal."""

    __tablename__ = "consumption_events"

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_consumption_quantity_positive"),
        CheckConstraint(
            "(kind = 'treatment' AND patient_id IS NOT NULL) "
            "OR (kind = 'disposal' AND disposal_reason IS NOT NULL)",
            name="ck_consumption_kind_fields",
        ),
        Index("idx_consumption_org_time", "org_id", "occurred_at"),
    )

    org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )

    kind: Mapped[ConsumptionKind] = mapped_column(String(20), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id"), nullable=False
    )

    lot_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("lots.id"), nullable=True
    )

    quantity: Mapped[int] = mapped_column(nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    # Ledger-wide event order (SequenceService "ledger_event")
    sequence: Mapped[int] = mapped_column(nullable=False, unique=True)

    status: Mapped[ConsumptionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ConsumptionStatus.ACTIVE,
    )

    # Treatment fields
    patient_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("patients.id"), nullable=True
    )

    treatment_date: Mapped[date | None] = mapped_column(nullable=True)

    # Disposal fields
    disposal_reason: Mapped[str | None] = mapped_column(String(20), nullable=True)

    disposal_reason_detail: Mapped[str | None] = mapped_column(
        String(500), nullable=True
    )

    # Recall marker
    recalled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    recall_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    recall_sequence: Mapped[int | None] = mapped_column(nullable=True)

    patient: Mapped[Patient | None] = relationship(lazy="joined")

    unit_links: Mapped[list["ConsumptionUnit"]] = relationship(
        back_populates="consumption",
        cascade="all, delete-orphan",
        order_by="ConsumptionUnit.position",
        lazy="selectin",
    )

    @property
    def is_treatment(self) -> bool:
        return self.kind == ConsumptionKind.TREATMENT

    @property
    def is_recalled(self) -> bool:
        return self.status == ConsumptionStatus.RECALLED

    def __repr__(self) -> str:
        return (
            f"<ConsumptionEvent {self.id} {self.kind} qty={self.quantity} "
            f"status={self.status}>"
        )


class ConsumptionUnit(Base):
    """Link between a ConsumptionEvent and one unit it consumed."""

    __tablename__ = "consumption_units"

    __table_args__ = (
        UniqueConstraint("consumption_id", "unit_id", name="uq_consumption_unit"),
        Index("idx_consumption_unit_unit", "unit_id"),
    )

    consumption_id: Mapped[UUID] = mapped_column(
        ForeignKey("consumption_events.id"), nullable=False
    )

    unit_id: Mapped[UUID] = mapped_column(ForeignKey("units.id"), nullable=False)

    position: Mapped[int] = mapped_column(nullable=False)

    consumption: Mapped[ConsumptionEvent] = relationship(back_populates="unit_links")

    unit: Mapped[Unit] = relationship(lazy="joined")

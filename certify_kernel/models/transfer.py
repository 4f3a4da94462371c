"""
Module: certify_kernel.models.transfer
Responsibility: ORM persistence for shipments between organizations.
Architecture position: Kernel > Models.

Invariants enforced:
    - A TransferEvent references exactly ``quantity`` units through
      TransferUnit rows (one per unit, ordered by FIFO position).
    - The row is immutable except for the return marker
      (status, returned_at, return_reason), written once by RecallService.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certify_kernel.db.base import Base
from certify_kernel.domain.enums import TransferStatus
from certify_kernel.models.unit import Unit


class TransferEvent(Base):
    """Movement of a set of units from one organization to another."""

    __tablename__ = "transfer_events"

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_transfer_quantity_positive"),
        CheckConstraint("source_org_id <> dest_org_id", name="ck_transfer_not_self"),
        Index("idx_transfer_source_time", "source_org_id", "occurred_at"),
        Index("idx_transfer_dest_time", "dest_org_id", "occurred_at"),
    )

    source_org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )

    dest_org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id"), nullable=False
    )

    # Set when the caller restricted the selection to one lot
    lot_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("lots.id"), nullable=True
    )

    quantity: Mapped[int] = mapped_column(nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    # Ledger-wide event order (SequenceService "ledger_event")
    sequence: Mapped[int] = mapped_column(nullable=False, unique=True)

    status: Mapped[TransferStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TransferStatus.ACTIVE,
    )

    returned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    return_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    return_sequence: Mapped[int | None] = mapped_column(nullable=True)

    unit_links: Mapped[list["TransferUnit"]] = relationship(
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="TransferUnit.position",
        lazy="selectin",
    )

    @property
    def is_returned(self) -> bool:
        return self.status == TransferStatus.RETURNED

    def __repr__(self) -> str:
        return (
            f"<TransferEvent {self.id} {self.source_org_id}->{self.dest_org_id} "
            f"qty={self.quantity} status={self.status}>"
        )


class TransferUnit(Base):
    """Link between a TransferEvent and one unit it moved."""

    __tablename__ = "transfer_units"

    __table_args__ = (
        UniqueConstraint("transfer_id", "unit_id", name="uq_transfer_unit"),
        Index("idx_transfer_unit_unit", "unit_id"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        ForeignKey("transfer_events.id"), nullable=False
    )

    unit_id: Mapped[UUID] = mapped_column(ForeignKey("units.id"), nullable=False)

    # FIFO position within the event, starting at 0
    position: Mapped[int] = mapped_column(nullable=False)

    transfer: Mapped[TransferEvent] = relationship(back_populates="unit_links")

    unit: Mapped[Unit] = relationship(lazy="joined")

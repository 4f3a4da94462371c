"""
Module: certify_kernel.models.lot
Responsibility: ORM persistence for production batches.
Architecture position: Kernel > Models.

Invariants enforced:
    - quantity >= 1 (ck_lot_quantity_positive).
    - lot_number is unique per manufacturer (uq_lot_manufacturer_number).
    - A lot is written once, together with all of its units, by
      LotAllocator; nothing updates it afterwards.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certify_kernel.db.base import TrackedBase
from certify_kernel.models.product import Product


class Lot(TrackedBase):
    """A production batch of one product."""

    __tablename__ = "lots"

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_lot_quantity_positive"),
        UniqueConstraint(
            "manufacturer_id", "lot_number", name="uq_lot_manufacturer_number"
        ),
        Index("idx_lot_product_production", "product_id", "production_date"),
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id"),
        nullable=False,
    )

    manufacturer_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"),
        nullable=False,
    )

    lot_number: Mapped[str] = mapped_column(String(50), nullable=False)

    # Produced quantity; the number of Unit rows for this lot never differs
    quantity: Mapped[int] = mapped_column(nullable=False)

    production_date: Mapped[date] = mapped_column(nullable=False)

    expiry_date: Mapped[date] = mapped_column(nullable=False)

    produced_at: Mapped[datetime] = mapped_column(nullable=False)

    # Ledger-wide event order (SequenceService "ledger_event")
    sequence: Mapped[int] = mapped_column(nullable=False, unique=True)

    product: Mapped[Product] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<Lot {self.lot_number} qty={self.quantity}>"

"""
Module: certify_kernel.models.unit
Responsibility: ORM persistence for individual traceable units.
Architecture position: Kernel > Models.

Invariants enforced:
    - code and serial are unique system-wide.
    - Exactly one owner at any time (owner_id NOT NULL).
    - version_id is an optimistic lock: an UPDATE that races another
      transaction's UPDATE of the same unit raises StaleDataError.

Audit relevance:
    The chain of TransferEvent rows referencing a unit leads from the
    producing manufacturer to the current owner.
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certify_kernel.db.base import Base
from certify_kernel.domain.enums import UnitState
from certify_kernel.models.lot import Lot


class Unit(Base):
    """
    An atomic traceable unit identified by its virtual code.

    Guarantees:
        - serial is the global virtual-code sequence value, so ordering by
          serial is creation order.
    """

    __tablename__ = "units"

    __table_args__ = (
        UniqueConstraint("code", name="uq_unit_code"),
        UniqueConstraint("serial", name="uq_unit_serial"),
        # FIFO candidate scan: owner + product + state
        Index("idx_unit_owner_product_state", "owner_id", "product_id", "state"),
        Index("idx_unit_lot", "lot_id"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)

    serial: Mapped[int] = mapped_column(nullable=False)

    lot_id: Mapped[UUID] = mapped_column(ForeignKey("lots.id"), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id"), nullable=False
    )

    owner_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )

    state: Mapped[UnitState] = mapped_column(
        String(20),
        nullable=False,
        default=UnitState.IN_STOCK,
    )

    version_id: Mapped[int] = mapped_column(nullable=False, default=1)

    lot: Mapped[Lot] = relationship()

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Unit {self.code} owner={self.owner_id} state={self.state}>"

"""Product catalog entries owned by a manufacturer."""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certify_kernel.db.base import TrackedBase
from certify_kernel.models.organization import Organization


class Product(TrackedBase):
    """
    A catalog entry.

    Guarantees:
        - manufacturer_id is set at creation and never reassigned.
        - udi_di (unique device identifier, device part) is globally unique.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("udi_di", name="uq_product_udi_di"),
        Index("idx_product_manufacturer", "manufacturer_id"),
    )

    manufacturer_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    model_name: Mapped[str] = mapped_column(String(100), nullable=False)

    udi_di: Mapped[str] = mapped_column(String(50), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    manufacturer: Mapped[Organization] = relationship()

    def __repr__(self) -> str:
        return f"<Product {self.name} ({self.model_name})>"

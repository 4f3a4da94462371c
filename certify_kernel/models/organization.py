"""
Module: certify_kernel.models.organization
Responsibility: ORM persistence for supply-chain parties (manufacturers,
    distributors, hospitals, admins) and per-manufacturer lot-numbering
    settings.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/enums.py only.

Invariants enforced:
    - business_number is unique when present (uq_org_business_number).
    - At most one ManufacturerSettings row per organization.
    - Only ACTIVE organizations may take part in transfers or consumption
      (checked by services through ``can_transact``).

Audit relevance:
    Status history is reconstructed from updated_at and approved_at; the
    organization row is never physically deleted (DELETED is a status).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certify_kernel.db.base import TrackedBase
from certify_kernel.domain.enums import OrganizationStatus, OrganizationType


class Organization(TrackedBase):
    """
    A party in the supply chain.

    Contract:
        Created PENDING on registration; an admin approves it to ACTIVE.
        ACTIVE organizations can be deactivated and reactivated; DELETED is
        terminal.

    Guarantees:
        - org_type never changes after creation.
    """

    __tablename__ = "organizations"

    __table_args__ = (
        UniqueConstraint("business_number", name="uq_org_business_number"),
        Index("idx_org_type_status", "org_type", "status"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    org_type: Mapped[OrganizationType] = mapped_column(String(20), nullable=False)

    status: Mapped[OrganizationStatus] = mapped_column(
        String(20),
        nullable=False,
        default=OrganizationStatus.PENDING,
    )

    # 사업자등록번호, digits only
    business_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    representative_contact: Mapped[str | None] = mapped_column(
        String(30), nullable=True
    )

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    settings: Mapped["ManufacturerSettings | None"] = relationship(
        back_populates="manufacturer",
        uselist=False,
        lazy="selectin",
    )

    @property
    def can_transact(self) -> bool:
        return self.status == OrganizationStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Organization {self.name} ({self.org_type}, {self.status})>"


class ManufacturerSettings(TrackedBase):
    """
    Lot-numbering and expiry rules for one manufacturer.

    Guarantees:
        - lot_prefix is 1-10 uppercase letters, lot_model_digits 1-10 and
          lot_date_format one of yymmdd / yyyymmdd / yymm (validated by
          OrganizationService before write).
    """

    __tablename__ = "manufacturer_settings"

    __table_args__ = (
        UniqueConstraint("manufacturer_id", name="uq_manufacturer_settings_org"),
    )

    manufacturer_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"),
        nullable=False,
    )

    lot_prefix: Mapped[str] = mapped_column(String(10), nullable=False, default="ND")

    lot_model_digits: Mapped[int] = mapped_column(nullable=False, default=5)

    lot_date_format: Mapped[str] = mapped_column(
        String(10), nullable=False, default="yymmdd"
    )

    expiry_months: Mapped[int] = mapped_column(nullable=False, default=24)

    manufacturer: Mapped[Organization] = relationship(back_populates="settings")

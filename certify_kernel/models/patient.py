"""Patients, identified by normalized phone number within one hospital."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from certify_kernel.db.base import Base


class Patient(Base):
    """
    Append-only patient record.

    Created implicitly by the first treatment that references the phone
    number; never updated or deleted.
    """

    __tablename__ = "patients"

    __table_args__ = (
        UniqueConstraint("hospital_id", "phone", name="uq_patient_hospital_phone"),
    )

    hospital_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )

    # Digits only, e.g. 01012345678
    phone: Mapped[str] = mapped_column(String(11), nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

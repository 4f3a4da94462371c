"""
Module: certify_kernel.selectors.verification_selector
Responsibility: Read-only treatment certificates.  A patient follows the
    link in a certification message to this view, which lists the codes
    used on them and whether the hospital has since recalled the treatment.
Architecture position: Kernel > Selectors.

Failure modes:
    - TreatmentNotFoundError: unknown id, or the id is a disposal.
"""

from uuid import UUID

from sqlalchemy import select

from certify_kernel.domain.dtos import CertifiedCode, RecallInfo, TreatmentCertificate
from certify_kernel.domain.phone import mask_phone
from certify_kernel.exceptions import TreatmentNotFoundError
from certify_kernel.logging_config import get_logger
from certify_kernel.models.consumption import ConsumptionEvent, ConsumptionUnit
from certify_kernel.models.organization import Organization
from certify_kernel.models.product import Product
from certify_kernel.models.unit import Unit
from certify_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.verification")


class VerificationSelector(BaseSelector[ConsumptionEvent]):
    """Certificates for treatment events, recalled ones included."""

    def get_certificate(self, treatment_id: UUID) -> TreatmentCertificate:
        event = self.session.get(ConsumptionEvent, treatment_id)
        if event is None or not event.is_treatment:
            raise TreatmentNotFoundError(str(treatment_id))
        hospital = self.session.get(Organization, event.org_id)

        rows = self.session.execute(
            select(Unit.code, Product.name, Product.model_name)
            .join(ConsumptionUnit, ConsumptionUnit.unit_id == Unit.id)
            .join(Product, Unit.product_id == Product.id)
            .where(ConsumptionUnit.consumption_id == treatment_id)
            .order_by(ConsumptionUnit.position)
        ).all()
        codes = tuple(
            CertifiedCode(code=code, product_name=name, model_name=model_name)
            for code, name, model_name in rows
        )

        # Products in the order they first appear on the certificate
        summary: dict[str, int] = {}
        for certified in codes:
            summary[certified.product_name] = summary.get(certified.product_name, 0) + 1

        recall = None
        if event.is_recalled:
            recall = RecallInfo(
                hospital_name=hospital.name,
                recalled_at=event.recalled_at,
                reason=event.recall_reason,
                hospital_contact=hospital.representative_contact,
            )

        logger.debug(
            "certificate_loaded",
            extra={
                "event_id": str(treatment_id),
                "code_count": len(codes),
                "is_recalled": recall is not None,
            },
        )
        return TreatmentCertificate(
            treatment_id=event.id,
            treatment_date=event.treatment_date,
            hospital_id=hospital.id,
            hospital_name=hospital.name,
            patient_phone_masked=mask_phone(event.patient.phone),
            codes=codes,
            product_summary=tuple(summary.items()),
            recall=recall,
        )

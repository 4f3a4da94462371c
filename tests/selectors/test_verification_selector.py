"""
Tests for VerificationSelector.

Covers:
- Certificate of an active treatment: codes, products, hospital, masked phone
- Certificate of a recalled treatment: recall reason, time and contact
- Unknown ids and disposals are not certificates
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest

from certify_kernel.domain.enums import DisposalReason
from certify_kernel.exceptions import TreatmentNotFoundError

PHONE = "010-1234-5678"


@pytest.fixture
def treatment(produce, transfer_engine, consumption_engine, chain):
    produce(5)
    transfer_engine.transfer(chain.manufacturer_id, chain.hospital_id, chain.product_id, 5)
    return consumption_engine.consume_for_treatment(
        chain.hospital_id, chain.product_id, 3, PHONE, date(2025, 1, 1)
    )


class TestActiveCertificate:
    def test_lists_codes_in_treatment_order(self, verification, treatment, chain):
        certificate = verification.get_certificate(treatment.id)

        assert certificate.treatment_id == treatment.id
        assert certificate.treatment_date == date(2025, 1, 1)
        assert certificate.hospital_id == chain.hospital_id
        assert certificate.hospital_name == "Gangnam Skin Clinic"
        assert [c.code for c in certificate.codes] == list(treatment.unit_codes)
        assert {(c.product_name, c.model_name) for c in certificate.codes} == {
            ("PDO Thread", "PDO-19G-100")
        }
        assert certificate.product_summary == (("PDO Thread", 3),)

    def test_phone_is_masked(self, verification, treatment):
        assert verification.get_certificate(treatment.id).patient_phone_masked == "010****5678"

    def test_not_recalled(self, verification, treatment):
        certificate = verification.get_certificate(treatment.id)

        assert not certificate.is_recalled
        assert certificate.recall is None
        assert certificate.recall_reason is None
        assert certificate.recalled_at is None

    def test_summary_groups_products(
        self, verification, organization_service, lot_allocator, transfer_engine,
        consumption_engine, chain,
    ):
        filler = organization_service.register_product(
            chain.manufacturer_id, "Filler", "HA-1ML", "08800099999999"
        )
        lot_allocator.create_lot(chain.manufacturer_id, chain.product_id, 1, date(2024, 12, 1))
        lot_allocator.create_lot(chain.manufacturer_id, filler.id, 2, date(2024, 12, 1))
        transfer_engine.transfer(chain.manufacturer_id, chain.hospital_id, chain.product_id, 1)
        transfer_engine.transfer(chain.manufacturer_id, chain.hospital_id, filler.id, 2)
        thread_use = consumption_engine.consume_for_treatment(
            chain.hospital_id, chain.product_id, 1, PHONE, date(2025, 1, 1)
        )
        filler_use = consumption_engine.consume_for_treatment(
            chain.hospital_id, filler.id, 2, PHONE, date(2025, 1, 1)
        )

        assert verification.get_certificate(thread_use.id).product_summary == (
            ("PDO Thread", 1),
        )
        assert verification.get_certificate(filler_use.id).product_summary == (("Filler", 2),)


class TestRecalledCertificate:
    def test_carries_recall_details(self, verification, recall_service, treatment, clock, chain):
        clock.advance_by(timedelta(hours=2))
        recall_service.recall_treatment(treatment.id, chain.hospital_id, "wrong patient")

        certificate = verification.get_certificate(treatment.id)

        assert certificate.is_recalled
        assert certificate.recall_reason == "wrong patient"
        assert certificate.recalled_at == clock.now_utc()
        assert certificate.recall.hospital_name == "Gangnam Skin Clinic"
        assert certificate.recall.hospital_contact == "02-555-0101"
        assert [c.code for c in certificate.codes] == list(treatment.unit_codes)


class TestNotACertificate:
    def test_unknown_id(self, verification):
        with pytest.raises(TreatmentNotFoundError):
            verification.get_certificate(uuid4())

    def test_disposal_is_not_a_certificate(self, verification, produce, consumption_engine, chain):
        produce(2)
        disposal = consumption_engine.consume_for_disposal(
            chain.manufacturer_id, chain.product_id, 1, DisposalReason.DEFECTIVE
        )

        with pytest.raises(TreatmentNotFoundError):
            verification.get_certificate(disposal.id)

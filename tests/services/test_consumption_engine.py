"""
Tests for ConsumptionEngine.

Covers:
- Treatments: FIFO consumption, patient registry, treatment date rules
- Disposals: reasons, detail validation, who may dispose
- All-or-nothing rejection
"""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select

from certify_kernel.domain.enums import (
    ConsumptionKind,
    ConsumptionStatus,
    DisposalReason,
    UnitState,
)
from certify_kernel.exceptions import (
    InsufficientInventoryError,
    InvalidOrganizationTypeError,
    InvalidPhoneNumberError,
    InvalidReasonError,
    ValidationError,
)
from certify_kernel.models.patient import Patient
from certify_kernel.models.unit import Unit

PHONE = "010-1234-5678"


@pytest.fixture
def stocked_hospital(produce, transfer_engine, chain):
    """Hospital holding 5 units of one lot."""
    lot = produce(5)
    transfer_engine.transfer(chain.manufacturer_id, chain.hospital_id, chain.product_id, 5)
    return lot


def _states(session, codes):
    rows = session.execute(select(Unit.code, Unit.state).where(Unit.code.in_(codes))).all()
    return {code: state for code, state in rows}


class TestTreatment:
    def test_consumes_fifo_units(self, consumption_engine, stocked_hospital, session, chain):
        record = consumption_engine.consume_for_treatment(
            chain.hospital_id, chain.product_id, 2, PHONE, date(2025, 1, 1)
        )

        assert record.kind == ConsumptionKind.TREATMENT
        assert record.status == ConsumptionStatus.ACTIVE
        assert record.unit_codes == stocked_hospital.unit_codes[:2]
        assert set(_states(session, record.unit_codes).values()) == {UnitState.CONSUMED}

    def test_patient_phone_is_masked_in_record(self, consumption_engine, stocked_hospital, chain):
        record = consumption_engine.consume_for_treatment(
            chain.hospital_id, chain.product_id, 1, PHONE, date(2025, 1, 1)
        )
        assert record.patient_phone_masked == "010****5678"

    def test_patient_reused_across_formats(self, consumption_engine, stocked_hospital, session, chain):
        consumption_engine.consume_for_treatment(
            chain.hospital_id, chain.product_id, 1, "010-1234-5678", date(2025, 1, 1)
        )
        consumption_engine.consume_for_treatment(
            chain.hospital_id, chain.product_id, 1, "01012345678", date(2025, 1, 1)
        )

        count = session.execute(
            select(func.count(Patient.id)).where(Patient.hospital_id == chain.hospital_id)
        ).scalar_one()
        assert count == 1

    def test_invalid_phone(self, consumption_engine, stocked_hospital, chain):
        with pytest.raises(InvalidPhoneNumberError):
            consumption_engine.consume_for_treatment(
                chain.hospital_id, chain.product_id, 1, "12345", date(2025, 1, 1)
            )

    def test_future_treatment_date(self, consumption_engine, stocked_hospital, chain):
        with pytest.raises(ValidationError) as exc_info:
            consumption_engine.consume_for_treatment(
                chain.hospital_id, chain.product_id, 1, PHONE, date(2025, 1, 2)
            )
        assert exc_info.value.field == "treatment_date"

    def test_today_uses_display_timezone(self, consumption_engine, stocked_hospital, clock, chain):
        # 16:00 UTC on Dec 31 is already Jan 1 in Seoul.
        clock.set_time(datetime(2024, 12, 31, 16, 0, tzinfo=timezone.utc))

        record = consumption_engine.consume_for_treatment(
            chain.hospital_id, chain.product_id, 1, PHONE, date(2025, 1, 1)
        )

        assert record.treatment_date == date(2025, 1, 1)

    def test_only_hospitals_treat(self, consumption_engine, produce, chain):
        produce(1)
        with pytest.raises(InvalidOrganizationTypeError):
            consumption_engine.consume_for_treatment(
                chain.manufacturer_id, chain.product_id, 1, PHONE, date(2025, 1, 1)
            )

    def test_insufficient_consumes_nothing(self, consumption_engine, stocked_hospital, session, chain):
        with pytest.raises(InsufficientInventoryError):
            consumption_engine.consume_for_treatment(
                chain.hospital_id, chain.product_id, 6, PHONE, date(2025, 1, 1)
            )

        assert set(_states(session, stocked_hospital.unit_codes).values()) == {UnitState.IN_STOCK}
        patients = session.execute(select(func.count(Patient.id))).scalar_one()
        assert patients == 0


class TestDisposal:
    def test_dispose_with_reason(self, consumption_engine, produce, session, chain):
        lot = produce(3)

        record = consumption_engine.consume_for_disposal(
            chain.manufacturer_id, chain.product_id, 2, DisposalReason.DEFECTIVE
        )

        assert record.kind == ConsumptionKind.DISPOSAL
        assert record.disposal_reason == DisposalReason.DEFECTIVE
        assert record.unit_codes == lot.unit_codes[:2]
        assert set(_states(session, record.unit_codes).values()) == {UnitState.DISPOSED}

    def test_reason_accepts_string(self, consumption_engine, produce, chain):
        produce(1)
        record = consumption_engine.consume_for_disposal(
            chain.manufacturer_id, chain.product_id, 1, "expired"
        )
        assert record.disposal_reason == DisposalReason.EXPIRED

    def test_other_requires_detail(self, consumption_engine, produce, chain):
        produce(1)
        with pytest.raises(InvalidReasonError):
            consumption_engine.consume_for_disposal(
                chain.manufacturer_id, chain.product_id, 1, DisposalReason.OTHER, reason_detail="  "
            )

    def test_other_with_detail(self, consumption_engine, produce, chain):
        produce(1)
        record = consumption_engine.consume_for_disposal(
            chain.manufacturer_id,
            chain.product_id,
            1,
            DisposalReason.OTHER,
            reason_detail=" dropped on floor ",
        )
        assert record.disposal_reason_detail == "dropped on floor"

    def test_detail_length_limit(self, consumption_engine, produce, chain):
        produce(1)
        with pytest.raises(InvalidReasonError):
            consumption_engine.consume_for_disposal(
                chain.manufacturer_id,
                chain.product_id,
                1,
                DisposalReason.TREATMENT_LOSS,
                reason_detail="x" * 501,
            )

    def test_unknown_reason(self, consumption_engine, produce, chain):
        produce(1)
        with pytest.raises(ValidationError) as exc_info:
            consumption_engine.consume_for_disposal(
                chain.manufacturer_id, chain.product_id, 1, "stolen"
            )
        assert exc_info.value.field == "reason_type"

    def test_admin_cannot_dispose(self, consumption_engine, chain):
        with pytest.raises(InvalidOrganizationTypeError):
            consumption_engine.consume_for_disposal(
                chain.admin_id, chain.product_id, 1, DisposalReason.TREATMENT_LOSS
            )

    def test_disposed_units_leave_inventory(self, consumption_engine, produce, inventory, chain):
        produce(4)
        consumption_engine.consume_for_disposal(
            chain.manufacturer_id, chain.product_id, 3, DisposalReason.EXPIRED
        )
        assert inventory.count(chain.manufacturer_id, chain.product_id) == 1

"""
Tests for RecallService.

Covers:
- Treatment recall inside and at the edge of the 24-hour window
- Receiver-only and exactly-once reversal rules
- Shipment return: no time limit, all units must still be held in stock
- Eligibility checks and the returnable-shipments list
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from certify_kernel.domain.enums import ConsumptionStatus, TransferStatus, UnitState
from certify_kernel.exceptions import (
    AlreadyRecalledError,
    AlreadyReturnedError,
    CodesNotOwnedError,
    InvalidReasonError,
    NotReceiverError,
    RecallTimeExceededError,
    ShipmentNotFoundError,
    TreatmentNotFoundError,
)
from certify_kernel.models.unit import Unit

PHONE = "010-1234-5678"


def _units(session, codes):
    return session.execute(select(Unit).where(Unit.code.in_(codes))).scalars().all()


@pytest.fixture
def shipment(produce, transfer_engine, chain):
    """Five units shipped manufacturer -> hospital."""
    produce(5)
    return transfer_engine.transfer(
        chain.manufacturer_id, chain.hospital_id, chain.product_id, 5
    )


@pytest.fixture
def treatment(shipment, consumption_engine, chain):
    return consumption_engine.consume_for_treatment(
        chain.hospital_id, chain.product_id, 2, PHONE, date(2025, 1, 1)
    )


class TestRecallTreatment:
    def test_recall_inside_window(self, recall_service, treatment, clock, session, chain):
        clock.advance_by(timedelta(hours=23, minutes=59))

        record = recall_service.recall_treatment(treatment.id, chain.hospital_id, "wrong patient")

        assert record.status == ConsumptionStatus.RECALLED
        assert record.recalled_at == clock.now_utc()
        assert record.recall_reason == "wrong patient"
        for unit in _units(session, treatment.unit_codes):
            assert unit.state == UnitState.IN_STOCK
            assert unit.owner_id == chain.hospital_id

    def test_refused_at_exact_deadline(self, recall_service, treatment, clock, chain):
        clock.advance_by(timedelta(hours=24))

        with pytest.raises(RecallTimeExceededError) as exc_info:
            recall_service.recall_treatment(treatment.id, chain.hospital_id, "late")

        assert exc_info.value.deadline == treatment.occurred_at + timedelta(hours=24)

    def test_refused_after_deadline(self, recall_service, treatment, clock, session, chain):
        clock.advance_by(timedelta(hours=24, minutes=1))

        with pytest.raises(RecallTimeExceededError):
            recall_service.recall_treatment(treatment.id, chain.hospital_id, "late")

        assert {u.state for u in _units(session, treatment.unit_codes)} == {UnitState.CONSUMED}

    def test_other_hospital_cannot_recall(self, recall_service, treatment, chain):
        with pytest.raises(NotReceiverError):
            recall_service.recall_treatment(treatment.id, chain.other_hospital_id, "mistake")

    def test_second_recall_refused(self, recall_service, treatment, chain):
        recall_service.recall_treatment(treatment.id, chain.hospital_id, "mistake")

        with pytest.raises(AlreadyRecalledError) as exc_info:
            recall_service.recall_treatment(treatment.id, chain.hospital_id, "again")
        assert exc_info.value.reversed_at is not None

    def test_reason_required(self, recall_service, treatment, chain):
        with pytest.raises(InvalidReasonError):
            recall_service.recall_treatment(treatment.id, chain.hospital_id, "   ")

    def test_reason_length_limit(self, recall_service, treatment, chain):
        with pytest.raises(InvalidReasonError):
            recall_service.recall_treatment(treatment.id, chain.hospital_id, "x" * 501)

    def test_disposal_is_not_a_treatment(self, recall_service, consumption_engine, shipment, chain):
        disposal = consumption_engine.consume_for_disposal(
            chain.hospital_id, chain.product_id, 1, "expired"
        )
        with pytest.raises(TreatmentNotFoundError):
            recall_service.recall_treatment(disposal.id, chain.hospital_id, "mistake")

    def test_recalled_units_can_be_used_again(
        self, recall_service, consumption_engine, treatment, clock, chain
    ):
        recall_service.recall_treatment(treatment.id, chain.hospital_id, "wrong patient")
        clock.advance(60)

        again = consumption_engine.consume_for_treatment(
            chain.hospital_id, chain.product_id, 5, "010-9999-0000", date(2025, 1, 1)
        )

        assert set(treatment.unit_codes) <= set(again.unit_codes)


class TestCanRecallTreatment:
    def test_allowed_with_remaining_time(self, recall_service, treatment, clock, chain):
        clock.advance_by(timedelta(hours=20))

        result = recall_service.can_recall_treatment(treatment.id, chain.hospital_id)

        assert result.allowed
        assert result.remaining == timedelta(hours=4)

    def test_expired(self, recall_service, treatment, clock, chain):
        clock.advance_by(timedelta(days=2))

        result = recall_service.can_recall_treatment(treatment.id, chain.hospital_id)

        assert not result.allowed
        assert result.reason_code == "RECALL_TIME_EXCEEDED"
        assert result.remaining == timedelta(0)

    def test_check_does_not_mutate(self, recall_service, treatment, chain):
        recall_service.can_recall_treatment(treatment.id, chain.hospital_id)
        record = recall_service.recall_treatment(treatment.id, chain.hospital_id, "ok")
        assert record.status == ConsumptionStatus.RECALLED


class TestReturnShipment:
    def test_return_moves_everything_back(self, recall_service, shipment, inventory, chain):
        record = recall_service.return_shipment(shipment.id, chain.hospital_id, "wrong order")

        assert record.status == TransferStatus.RETURNED
        assert record.return_reason == "wrong order"
        assert inventory.count(chain.hospital_id, chain.product_id) == 0
        assert inventory.count(chain.manufacturer_id, chain.product_id) == 5

    def test_no_time_limit(self, recall_service, shipment, clock, chain):
        clock.advance_by(timedelta(days=90))

        record = recall_service.return_shipment(shipment.id, chain.hospital_id, "overstock")

        assert record.returned_at == clock.now_utc()

    def test_only_receiver_may_return(self, recall_service, shipment, chain):
        with pytest.raises(NotReceiverError):
            recall_service.return_shipment(shipment.id, chain.manufacturer_id, "mine")

    def test_second_return_refused(self, recall_service, shipment, chain):
        recall_service.return_shipment(shipment.id, chain.hospital_id, "wrong order")
        with pytest.raises(AlreadyReturnedError):
            recall_service.return_shipment(shipment.id, chain.hospital_id, "again")

    def test_consumed_unit_blocks_return(
        self, recall_service, treatment, shipment, inventory, chain
    ):
        with pytest.raises(CodesNotOwnedError) as exc_info:
            recall_service.return_shipment(shipment.id, chain.hospital_id, "wrong order")

        assert exc_info.value.missing_codes == list(treatment.unit_codes)
        assert inventory.count(chain.hospital_id, chain.product_id) == 3

    def test_forwarded_unit_blocks_return(self, recall_service, produce, transfer_engine, chain):
        produce(3)
        inbound = transfer_engine.transfer(
            chain.manufacturer_id, chain.distributor_id, chain.product_id, 3
        )
        onward = transfer_engine.transfer(
            chain.distributor_id, chain.hospital_id, chain.product_id, 1
        )

        with pytest.raises(CodesNotOwnedError) as exc_info:
            recall_service.return_shipment(inbound.id, chain.distributor_id, "wrong order")
        assert exc_info.value.missing_codes == list(onward.unit_codes)

    def test_unknown_shipment(self, recall_service, treatment, chain):
        with pytest.raises(ShipmentNotFoundError):
            recall_service.return_shipment(treatment.id, chain.hospital_id, "wrong order")

    def test_provenance_after_return(self, recall_service, shipment, ledger, session, chain):
        recall_service.return_shipment(shipment.id, chain.hospital_id, "wrong order")

        for unit in _units(session, shipment.unit_codes):
            assert ledger.verify_provenance(unit.id) == chain.manufacturer_id


class TestReturnableShipments:
    def test_lists_only_fully_held_shipments(
        self, recall_service, produce, transfer_engine, consumption_engine, clock, chain
    ):
        produce(4)
        first = transfer_engine.transfer(
            chain.manufacturer_id, chain.hospital_id, chain.product_id, 2
        )
        clock.advance(60)
        second = transfer_engine.transfer(
            chain.manufacturer_id, chain.hospital_id, chain.product_id, 2
        )

        assert [r.id for r in recall_service.list_returnable_shipments(chain.hospital_id)] == [
            second.id,
            first.id,
        ]

        consumption_engine.consume_for_treatment(
            chain.hospital_id, chain.product_id, 1, PHONE, date(2025, 1, 1)
        )

        assert [r.id for r in recall_service.list_returnable_shipments(chain.hospital_id)] == [
            second.id
        ]

    def test_returned_shipment_is_not_listed(self, recall_service, shipment, chain):
        recall_service.return_shipment(shipment.id, chain.hospital_id, "wrong order")
        assert recall_service.list_returnable_shipments(chain.hospital_id) == []

    def test_can_return_reports_code(self, recall_service, treatment, shipment, chain):
        result = recall_service.can_return_shipment(shipment.id, chain.hospital_id)
        assert not result.allowed
        assert result.reason_code == "CODES_NOT_OWNED"

"""
Tests for LotAllocator.

Covers:
- Lot numbering and expiry from manufacturer settings
- Unit generation (codes, owner, state) and conservation
- Rejections that must leave nothing behind
"""

from datetime import date

import pytest
from sqlalchemy import func, select

from certify_kernel.domain.enums import OrganizationType, UnitState
from certify_kernel.exceptions import (
    InvalidOrganizationTypeError,
    InvalidQuantityError,
    InvalidSettingsError,
    OrganizationInactiveError,
    ProductNotFoundError,
    ProductNotOwnedError,
)
from certify_kernel.models.lot import Lot
from certify_kernel.models.unit import Unit


def _lot_count(session) -> int:
    return session.execute(select(func.count(Lot.id))).scalar_one()


class TestCreateLot:
    def test_lot_number_and_expiry(self, produce):
        lot = produce(5, date(2024, 12, 1))

        assert lot.lot_number == "ND00001241201"
        assert lot.quantity == 5
        assert lot.expiry_date == date(2026, 11, 30)

    def test_units_created_in_stock_for_manufacturer(self, produce, session, chain):
        lot = produce(3)

        units = session.execute(
            select(Unit).where(Unit.lot_id == lot.id).order_by(Unit.serial)
        ).scalars().all()

        assert [u.code for u in units] == ["NC-00000001", "NC-00000002", "NC-00000003"]
        assert list(lot.unit_codes) == [u.code for u in units]
        assert all(u.owner_id == chain.manufacturer_id for u in units)
        assert all(u.state == UnitState.IN_STOCK for u in units)

    def test_codes_and_serials_continue_across_lots(self, produce):
        first = produce(2)
        second = produce(2)

        assert second.lot_number.startswith("ND00002")
        assert second.unit_codes == ("NC-00000003", "NC-00000004")
        assert set(first.unit_codes).isdisjoint(second.unit_codes)

    def test_conservation_holds(self, produce, ledger):
        lot = produce(25)
        assert ledger.verify_conservation(lot.id) == 25

    def test_custom_settings(self, produce, organization_service, chain):
        organization_service.update_manufacturer_settings(
            chain.manufacturer_id,
            lot_prefix="AB",
            lot_model_digits=3,
            lot_date_format="yyyymmdd",
            expiry_months=12,
        )

        lot = produce(1, date(2024, 12, 1))

        assert lot.lot_number == "AB00120241201"
        assert lot.expiry_date == date(2025, 11, 30)

    def test_lot_serial_overflow(self, produce, organization_service, chain):
        organization_service.update_manufacturer_settings(
            chain.manufacturer_id, lot_model_digits=1
        )
        for _ in range(9):
            produce(1)

        with pytest.raises(InvalidSettingsError):
            produce(1)


class TestCreateLotRejections:
    @pytest.mark.parametrize("quantity", [0, -3, 100_001])
    def test_quantity_bounds(self, produce, session, quantity):
        with pytest.raises(InvalidQuantityError):
            produce(quantity)
        assert _lot_count(session) == 0

    def test_inactive_manufacturer(self, produce, organization_service, chain, session):
        organization_service.deactivate(chain.manufacturer_id)
        with pytest.raises(OrganizationInactiveError):
            produce(1)
        assert _lot_count(session) == 0

    def test_distributor_cannot_produce(self, lot_allocator, chain):
        with pytest.raises(InvalidOrganizationTypeError):
            lot_allocator.create_lot(chain.distributor_id, chain.product_id, 1, date(2024, 1, 1))

    def test_product_of_other_manufacturer(self, lot_allocator, organization_service, chain):
        other = organization_service.register("Other Maker", OrganizationType.MANUFACTURER)
        organization_service.approve(other.id)

        with pytest.raises(ProductNotOwnedError):
            lot_allocator.create_lot(other.id, chain.product_id, 1, date(2024, 1, 1))

    def test_inactive_product(self, produce, organization_service, chain):
        organization_service.deactivate_product(chain.product_id, chain.manufacturer_id)
        with pytest.raises(ProductNotFoundError):
            produce(1)

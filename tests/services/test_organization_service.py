"""
Tests for OrganizationService.

Covers:
- Registration and the approval lifecycle
- Manufacturer settings defaults and validation
- Product catalog
- require_* lookups used by the ledger services
"""

from uuid import uuid4

import pytest

from certify_kernel.domain.enums import OrganizationStatus, OrganizationType
from certify_kernel.domain.lot_numbering import LotDateFormat
from certify_kernel.exceptions import (
    DuplicateBusinessNumberError,
    DuplicateUdiDiError,
    InvalidOrganizationTypeError,
    InvalidSettingsError,
    InvalidStatusTransitionError,
    OrganizationInactiveError,
    OrganizationNotFoundError,
    ProductNotFoundError,
    ProductNotOwnedError,
    ValidationError,
)


class TestRegistration:
    def test_register_starts_pending(self, organization_service):
        record = organization_service.register(
            "Neo Dermal", OrganizationType.MANUFACTURER, business_number="123-45-67890"
        )

        assert record.status == OrganizationStatus.PENDING
        assert record.org_type == OrganizationType.MANUFACTURER
        assert record.business_number == "1234567890"

    def test_manufacturer_gets_default_settings(self, organization_service, rules):
        record = organization_service.register("Neo Dermal", OrganizationType.MANUFACTURER)
        org = organization_service.get_organization(record.id)

        lot_rules = organization_service.get_lot_rules(org)

        assert lot_rules.prefix == rules.default_lot_prefix
        assert lot_rules.model_digits == rules.default_lot_model_digits
        assert lot_rules.date_format == LotDateFormat.YYMMDD
        assert lot_rules.expiry_months == rules.default_expiry_months

    def test_hospital_has_no_settings(self, organization_service):
        record = organization_service.register("Clinic", OrganizationType.HOSPITAL)
        assert organization_service.get_organization(record.id).settings is None

    def test_blank_name_rejected(self, organization_service):
        with pytest.raises(ValidationError):
            organization_service.register("   ", OrganizationType.HOSPITAL)

    def test_malformed_business_number_rejected(self, organization_service):
        with pytest.raises(ValidationError) as exc_info:
            organization_service.register(
                "Clinic", OrganizationType.HOSPITAL, business_number="12-34"
            )
        assert exc_info.value.field == "business_number"

    def test_duplicate_business_number_rejected(self, organization_service):
        organization_service.register(
            "Neo Dermal", OrganizationType.MANUFACTURER, business_number="123-45-67890"
        )

        with pytest.raises(DuplicateBusinessNumberError) as exc_info:
            organization_service.register(
                "Copycat", OrganizationType.HOSPITAL, business_number="1234567890"
            )

        assert exc_info.value.code == "DUPLICATE_BUSINESS_NUMBER"
        assert exc_info.value.business_number == "1234567890"

    def test_duplicate_business_number_race_keeps_session_usable(
        self, organization_service, monkeypatch
    ):
        organization_service.register(
            "Neo Dermal", OrganizationType.MANUFACTURER, business_number="1234567890"
        )
        # Simulate a concurrent registration that slipped past the lookup.
        monkeypatch.setattr(
            organization_service, "_require_unique_business_number", lambda bn: None
        )

        with pytest.raises(DuplicateBusinessNumberError):
            organization_service.register(
                "Copycat", OrganizationType.HOSPITAL, business_number="1234567890"
            )

        record = organization_service.register("Clinic", OrganizationType.HOSPITAL)
        assert organization_service.get_organization(record.id).name == "Clinic"

    def test_organizations_without_business_number_coexist(self, organization_service):
        first = organization_service.register("Clinic A", OrganizationType.HOSPITAL)
        second = organization_service.register("Clinic B", OrganizationType.HOSPITAL)
        assert first.id != second.id


class TestLifecycle:
    @pytest.fixture
    def pending_id(self, organization_service):
        return organization_service.register("Clinic", OrganizationType.HOSPITAL).id

    def test_approve_sets_active_and_timestamp(self, organization_service, pending_id, clock):
        record = organization_service.approve(pending_id)

        assert record.status == OrganizationStatus.ACTIVE
        assert organization_service.get_organization(pending_id).approved_at == clock.now_utc()

    def test_reject_pending(self, organization_service, pending_id):
        assert organization_service.reject(pending_id).status == OrganizationStatus.DELETED

    def test_deactivate_and_reactivate(self, organization_service, pending_id):
        organization_service.approve(pending_id)

        assert organization_service.deactivate(pending_id).status == OrganizationStatus.INACTIVE
        assert organization_service.reactivate(pending_id).status == OrganizationStatus.ACTIVE

    def test_cannot_approve_twice(self, organization_service, pending_id):
        organization_service.approve(pending_id)
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            organization_service.approve(pending_id)
        assert exc_info.value.code == "INVALID_STATUS_TRANSITION"

    def test_cannot_deactivate_pending(self, organization_service, pending_id):
        with pytest.raises(InvalidStatusTransitionError):
            organization_service.deactivate(pending_id)

    def test_deleted_is_terminal(self, organization_service, pending_id):
        organization_service.delete(pending_id)
        with pytest.raises(InvalidStatusTransitionError):
            organization_service.reactivate(pending_id)

    def test_unknown_organization(self, organization_service):
        with pytest.raises(OrganizationNotFoundError):
            organization_service.approve(uuid4())


class TestRequireActive:
    def test_pending_is_inactive(self, organization_service):
        org_id = organization_service.register("Clinic", OrganizationType.HOSPITAL).id
        with pytest.raises(OrganizationInactiveError) as exc_info:
            organization_service.require_active(org_id)
        assert exc_info.value.status == "pending"

    def test_type_restriction(self, organization_service, chain):
        with pytest.raises(InvalidOrganizationTypeError):
            organization_service.require_active(
                chain.hospital_id, frozenset({OrganizationType.MANUFACTURER}), "produce lots"
            )


class TestManufacturerSettings:
    def test_partial_update(self, organization_service, chain):
        lot_rules = organization_service.update_manufacturer_settings(
            chain.manufacturer_id, lot_prefix="AB", expiry_months=12
        )

        assert lot_rules.prefix == "AB"
        assert lot_rules.model_digits == 5
        assert lot_rules.expiry_months == 12

    def test_expiry_must_be_an_offered_option(self, organization_service, chain):
        with pytest.raises(InvalidSettingsError) as exc_info:
            organization_service.update_manufacturer_settings(
                chain.manufacturer_id, expiry_months=7
            )
        assert exc_info.value.setting == "expiry_months"

    def test_invalid_prefix(self, organization_service, chain):
        with pytest.raises(InvalidSettingsError):
            organization_service.update_manufacturer_settings(
                chain.manufacturer_id, lot_prefix="ab1"
            )

    def test_only_manufacturers(self, organization_service, chain):
        with pytest.raises(InvalidOrganizationTypeError):
            organization_service.update_manufacturer_settings(
                chain.distributor_id, lot_prefix="AB"
            )


class TestProducts:
    def test_register_product(self, organization_service, chain):
        product = organization_service.register_product(
            chain.manufacturer_id, "Filler", "HA-1ML", "08800099999999"
        )
        assert product.is_active
        assert product.manufacturer_id == chain.manufacturer_id

    def test_distributor_cannot_own_products(self, organization_service, chain):
        with pytest.raises(InvalidOrganizationTypeError):
            organization_service.register_product(
                chain.distributor_id, "Filler", "HA-1ML", "08800099999999"
            )

    def test_missing_udi_rejected(self, organization_service, chain):
        with pytest.raises(ValidationError):
            organization_service.register_product(chain.manufacturer_id, "Filler", "HA", "")

    def test_duplicate_udi_di_rejected(self, organization_service, chain):
        other = organization_service.register("Other Maker", OrganizationType.MANUFACTURER)

        with pytest.raises(DuplicateUdiDiError) as exc_info:
            organization_service.register_product(
                other.id, "Copy", "PDO-19G-100", " 08800012345678 "
            )

        assert exc_info.value.code == "DUPLICATE_UDI_DI"
        assert exc_info.value.udi_di == "08800012345678"

    def test_require_owned_product(self, organization_service, chain):
        other = organization_service.register("Other Maker", OrganizationType.MANUFACTURER)
        with pytest.raises(ProductNotOwnedError):
            organization_service.require_owned_product(chain.product_id, other.id)

    def test_deactivated_product_is_not_usable(self, organization_service, chain):
        organization_service.deactivate_product(chain.product_id, chain.manufacturer_id)
        with pytest.raises(ProductNotFoundError):
            organization_service.require_owned_product(chain.product_id, chain.manufacturer_id)

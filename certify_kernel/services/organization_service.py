"""
Service layer for organizations, manufacturer settings and products.

Manages the organization approval lifecycle (PENDING -> ACTIVE ->
INACTIVE/DELETED), the per-manufacturer lot-numbering settings, and the
product catalog.  Also provides the ``require_*`` lookups every other
service uses to load and validate the parties of an operation.

Returns OrganizationRecord / ProductRecord DTOs instead of ORM entities
from its public mutators.
"""

from __future__ import annotations

import re
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from certify_kernel.domain.dtos import OrganizationRecord, ProductRecord
from certify_kernel.domain.enums import OrganizationStatus, OrganizationType
from certify_kernel.domain.lot_numbering import (
    LotNumberingRules,
    parse_date_format,
    validate_lot_rules,
)
from certify_kernel.domain.rules import LedgerRules
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
from certify_kernel.logging_config import get_logger
from certify_kernel.models.organization import ManufacturerSettings, Organization
from certify_kernel.models.product import Product
from certify_kernel.services.base import BaseService

logger = get_logger("services.organization")

_NON_DIGITS = re.compile(r"\D")

# from-status -> allowed to-statuses
_TRANSITIONS: dict[OrganizationStatus, frozenset[OrganizationStatus]] = {
    OrganizationStatus.PENDING: frozenset(
        {OrganizationStatus.ACTIVE, OrganizationStatus.DELETED}
    ),
    OrganizationStatus.ACTIVE: frozenset(
        {OrganizationStatus.INACTIVE, OrganizationStatus.DELETED}
    ),
    OrganizationStatus.INACTIVE: frozenset(
        {OrganizationStatus.ACTIVE, OrganizationStatus.DELETED}
    ),
    OrganizationStatus.DELETED: frozenset(),
}


class OrganizationService(BaseService[Organization]):
    """
    Service for managing organizations and their catalog.

    Contract:
        Status changes follow the lifecycle table; anything else raises
        InvalidStatusTransitionError.  Registering a manufacturer also
        creates its ManufacturerSettings with the configured defaults.
    """

    def __init__(self, session, clock=None, rules: LedgerRules | None = None):
        super().__init__(session, clock)
        self.rules = rules or LedgerRules()

    # =========================================================================
    # Lookups used by other services
    # =========================================================================

    def get_organization(self, organization_id: UUID, lock: bool = False) -> Organization:
        """
        Load an organization.

        Raises:
            OrganizationNotFoundError: Unknown id.
        """
        stmt = select(Organization).where(Organization.id == organization_id)
        if lock:
            stmt = stmt.with_for_update(of=Organization)
        org = self.session.execute(stmt).scalar_one_or_none()
        if org is None:
            raise OrganizationNotFoundError(str(organization_id))
        return org

    def require_active(
        self,
        organization_id: UUID,
        allowed_types: frozenset[OrganizationType] | None = None,
        action: str = "perform this action",
    ) -> Organization:
        """
        Load an organization and check it may transact.

        Raises:
            OrganizationNotFoundError: Unknown id.
            OrganizationInactiveError: Status is not ACTIVE.
            InvalidOrganizationTypeError: Type not in ``allowed_types``.
        """
        org = self.get_organization(organization_id)
        if not org.can_transact:
            raise OrganizationInactiveError(str(org.id), str(OrganizationStatus(org.status).value))
        if allowed_types is not None and OrganizationType(org.org_type) not in allowed_types:
            raise InvalidOrganizationTypeError(
                str(org.id), OrganizationType(org.org_type).value, action
            )
        return org

    def get_product(self, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def require_owned_product(self, product_id: UUID, manufacturer_id: UUID) -> Product:
        """
        Load an active product belonging to ``manufacturer_id``.

        Raises:
            ProductNotFoundError: Unknown or inactive product.
            ProductNotOwnedError: Product belongs to another manufacturer.
        """
        product = self.get_product(product_id)
        if product.manufacturer_id != manufacturer_id:
            raise ProductNotOwnedError(str(product_id), str(manufacturer_id))
        if not product.is_active:
            raise ProductNotFoundError(str(product_id))
        return product

    def get_lot_rules(self, manufacturer: Organization) -> LotNumberingRules:
        settings = manufacturer.settings
        if settings is None:
            settings = self._create_default_settings(manufacturer)
        return LotNumberingRules(
            prefix=settings.lot_prefix,
            model_digits=settings.lot_model_digits,
            date_format=parse_date_format(settings.lot_date_format),
            expiry_months=settings.expiry_months,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def register(
        self,
        name: str,
        org_type: OrganizationType,
        business_number: str | None = None,
        representative_contact: str | None = None,
    ) -> OrganizationRecord:
        """
        Register a new organization in PENDING status.

        Raises:
            ValidationError: Empty name or malformed business number.
            DuplicateBusinessNumberError: Business number already registered.
        """
        if not name or not name.strip():
            raise ValidationError("Organization name is required", field="name")
        normalized_bn = None
        if business_number:
            normalized_bn = _NON_DIGITS.sub("", business_number)
            if len(normalized_bn) != 10:
                raise ValidationError(
                    f"Business number must have 10 digits: {business_number!r}",
                    field="business_number",
                )
            self._require_unique_business_number(normalized_bn)

        org = Organization(
            name=name.strip(),
            org_type=OrganizationType(org_type),
            status=OrganizationStatus.PENDING,
            business_number=normalized_bn,
            representative_contact=representative_contact,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(org)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Registered concurrently after the lookup above.
            savepoint.rollback()
            raise DuplicateBusinessNumberError(normalized_bn)
        if org.org_type == OrganizationType.MANUFACTURER:
            self._create_default_settings(org)

        logger.info(
            "organization_registered",
            extra={"organization_id": str(org.id), "org_type": OrganizationType(org_type).value},
        )
        return OrganizationRecord.from_model(org)

    def _require_unique_business_number(self, business_number: str | None) -> None:
        if business_number is None:
            return
        existing = self.session.execute(
            select(Organization.id).where(Organization.business_number == business_number)
        ).first()
        if existing is not None:
            raise DuplicateBusinessNumberError(business_number)

    def _create_default_settings(self, org: Organization) -> ManufacturerSettings:
        settings = ManufacturerSettings(
            manufacturer_id=org.id,
            lot_prefix=self.rules.default_lot_prefix,
            lot_model_digits=self.rules.default_lot_model_digits,
            lot_date_format=self.rules.default_lot_date_format,
            expiry_months=self.rules.default_expiry_months,
        )
        self.session.add(settings)
        self.session.flush()
        org.settings = settings
        return settings

    def _transition(self, organization_id: UUID, to_status: OrganizationStatus) -> Organization:
        org = self.get_organization(organization_id, lock=True)
        from_status = OrganizationStatus(org.status)
        if to_status not in _TRANSITIONS[from_status]:
            raise InvalidStatusTransitionError(
                str(organization_id), from_status.value, to_status.value
            )
        org.status = to_status
        if to_status == OrganizationStatus.ACTIVE and org.approved_at is None:
            org.approved_at = self.clock.now_utc()
        self.session.flush()
        logger.info(
            "organization_status_changed",
            extra={
                "organization_id": str(organization_id),
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        return org

    def approve(self, organization_id: UUID) -> OrganizationRecord:
        """PENDING -> ACTIVE."""
        org = self.get_organization(organization_id)
        if org.status != OrganizationStatus.PENDING:
            raise InvalidStatusTransitionError(
                str(organization_id),
                OrganizationStatus(org.status).value,
                OrganizationStatus.ACTIVE.value,
            )
        return OrganizationRecord.from_model(
            self._transition(organization_id, OrganizationStatus.ACTIVE)
        )

    def reject(self, organization_id: UUID) -> OrganizationRecord:
        """PENDING -> DELETED."""
        org = self.get_organization(organization_id)
        if org.status != OrganizationStatus.PENDING:
            raise InvalidStatusTransitionError(
                str(organization_id),
                OrganizationStatus(org.status).value,
                OrganizationStatus.DELETED.value,
            )
        return OrganizationRecord.from_model(
            self._transition(organization_id, OrganizationStatus.DELETED)
        )

    def deactivate(self, organization_id: UUID) -> OrganizationRecord:
        """ACTIVE -> INACTIVE."""
        return OrganizationRecord.from_model(
            self._transition(organization_id, OrganizationStatus.INACTIVE)
        )

    def reactivate(self, organization_id: UUID) -> OrganizationRecord:
        """INACTIVE -> ACTIVE."""
        org = self.get_organization(organization_id)
        if org.status != OrganizationStatus.INACTIVE:
            raise InvalidStatusTransitionError(
                str(organization_id),
                OrganizationStatus(org.status).value,
                OrganizationStatus.ACTIVE.value,
            )
        return OrganizationRecord.from_model(
            self._transition(organization_id, OrganizationStatus.ACTIVE)
        )

    def delete(self, organization_id: UUID) -> OrganizationRecord:
        """Soft delete; the row and its history are kept."""
        return OrganizationRecord.from_model(
            self._transition(organization_id, OrganizationStatus.DELETED)
        )

    # =========================================================================
    # Manufacturer settings
    # =========================================================================

    def update_manufacturer_settings(
        self,
        manufacturer_id: UUID,
        lot_prefix: str | None = None,
        lot_model_digits: int | None = None,
        lot_date_format: str | None = None,
        expiry_months: int | None = None,
    ) -> LotNumberingRules:
        """
        Partially update lot-numbering settings.

        Raises:
            InvalidOrganizationTypeError: Organization is not a manufacturer.
            InvalidSettingsError: Any value out of range.
        """
        org = self.get_organization(manufacturer_id)
        if org.org_type != OrganizationType.MANUFACTURER:
            raise InvalidOrganizationTypeError(
                str(manufacturer_id),
                OrganizationType(org.org_type).value,
                "own lot-numbering settings",
            )
        settings = org.settings or self._create_default_settings(org)

        new_prefix = lot_prefix if lot_prefix is not None else settings.lot_prefix
        new_digits = (
            lot_model_digits if lot_model_digits is not None else settings.lot_model_digits
        )
        new_format = (
            lot_date_format.lower() if lot_date_format is not None else settings.lot_date_format
        )
        new_months = expiry_months if expiry_months is not None else settings.expiry_months

        validate_lot_rules(new_prefix, new_digits, new_format)
        if new_months not in self.rules.expiry_month_options:
            raise InvalidSettingsError(
                "expiry_months",
                new_months,
                f"must be one of {list(self.rules.expiry_month_options)}",
            )

        settings.lot_prefix = new_prefix
        settings.lot_model_digits = new_digits
        settings.lot_date_format = new_format
        settings.expiry_months = new_months
        self.session.flush()

        logger.info(
            "manufacturer_settings_updated",
            extra={
                "organization_id": str(manufacturer_id),
                "lot_prefix": new_prefix,
                "lot_model_digits": new_digits,
                "lot_date_format": new_format,
                "expiry_months": new_months,
            },
        )
        return self.get_lot_rules(org)

    # =========================================================================
    # Products
    # =========================================================================

    def register_product(
        self,
        manufacturer_id: UUID,
        name: str,
        model_name: str,
        udi_di: str,
    ) -> ProductRecord:
        """
        Add a product to a manufacturer's catalog.

        Raises:
            ValidationError: Missing name, model name or UDI-DI.
            InvalidOrganizationTypeError: Owner is not a manufacturer.
            DuplicateUdiDiError: UDI-DI already registered.
        """
        org = self.get_organization(manufacturer_id)
        if org.org_type != OrganizationType.MANUFACTURER:
            raise InvalidOrganizationTypeError(
                str(manufacturer_id), OrganizationType(org.org_type).value, "own products"
            )
        for field_name, value in (("name", name), ("model_name", model_name), ("udi_di", udi_di)):
            if not value or not value.strip():
                raise ValidationError(f"{field_name} is required", field=field_name)

        udi_di = udi_di.strip()
        if self.session.execute(
            select(Product.id).where(Product.udi_di == udi_di)
        ).first() is not None:
            raise DuplicateUdiDiError(udi_di)

        product = Product(
            manufacturer_id=manufacturer_id,
            name=name.strip(),
            model_name=model_name.strip(),
            udi_di=udi_di,
            is_active=True,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(product)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateUdiDiError(udi_di)
        logger.info(
            "product_registered",
            extra={"product_id": str(product.id), "manufacturer_id": str(manufacturer_id)},
        )
        return ProductRecord.from_model(product)

    def deactivate_product(self, product_id: UUID, manufacturer_id: UUID) -> ProductRecord:
        """
        Stop new production of a product.

        Existing lots and units are unaffected; they can still be shipped,
        used and disposed of.
        """
        product = self.get_product(product_id)
        if product.manufacturer_id != manufacturer_id:
            raise ProductNotOwnedError(str(product_id), str(manufacturer_id))
        product.is_active = False
        self.session.flush()
        logger.info(
            "product_deactivated",
            extra={"product_id": str(product_id), "manufacturer_id": str(manufacturer_id)},
        )
        return ProductRecord.from_model(product)

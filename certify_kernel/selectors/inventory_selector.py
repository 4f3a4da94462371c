"""
Module: certify_kernel.selectors.inventory_selector
Responsibility: Read-only inventory queries.  An organization's stock is a
    derived view over Unit rows (owner_id + IN_STOCK); no counts are stored.
Architecture position: Kernel > Selectors.

Failure modes:
    - Returns empty summaries / zero counts when nothing is owned.
"""

from uuid import UUID

from sqlalchemy import func, select

from certify_kernel.domain.dtos import InventoryLine, InventorySummary
from certify_kernel.domain.enums import UnitState
from certify_kernel.models.lot import Lot
from certify_kernel.models.product import Product
from certify_kernel.models.unit import Unit
from certify_kernel.selectors.base import BaseSelector


class InventorySelector(BaseSelector[Unit]):
    """Per-product and per-lot InStock counts for one organization."""

    def _lines(self, organization_id: UUID, product_id: UUID | None = None) -> list[InventoryLine]:
        stmt = (
            select(
                Unit.product_id,
                Product.name,
                Unit.lot_id,
                Lot.lot_number,
                Lot.expiry_date,
                func.count(Unit.id),
            )
            .join(Lot, Unit.lot_id == Lot.id)
            .join(Product, Unit.product_id == Product.id)
            .where(Unit.owner_id == organization_id, Unit.state == UnitState.IN_STOCK)
            .group_by(
                Unit.product_id,
                Product.name,
                Unit.lot_id,
                Lot.lot_number,
                Lot.expiry_date,
                Lot.production_date,
            )
            .order_by(Product.name, Lot.production_date, Lot.lot_number)
        )
        if product_id is not None:
            stmt = stmt.where(Unit.product_id == product_id)
        return [
            InventoryLine(
                product_id=row[0],
                product_name=row[1],
                lot_id=row[2],
                lot_number=row[3],
                expiry_date=row[4],
                quantity=row[5],
            )
            for row in self.session.execute(stmt).all()
        ]

    def summarize(self, organization_id: UUID) -> list[InventorySummary]:
        """Stock grouped by product, each with its lots oldest first."""
        grouped: dict[UUID, list[InventoryLine]] = {}
        for line in self._lines(organization_id):
            grouped.setdefault(line.product_id, []).append(line)
        return [
            InventorySummary(
                product_id=product_id,
                product_name=lines[0].product_name,
                quantity=sum(line.quantity for line in lines),
                lots=tuple(lines),
            )
            for product_id, lines in grouped.items()
        ]

    def for_product(self, organization_id: UUID, product_id: UUID) -> InventorySummary | None:
        lines = self._lines(organization_id, product_id)
        if not lines:
            return None
        return InventorySummary(
            product_id=product_id,
            product_name=lines[0].product_name,
            quantity=sum(line.quantity for line in lines),
            lots=tuple(lines),
        )

    def count(
        self,
        organization_id: UUID,
        product_id: UUID,
        lot_id: UUID | None = None,
    ) -> int:
        stmt = select(func.count(Unit.id)).where(
            Unit.owner_id == organization_id,
            Unit.product_id == product_id,
            Unit.state == UnitState.IN_STOCK,
        )
        if lot_id is not None:
            stmt = stmt.where(Unit.lot_id == lot_id)
        return self.session.execute(stmt).scalar_one()

    def available_codes(
        self,
        organization_id: UUID,
        product_id: UUID,
        lot_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[str]:
        """InStock codes in the order the next allocation would take them."""
        stmt = (
            select(Unit.code)
            .join(Lot, Unit.lot_id == Lot.id)
            .where(
                Unit.owner_id == organization_id,
                Unit.product_id == product_id,
                Unit.state == UnitState.IN_STOCK,
            )
            .order_by(Lot.production_date, Unit.serial)
        )
        if lot_id is not None:
            stmt = stmt.where(Unit.lot_id == lot_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())

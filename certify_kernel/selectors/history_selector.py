"""
Module: certify_kernel.selectors.history_selector
Responsibility: Read-only activity feed of one organization.  Entries are
    synthesized from lots, transfer events and consumption events, plus the
    reversal markers (RECALLED, RETURNED) those events carry.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Reverse-chronological order with a deterministic tie-break on the
      ledger event sequence, so a page boundary never shifts between two
      identical reads.
    - Filtering, counting and pagination run in SQL over a UNION ALL of
      the entry kinds; only the requested page is hydrated with names,
      codes and phones.
    - Patient phones leave the selector masked.

Failure modes:
    - ValidationError for page < 1 or page_size outside 1..max_page_size.
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import String, case, cast, func, literal, null, or_, select, union_all

from certify_kernel.db.base import UUIDString
from certify_kernel.domain.dtos import HistoryEntry, HistoryFilters, PaginatedResult
from certify_kernel.domain.enums import (
    ConsumptionKind,
    ConsumptionStatus,
    HistoryAction,
    TransferStatus,
)
from certify_kernel.domain.phone import mask_phone
from certify_kernel.domain.rules import LedgerRules
from certify_kernel.exceptions import ValidationError
from certify_kernel.logging_config import get_logger
from certify_kernel.models.consumption import ConsumptionEvent, ConsumptionUnit
from certify_kernel.models.lot import Lot
from certify_kernel.models.organization import Organization
from certify_kernel.models.patient import Patient
from certify_kernel.models.product import Product
from certify_kernel.models.transfer import TransferEvent, TransferUnit
from certify_kernel.models.unit import Unit
from certify_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.history")

_TRANSFER_ACTIONS = frozenset(
    {HistoryAction.SHIPPED, HistoryAction.RECEIVED, HistoryAction.RETURNED}
)
_CONSUMPTION_ACTIONS = frozenset(
    {HistoryAction.TREATED, HistoryAction.DISPOSED, HistoryAction.RECALLED}
)
_PATIENT_ACTIONS = frozenset({HistoryAction.TREATED, HistoryAction.RECALLED})


def _action(value: HistoryAction):
    return literal(value.value, String(20)).label("action")


def _no_uuid():
    return cast(null(), UUIDString())


def _no_text():
    return cast(null(), String(500))


class HistoryProjector(BaseSelector[TransferEvent]):
    """
    Paginated history of everything an organization took part in.

    Contract:
        ``get_history`` returns at most ``page_size`` entries of page
        ``page`` (1-based) and the total count after filtering.
    """

    def __init__(self, session, rules: LedgerRules | None = None):
        super().__init__(session)
        self.rules = rules or LedgerRules()

    # =========================================================================
    # Entry sources
    # =========================================================================

    def _entries(self, organization_id: UUID):
        produced = select(
            _action(HistoryAction.PRODUCED),
            Lot.id.label("event_id"),
            Lot.produced_at.label("occurred_at"),
            Lot.sequence.label("sequence"),
            Lot.product_id.label("product_id"),
            Lot.quantity.label("quantity"),
            _no_uuid().label("counterparty_id"),
            Lot.id.label("lot_id"),
            _no_text().label("reason"),
            _no_uuid().label("patient_id"),
        ).where(Lot.manufacturer_id == organization_id)

        def transfer_branch(action: HistoryAction, counterparty, *criteria):
            return select(
                _action(action),
                TransferEvent.id,
                TransferEvent.occurred_at,
                TransferEvent.sequence,
                TransferEvent.product_id,
                TransferEvent.quantity,
                counterparty,
                TransferEvent.lot_id,
                _no_text(),
                _no_uuid(),
            ).where(*criteria)

        shipped = transfer_branch(
            HistoryAction.SHIPPED,
            TransferEvent.dest_org_id,
            TransferEvent.source_org_id == organization_id,
        )
        received = transfer_branch(
            HistoryAction.RECEIVED,
            TransferEvent.source_org_id,
            TransferEvent.dest_org_id == organization_id,
        )
        returned = select(
            _action(HistoryAction.RETURNED),
            TransferEvent.id,
            TransferEvent.returned_at,
            TransferEvent.return_sequence,
            TransferEvent.product_id,
            TransferEvent.quantity,
            case(
                (TransferEvent.source_org_id == organization_id, TransferEvent.dest_org_id),
                else_=TransferEvent.source_org_id,
            ),
            TransferEvent.lot_id,
            TransferEvent.return_reason,
            _no_uuid(),
        ).where(
            TransferEvent.status == TransferStatus.RETURNED,
            or_(
                TransferEvent.source_org_id == organization_id,
                TransferEvent.dest_org_id == organization_id,
            ),
        )

        treated = select(
            _action(HistoryAction.TREATED),
            ConsumptionEvent.id,
            ConsumptionEvent.occurred_at,
            ConsumptionEvent.sequence,
            ConsumptionEvent.product_id,
            ConsumptionEvent.quantity,
            _no_uuid(),
            ConsumptionEvent.lot_id,
            _no_text(),
            ConsumptionEvent.patient_id,
        ).where(
            ConsumptionEvent.org_id == organization_id,
            ConsumptionEvent.kind == ConsumptionKind.TREATMENT,
        )
        disposed = select(
            _action(HistoryAction.DISPOSED),
            ConsumptionEvent.id,
            ConsumptionEvent.occurred_at,
            ConsumptionEvent.sequence,
            ConsumptionEvent.product_id,
            ConsumptionEvent.quantity,
            _no_uuid(),
            ConsumptionEvent.lot_id,
            func.coalesce(
                ConsumptionEvent.disposal_reason_detail, ConsumptionEvent.disposal_reason
            ),
            _no_uuid(),
        ).where(
            ConsumptionEvent.org_id == organization_id,
            ConsumptionEvent.kind == ConsumptionKind.DISPOSAL,
        )
        recalled = select(
            _action(HistoryAction.RECALLED),
            ConsumptionEvent.id,
            ConsumptionEvent.recalled_at,
            ConsumptionEvent.recall_sequence,
            ConsumptionEvent.product_id,
            ConsumptionEvent.quantity,
            _no_uuid(),
            ConsumptionEvent.lot_id,
            ConsumptionEvent.recall_reason,
            ConsumptionEvent.patient_id,
        ).where(
            ConsumptionEvent.org_id == organization_id,
            ConsumptionEvent.status == ConsumptionStatus.RECALLED,
        )

        return union_all(
            produced, shipped, received, returned, treated, disposed, recalled
        ).subquery("history_entries")

    # =========================================================================
    # Query
    # =========================================================================

    def _day_start_utc(self, day: date) -> datetime:
        local = datetime.combine(day, time.min, tzinfo=ZoneInfo(self.rules.display_timezone))
        return local.astimezone(timezone.utc)

    def _apply_filters(self, stmt, entries, filters: HistoryFilters | None):
        if filters is None:
            return stmt
        if filters.action_types is not None:
            stmt = stmt.where(
                entries.c.action.in_([HistoryAction(a).value for a in filters.action_types])
            )
        if filters.is_reversal is not None:
            reversal_values = [a.value for a in HistoryAction if a.is_reversal]
            if filters.is_reversal:
                stmt = stmt.where(entries.c.action.in_(reversal_values))
            else:
                stmt = stmt.where(entries.c.action.not_in(reversal_values))
        if filters.start_date is not None:
            stmt = stmt.where(entries.c.occurred_at >= self._day_start_utc(filters.start_date))
        if filters.end_date is not None:
            stmt = stmt.where(
                entries.c.occurred_at
                < self._day_start_utc(filters.end_date + timedelta(days=1))
            )
        return stmt

    def get_history(
        self,
        organization_id: UUID,
        page: int = 1,
        page_size: int | None = None,
        filters: HistoryFilters | None = None,
    ) -> PaginatedResult[HistoryEntry]:
        """
        One page of the organization's history, newest first.

        Date filters are calendar days in the display timezone, both ends
        inclusive.
        """
        if page_size is None:
            page_size = self.rules.default_page_size
        if page < 1:
            raise ValidationError(f"page must be >= 1, got {page}", field="page")
        if not 1 <= page_size <= self.rules.max_page_size:
            raise ValidationError(
                f"page_size must be between 1 and {self.rules.max_page_size}",
                field="page_size",
            )

        entries = self._entries(organization_id)
        total = self.session.execute(
            self._apply_filters(select(func.count()).select_from(entries), entries, filters)
        ).scalar_one()

        stmt = (
            self._apply_filters(select(entries), entries, filters)
            .order_by(
                entries.c.occurred_at.desc(),
                entries.c.sequence.desc(),
                entries.c.action.desc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        rows = self.session.execute(stmt).all()

        logger.debug(
            "history_page_loaded",
            extra={
                "organization_id": str(organization_id),
                "page": page,
                "page_size": page_size,
                "total_count": total,
                "returned": len(rows),
            },
        )
        return PaginatedResult(
            items=tuple(self._hydrate(rows)),
            page=page,
            page_size=page_size,
            total_count=total,
        )

    # =========================================================================
    # Hydration
    # =========================================================================

    def _hydrate(self, rows) -> list[HistoryEntry]:
        if not rows:
            return []
        product_ids = {r.product_id for r in rows}
        org_ids = {r.counterparty_id for r in rows if r.counterparty_id}
        lot_ids = {r.lot_id for r in rows if r.lot_id}
        patient_ids = {r.patient_id for r in rows if r.patient_id}

        products = dict(
            self.session.execute(
                select(Product.id, Product.name).where(Product.id.in_(product_ids))
            ).all()
        )
        organizations = (
            dict(
                self.session.execute(
                    select(Organization.id, Organization.name).where(Organization.id.in_(org_ids))
                ).all()
            )
            if org_ids
            else {}
        )
        lot_numbers = (
            dict(self.session.execute(select(Lot.id, Lot.lot_number).where(Lot.id.in_(lot_ids))).all())
            if lot_ids
            else {}
        )
        phones = (
            dict(
                self.session.execute(
                    select(Patient.id, Patient.phone).where(Patient.id.in_(patient_ids))
                ).all()
            )
            if patient_ids
            else {}
        )
        codes = self._unit_codes(rows)

        entries = []
        for row in rows:
            action = HistoryAction(row.action)
            phone = phones.get(row.patient_id) if action in _PATIENT_ACTIONS else None
            entries.append(
                HistoryEntry(
                    entry_id=f"{action.value}:{row.event_id}",
                    action=action,
                    occurred_at=row.occurred_at,
                    event_id=row.event_id,
                    product_id=row.product_id,
                    quantity=row.quantity,
                    product_name=products.get(row.product_id),
                    counterparty_id=row.counterparty_id,
                    counterparty_name=organizations.get(row.counterparty_id),
                    unit_codes=codes.get((action, row.event_id), ()),
                    lot_number=lot_numbers.get(row.lot_id),
                    patient_phone_masked=mask_phone(phone) if phone else None,
                    reason=row.reason,
                )
            )
        return entries

    def _unit_codes(self, rows) -> dict[tuple[HistoryAction, UUID], tuple[str, ...]]:
        by_source: dict[str, set[UUID]] = defaultdict(set)
        for row in rows:
            action = HistoryAction(row.action)
            if action in _TRANSFER_ACTIONS:
                by_source["transfer"].add(row.event_id)
            elif action in _CONSUMPTION_ACTIONS:
                by_source["consumption"].add(row.event_id)
            else:
                by_source["lot"].add(row.event_id)

        codes: dict[UUID, list[str]] = defaultdict(list)
        if by_source["transfer"]:
            for event_id, code in self.session.execute(
                select(TransferUnit.transfer_id, Unit.code)
                .join(Unit, TransferUnit.unit_id == Unit.id)
                .where(TransferUnit.transfer_id.in_(by_source["transfer"]))
                .order_by(TransferUnit.transfer_id, TransferUnit.position)
            ).all():
                codes[event_id].append(code)
        if by_source["consumption"]:
            for event_id, code in self.session.execute(
                select(ConsumptionUnit.consumption_id, Unit.code)
                .join(Unit, ConsumptionUnit.unit_id == Unit.id)
                .where(ConsumptionUnit.consumption_id.in_(by_source["consumption"]))
                .order_by(ConsumptionUnit.consumption_id, ConsumptionUnit.position)
            ).all():
                codes[event_id].append(code)
        if by_source["lot"]:
            for lot_id, code in self.session.execute(
                select(Unit.lot_id, Unit.code)
                .where(Unit.lot_id.in_(by_source["lot"]))
                .order_by(Unit.lot_id, Unit.serial)
            ).all():
                codes[lot_id].append(code)

        return {
            (HistoryAction(row.action), row.event_id): tuple(codes.get(row.event_id, ()))
            for row in rows
        }

"""
Enumerations shared by the domain, models and selectors.

All enums subclass ``(str, Enum)`` so they serialize as plain strings in
logs, DTOs and ``String`` columns.
"""

from enum import Enum


class OrganizationType(str, Enum):
    MANUFACTURER = "manufacturer"
    DISTRIBUTOR = "distributor"
    HOSPITAL = "hospital"
    ADMIN = "admin"


class OrganizationStatus(str, Enum):
    """
    Organization lifecycle.

    PENDING -> ACTIVE (approve) | DELETED (reject)
    ACTIVE -> INACTIVE (deactivate) | DELETED
    INACTIVE -> ACTIVE (reactivate) | DELETED
    DELETED is terminal.
    """

    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    DELETED = "deleted"


class UnitState(str, Enum):
    IN_STOCK = "in_stock"
    CONSUMED = "consumed"
    DISPOSED = "disposed"


class TransferStatus(str, Enum):
    ACTIVE = "active"
    RETURNED = "returned"


class ConsumptionKind(str, Enum):
    TREATMENT = "treatment"
    DISPOSAL = "disposal"


class ConsumptionStatus(str, Enum):
    ACTIVE = "active"
    RECALLED = "recalled"


class DisposalReason(str, Enum):
    TREATMENT_LOSS = "treatment_loss"
    EXPIRED = "expired"
    DEFECTIVE = "defective"
    OTHER = "other"


class HistoryAction(str, Enum):
    """Entry types synthesized by the history projection."""

    PRODUCED = "produced"
    SHIPPED = "shipped"
    RECEIVED = "received"
    TREATED = "treated"
    DISPOSED = "disposed"
    RECALLED = "recalled"
    RETURNED = "returned"

    @property
    def is_reversal(self) -> bool:
        return self in (HistoryAction.RECALLED, HistoryAction.RETURNED)

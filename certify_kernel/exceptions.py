"""
Typed Exception Hierarchy for the Certify Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every business-rule violation in the ledger has a TYPED exception class
with a machine-readable ``code`` class attribute and structured attributes
(requested quantity, deadline, offending ids).  Services raise these; the
``CertifyKernel`` facade converts them into ``KernelResult`` failures so
callers never parse message strings.

Example - WRONG way to handle errors:
    except Exception as e:
        if "재고" in str(e):  # FRAGILE - message might change
            ...

Example - RIGHT way:
    except InsufficientInventoryError as e:
        api_response(code=e.code, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CertifyKernelError (base)
    |
    +-- ValidationError                       kind=VALIDATION
    |   +-- InvalidQuantityError
    |   +-- InvalidPhoneNumberError
    |   +-- InvalidReasonError
    |   +-- InvalidSettingsError
    |   +-- InvalidStatusTransitionError
    |   +-- DuplicateBusinessNumberError
    |   +-- DuplicateUdiDiError
    |
    +-- NotFoundError                         kind=NOT_FOUND
    |   +-- OrganizationNotFoundError
    |   +-- ProductNotFoundError
    |   +-- LotNotFoundError
    |   +-- TreatmentNotFoundError
    |   +-- ShipmentNotFoundError
    |
    +-- InsufficientInventoryError            kind=INSUFFICIENT_INVENTORY
    |
    +-- ForbiddenError                        kind=FORBIDDEN
    |   +-- OrganizationInactiveError
    |   +-- InvalidOrganizationTypeError
    |   +-- ProductNotOwnedError
    |   +-- TransferNotAllowedError
    |   +-- NotReceiverError
    |
    +-- TimeWindowExceededError               kind=TIME_WINDOW_EXCEEDED
    |   +-- RecallTimeExceededError
    |
    +-- AlreadyReversedError                  kind=ALREADY_REVERSED
    |   +-- AlreadyRecalledError
    |   +-- AlreadyReturnedError
    |
    +-- OwnershipViolationError               kind=OWNERSHIP_VIOLATION
    |   +-- CodesNotOwnedError
    |
    +-- ConcurrencyError                      kind=CONFLICT (retryable)
    |
    +-- InvariantViolationError               programming error, never a result
        +-- ConservationViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Kind                 | Code                     | When Raised
---------------------|--------------------------|-------------------------------
Validation           | VALIDATION_ERROR         | Bad input shape or range
                     | INVALID_PHONE_NUMBER     | Phone fails normalization
                     | INVALID_STATUS_TRANSITION| Illegal organization lifecycle move
                     | DUPLICATE_BUSINESS_NUMBER| Business number already registered
                     | DUPLICATE_UDI_DI         | UDI-DI already registered
NotFound             | ORGANIZATION_NOT_FOUND   | Organization id unknown
                     | PRODUCT_NOT_FOUND        | Product id unknown
                     | LOT_NOT_FOUND            | Lot id unknown
                     | TREATMENT_NOT_FOUND      | Treatment event unknown
                     | SHIPMENT_NOT_FOUND       | Transfer event unknown
InsufficientInventory| INSUFFICIENT_INVENTORY   | Requested > owned InStock units
Forbidden            | ORGANIZATION_INACTIVE    | Org not ACTIVE
                     | INVALID_RECIPIENT        | Transfer pair not allowed
                     | NOT_RECEIVER             | Requester not the event party
TimeWindowExceeded   | RECALL_TIME_EXCEEDED     | Treatment older than the window
AlreadyReversed      | ALREADY_RECALLED         | Treatment recalled twice
                     | ALREADY_RETURNED         | Shipment returned twice
OwnershipViolation   | CODES_NOT_OWNED          | Units moved on before return
Conflict             | CONCURRENT_MODIFICATION  | Store detected a race

===============================================================================
"""

from datetime import datetime
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Taxonomy of failure kinds surfaced to callers."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INSUFFICIENT_INVENTORY = "insufficient_inventory"
    FORBIDDEN = "forbidden"
    TIME_WINDOW_EXCEEDED = "time_window_exceeded"
    ALREADY_REVERSED = "already_reversed"
    OWNERSHIP_VIOLATION = "ownership_violation"
    CONFLICT = "conflict"


class CertifyKernelError(Exception):
    """
    Base exception for all certify kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification and a ``kind`` for taxonomy-level handling.
    """

    code: str = "CERTIFY_KERNEL_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION
    retryable: bool = False

    def details(self) -> dict[str, Any]:
        """Structured attributes carried by this error."""
        return {
            k: v for k, v in vars(self).items() if not k.startswith("_")
        }


# =============================================================================
# Validation
# =============================================================================


class ValidationError(CertifyKernelError):
    """Bad input shape or range."""

    code: str = "VALIDATION_ERROR"
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidQuantityError(ValidationError):
    """Quantity outside the accepted range."""

    def __init__(self, quantity: int, minimum: int = 1, maximum: int | None = None):
        self.quantity = quantity
        self.minimum = minimum
        self.maximum = maximum
        bound = f"{minimum}..{maximum}" if maximum is not None else f">= {minimum}"
        super().__init__(f"Invalid quantity {quantity}: must be {bound}", field="quantity")


class InvalidPhoneNumberError(ValidationError):
    """Patient phone number cannot be normalized."""

    code: str = "INVALID_PHONE_NUMBER"

    def __init__(self, raw: str):
        self.raw = raw
        super().__init__(f"Invalid phone number: {raw!r}", field="patient_phone")


class InvalidReasonError(ValidationError):
    """Missing or oversize reason text."""

    def __init__(self, message: str, max_length: int | None = None):
        self.max_length = max_length
        super().__init__(message, field="reason")


class InvalidSettingsError(ValidationError):
    """Manufacturer lot-numbering settings rejected."""

    def __init__(self, setting: str, value: Any, message: str):
        self.setting = setting
        self.value = value
        super().__init__(f"Invalid {setting}={value!r}: {message}", field=setting)


class InvalidStatusTransitionError(ValidationError):
    """Organization lifecycle transition is not permitted."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, organization_id: str, from_status: str, to_status: str):
        self.organization_id = organization_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Organization {organization_id} cannot move from "
            f"{from_status} to {to_status}",
            field="status",
        )


class DuplicateBusinessNumberError(ValidationError):
    """Another organization already holds this business number."""

    code: str = "DUPLICATE_BUSINESS_NUMBER"

    def __init__(self, business_number: str):
        self.business_number = business_number
        super().__init__(
            f"Business number already registered: {business_number}",
            field="business_number",
        )


class DuplicateUdiDiError(ValidationError):
    """Another product already carries this UDI-DI."""

    code: str = "DUPLICATE_UDI_DI"

    def __init__(self, udi_di: str):
        self.udi_di = udi_di
        super().__init__(f"UDI-DI already registered: {udi_di}", field="udi_di")


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(CertifyKernelError):
    """Base for missing entities."""

    code: str = "NOT_FOUND"
    kind = ErrorKind.NOT_FOUND


class OrganizationNotFoundError(NotFoundError):
    code: str = "ORGANIZATION_NOT_FOUND"

    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__(f"Organization not found: {organization_id}")


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class LotNotFoundError(NotFoundError):
    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Lot not found: {lot_id}")


class TreatmentNotFoundError(NotFoundError):
    code: str = "TREATMENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Treatment event not found: {event_id}")


class ShipmentNotFoundError(NotFoundError):
    code: str = "SHIPMENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Shipment event not found: {event_id}")


# =============================================================================
# Inventory
# =============================================================================


class InsufficientInventoryError(CertifyKernelError):
    """
    Requested quantity exceeds the owner's InStock units.

    Carries both quantities so the caller can show an actionable message.
    """

    code: str = "INSUFFICIENT_INVENTORY"
    kind = ErrorKind.INSUFFICIENT_INVENTORY

    def __init__(
        self,
        owner_id: str,
        product_id: str,
        requested: int,
        available: int,
        lot_id: str | None = None,
    ):
        self.owner_id = owner_id
        self.product_id = product_id
        self.lot_id = lot_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient inventory for product {product_id}: "
            f"requested {requested}, available {available}"
        )


# =============================================================================
# Forbidden
# =============================================================================


class ForbiddenError(CertifyKernelError):
    """Actor not permitted for the organization or action."""

    code: str = "FORBIDDEN"
    kind = ErrorKind.FORBIDDEN


class OrganizationInactiveError(ForbiddenError):
    code: str = "ORGANIZATION_INACTIVE"

    def __init__(self, organization_id: str, status: str):
        self.organization_id = organization_id
        self.status = status
        super().__init__(
            f"Organization {organization_id} is not active (status={status})"
        )


class InvalidOrganizationTypeError(ForbiddenError):
    """Organization type cannot perform this action."""

    def __init__(self, organization_id: str, org_type: str, action: str):
        self.organization_id = organization_id
        self.org_type = org_type
        self.action = action
        super().__init__(
            f"Organization {organization_id} of type {org_type} cannot {action}"
        )


class ProductNotOwnedError(ForbiddenError):
    def __init__(self, product_id: str, manufacturer_id: str):
        self.product_id = product_id
        self.manufacturer_id = manufacturer_id
        super().__init__(
            f"Product {product_id} is not owned by manufacturer {manufacturer_id}"
        )


class TransferNotAllowedError(ForbiddenError):
    """Destination cannot receive from the source under the transfer policy."""

    code: str = "INVALID_RECIPIENT"

    def __init__(self, source_type: str, dest_type: str, reason: str | None = None):
        self.source_type = source_type
        self.dest_type = dest_type
        self.reason = reason
        msg = f"Transfer from {source_type} to {dest_type} is not allowed"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class NotReceiverError(ForbiddenError):
    """Requester is not the party entitled to reverse the event."""

    code: str = "NOT_RECEIVER"

    def __init__(self, event_id: str, requesting_org_id: str):
        self.event_id = event_id
        self.requesting_org_id = requesting_org_id
        super().__init__(
            f"Organization {requesting_org_id} may not reverse event {event_id}"
        )


# =============================================================================
# Time window
# =============================================================================


class TimeWindowExceededError(CertifyKernelError):
    code: str = "TIME_WINDOW_EXCEEDED"
    kind = ErrorKind.TIME_WINDOW_EXCEEDED


class RecallTimeExceededError(TimeWindowExceededError):
    """Treatment is older than the recall window."""

    code: str = "RECALL_TIME_EXCEEDED"

    def __init__(self, event_id: str, occurred_at: datetime, deadline: datetime):
        self.event_id = event_id
        self.occurred_at = occurred_at
        self.deadline = deadline
        super().__init__(
            f"Recall window for event {event_id} closed at {deadline.isoformat()}"
        )


# =============================================================================
# Reversal
# =============================================================================


class AlreadyReversedError(CertifyKernelError):
    code: str = "ALREADY_REVERSED"
    kind = ErrorKind.ALREADY_REVERSED

    def __init__(self, event_id: str, reversed_at: datetime | None = None):
        self.event_id = event_id
        self.reversed_at = reversed_at
        super().__init__(f"Event {event_id} was already reversed")


class AlreadyRecalledError(AlreadyReversedError):
    code: str = "ALREADY_RECALLED"


class AlreadyReturnedError(AlreadyReversedError):
    code: str = "ALREADY_RETURNED"


# =============================================================================
# Ownership
# =============================================================================


class OwnershipViolationError(CertifyKernelError):
    code: str = "OWNERSHIP_VIOLATION"
    kind = ErrorKind.OWNERSHIP_VIOLATION


class CodesNotOwnedError(OwnershipViolationError):
    """Some transferred units have moved on; the return is blocked."""

    code: str = "CODES_NOT_OWNED"

    def __init__(self, event_id: str, owner_id: str, missing_codes: list[str]):
        self.event_id = event_id
        self.owner_id = owner_id
        self.missing_codes = missing_codes
        super().__init__(
            f"{len(missing_codes)} unit(s) of event {event_id} are no longer "
            f"held by {owner_id}"
        )


# =============================================================================
# Concurrency
# =============================================================================


class ConcurrencyError(CertifyKernelError):
    """Concurrent modification detected; safe to retry once."""

    code: str = "CONCURRENT_MODIFICATION"
    kind = ErrorKind.CONFLICT
    retryable = True

    def __init__(self, message: str = "Concurrent modification detected"):
        super().__init__(message)


# =============================================================================
# Invariant violations (programming errors)
# =============================================================================


class InvariantViolationError(CertifyKernelError):
    """Internal invariant broken. Never converted into a business result."""

    code: str = "INVARIANT_VIOLATION"


class ConservationViolationError(InvariantViolationError):
    code: str = "CONSERVATION_VIOLATION"

    def __init__(self, lot_id: str, expected: int, actual: int):
        self.lot_id = lot_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Lot {lot_id} has {actual} units, expected {expected}"
        )


# =============================================================================
# Display messages
# =============================================================================

ERROR_MESSAGES: dict[str, str] = {
    "VALIDATION_ERROR": "입력값이 올바르지 않습니다.",
    "INVALID_PHONE_NUMBER": "올바른 휴대폰 번호 형식이 아닙니다.",
    "INVALID_STATUS_TRANSITION": "허용되지 않는 상태 변경입니다.",
    "DUPLICATE_BUSINESS_NUMBER": "이미 등록된 사업자등록번호입니다.",
    "DUPLICATE_UDI_DI": "이미 등록된 UDI-DI입니다.",
    "NOT_FOUND": "요청한 리소스를 찾을 수 없습니다.",
    "ORGANIZATION_NOT_FOUND": "조직을 찾을 수 없습니다.",
    "PRODUCT_NOT_FOUND": "제품을 찾을 수 없습니다.",
    "LOT_NOT_FOUND": "Lot을 찾을 수 없습니다.",
    "TREATMENT_NOT_FOUND": "시술 기록을 찾을 수 없습니다.",
    "SHIPMENT_NOT_FOUND": "출고 내역을 찾을 수 없습니다.",
    "INSUFFICIENT_INVENTORY": "재고가 부족합니다. 현재 재고: {available}개",
    "FORBIDDEN": "해당 기능에 대한 접근 권한이 없습니다.",
    "ORGANIZATION_INACTIVE": "비활성화된 조직입니다.",
    "INVALID_RECIPIENT": "유효하지 않은 수신자입니다.",
    "NOT_RECEIVER": "수신 조직만 반품을 요청할 수 있습니다.",
    "TIME_WINDOW_EXCEEDED": "처리 가능 시간이 경과했습니다.",
    "RECALL_TIME_EXCEEDED": (
        "24시간 경과하여 처리할 수 없습니다. 관리자에게 연락해주세요. "
        "(기한: {deadline})"
    ),
    "ALREADY_REVERSED": "이미 처리된 건입니다.",
    "ALREADY_RECALLED": "이미 회수된 건입니다.",
    "ALREADY_RETURNED": "이미 반품된 건입니다.",
    "OWNERSHIP_VIOLATION": "현재 조직 소유가 아닌 제품이 포함되어 있습니다.",
    "CODES_NOT_OWNED": (
        "일부 제품이 더 이상 현재 조직 소유가 아닙니다. "
        "하위 조직에서 먼저 반품해야 합니다."
    ),
    "CONCURRENT_MODIFICATION": "다른 요청과 충돌했습니다. 잠시 후 다시 시도해주세요.",
    "SERVER_ERROR": "서버 오류가 발생했습니다. 잠시 후 다시 시도해주세요.",
}


def display_message(error: CertifyKernelError) -> str:
    """Stable, user-facing message for an error, with payload fields filled in."""
    template = ERROR_MESSAGES.get(error.code) or ERROR_MESSAGES["SERVER_ERROR"]
    fields = error.details()
    deadline = fields.get("deadline")
    if isinstance(deadline, datetime):
        fields["deadline"] = deadline.isoformat()
    try:
        return template.format(**fields)
    except (KeyError, IndexError):
        return template

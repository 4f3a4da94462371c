"""
LedgerRules -- the tunable limits and policies the kernel consults.

Responsibility:
    One frozen value object holding every configurable rule: recall window,
    transfer pairs, production limits, code format, reason length and
    history pagination.  Services receive it by constructor injection.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  The kernel never reads
    configuration files; ``certify_config.bridges.build_ledger_rules``
    produces a LedgerRules from YAML settings.
"""

from dataclasses import dataclass, field
from datetime import timedelta

from certify_kernel.domain.recall_window import RecallWindowPolicy
from certify_kernel.domain.transfer_policy import TransferPolicy


@dataclass(frozen=True)
class LedgerRules:
    recall_policy: RecallWindowPolicy = field(default_factory=RecallWindowPolicy)
    transfer_policy: TransferPolicy = field(default_factory=TransferPolicy)
    max_production_quantity: int = 100_000
    expiry_month_options: tuple[int, ...] = (6, 12, 18, 24, 36)
    default_expiry_months: int = 24
    default_lot_prefix: str = "ND"
    default_lot_model_digits: int = 5
    default_lot_date_format: str = "yymmdd"
    code_prefix: str = "NC-"
    code_digits: int = 8
    max_reason_length: int = 500
    display_timezone: str = "Asia/Seoul"
    default_page_size: int = 20
    max_page_size: int = 100

    def __post_init__(self) -> None:
        if self.max_production_quantity < 1:
            raise ValueError("max_production_quantity must be >= 1")
        if self.default_expiry_months not in self.expiry_month_options:
            raise ValueError(
                f"default_expiry_months {self.default_expiry_months} is not one "
                f"of {self.expiry_month_options}"
            )
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError("default_page_size must be within 1..max_page_size")
        if self.recall_policy.window <= timedelta(0):
            raise ValueError("recall window must be positive")

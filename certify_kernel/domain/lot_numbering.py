"""
Lot numbering, expiry calculation and virtual code formatting.

Responsibility:
    Pure functions that turn a manufacturer's settings plus a sequence value
    into the identifiers stamped on a lot and its units.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  LotAllocator draws
    the sequence values (SequenceService) and calls these formatters.

Invariants enforced:
    - Lot number = prefix + serial zero-padded to ``model_digits`` +
      production date in the configured format.
    - Expiry date = production date + N months - 1 day, clamped to the end
      of short months.
    - Virtual code = prefix + sequence zero-padded to ``digits``.  Codes are
      unique because sequence values are.

Failure modes:
    - InvalidSettingsError on an unknown date format, a prefix that is not
      1-10 uppercase letters, or model digits outside 1-10.
    - ValueError when a serial overflows its digit width.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from certify_kernel.exceptions import InvalidSettingsError

_PREFIX_PATTERN = re.compile(r"^[A-Z]{1,10}$")
MIN_MODEL_DIGITS = 1
MAX_MODEL_DIGITS = 10


class LotDateFormat(str, Enum):
    YYMMDD = "yymmdd"
    YYYYMMDD = "yyyymmdd"
    YYMM = "yymm"

    def render(self, value: date) -> str:
        if self is LotDateFormat.YYMMDD:
            return value.strftime("%y%m%d")
        if self is LotDateFormat.YYYYMMDD:
            return value.strftime("%Y%m%d")
        return value.strftime("%y%m")


@dataclass(frozen=True)
class LotNumberingRules:
    """A manufacturer's lot-numbering settings as a value object."""

    prefix: str
    model_digits: int
    date_format: LotDateFormat
    expiry_months: int

    def __post_init__(self) -> None:
        validate_lot_rules(self.prefix, self.model_digits, self.date_format)
        if self.expiry_months < 1:
            raise InvalidSettingsError(
                "expiry_months", self.expiry_months, "must be at least 1"
            )


def parse_date_format(value: str) -> LotDateFormat:
    try:
        return LotDateFormat(value.lower())
    except ValueError:
        raise InvalidSettingsError(
            "lot_date_format",
            value,
            f"expected one of {[f.value for f in LotDateFormat]}",
        ) from None


def validate_lot_rules(prefix: str, model_digits: int, date_format: str) -> None:
    """Raise InvalidSettingsError if any lot-numbering setting is malformed."""
    if not _PREFIX_PATTERN.match(prefix or ""):
        raise InvalidSettingsError(
            "lot_prefix", prefix, "must be 1-10 uppercase letters"
        )
    if not MIN_MODEL_DIGITS <= model_digits <= MAX_MODEL_DIGITS:
        raise InvalidSettingsError(
            "lot_model_digits",
            model_digits,
            f"must be between {MIN_MODEL_DIGITS} and {MAX_MODEL_DIGITS}",
        )
    if not isinstance(date_format, LotDateFormat):
        parse_date_format(date_format)


def format_lot_number(rules: LotNumberingRules, serial: int, production_date: date) -> str:
    """
    Build a lot number.

    >>> rules = LotNumberingRules("ND", 5, LotDateFormat.YYMMDD, 24)
    >>> format_lot_number(rules, 12, date(2024, 12, 9))
    'ND00012241209'
    """
    serial_part = str(serial).zfill(rules.model_digits)
    if len(serial_part) > rules.model_digits:
        raise ValueError(
            f"Lot serial {serial} exceeds {rules.model_digits} digits"
        )
    return f"{rules.prefix}{serial_part}{rules.date_format.render(production_date)}"


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_expiry_date(production_date: date, expiry_months: int) -> date:
    """Last day of validity: production date + N months - 1 day."""
    return add_months(production_date, expiry_months) - timedelta(days=1)


def format_virtual_code(sequence_value: int, prefix: str = "NC-", digits: int = 8) -> str:
    """
    Render a unit's virtual code from its sequence value.

    >>> format_virtual_code(42)
    'NC-00000042'
    """
    if sequence_value < 1:
        raise ValueError(f"sequence value must be positive, got {sequence_value}")
    return f"{prefix}{str(sequence_value).zfill(digits)}"

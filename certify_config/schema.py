"""
Configuration schema (``certify_config.schema``).

Frozen dataclasses describing the parsed YAML settings.  Nothing here
imports the kernel; ``certify_config.bridges`` converts these into kernel
inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

ORGANIZATION_TYPES = ("manufacturer", "distributor", "hospital", "admin")
LOT_DATE_FORMATS = ("yymmdd", "yyyymmdd", "yymm")


class ConfigurationError(ValueError):
    """Settings file is structurally valid YAML but semantically wrong."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Invalid setting {key!r}: {message}")


@dataclass(frozen=True)
class KernelSettings:
    """Every tunable the kernel reads, as loaded from YAML."""

    recall_window_hours: float
    transfer_policy: Mapping[str, tuple[str, ...]]
    max_production_quantity: int
    expiry_month_options: tuple[int, ...]
    default_expiry_months: int
    default_lot_prefix: str
    default_lot_model_digits: int
    default_lot_date_format: str
    code_prefix: str
    code_digits: int
    max_reason_length: int
    display_timezone: str
    default_page_size: int
    max_page_size: int
    database_url: str
    checksum: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "transfer_policy", MappingProxyType(dict(self.transfer_policy))
        )

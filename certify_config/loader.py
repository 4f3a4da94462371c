"""
Configuration Loader (``certify_config.loader``).

Responsibility
--------------
Reads YAML settings files with ``yaml.safe_load``, overlays them onto the
packaged ``defaults.yaml`` and parses the merged mapping into a frozen
``KernelSettings``.

Invariants enforced
-------------------
* Unknown top-level keys are rejected, so a typo never silently falls
  back to a default.
* Every organization type named in ``transfer_policy`` must be known.
* ``compute_checksum`` is deterministic for identical merged settings.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Semantically invalid values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from certify_config.schema import (
    LOT_DATE_FORMATS,
    ORGANIZATION_TYPES,
    ConfigurationError,
    KernelSettings,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_KNOWN_KEYS = frozenset(
    {
        "recall_window_hours",
        "transfer_policy",
        "production",
        "lot_numbering",
        "virtual_code",
        "max_reason_length",
        "history",
        "database",
    }
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top-level document must be a mapping")
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``override`` onto ``base``; mappings merge, anything else replaces."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _positive_int(key: str, value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ConfigurationError(key, f"expected a positive integer, got {value!r}")
    return value


def _parse_transfer_policy(raw: Any) -> dict[str, tuple[str, ...]]:
    if not isinstance(raw, dict):
        raise ConfigurationError("transfer_policy", "expected a mapping")
    policy: dict[str, tuple[str, ...]] = {}
    for source, dests in raw.items():
        if source not in ORGANIZATION_TYPES:
            raise ConfigurationError("transfer_policy", f"unknown type {source!r}")
        dests = dests or []
        for dest in dests:
            if dest not in ORGANIZATION_TYPES:
                raise ConfigurationError("transfer_policy", f"unknown type {dest!r}")
        policy[source] = tuple(dests)
    return policy


def parse_settings(data: dict[str, Any]) -> KernelSettings:
    """
    Parse a merged settings mapping into ``KernelSettings``.

    Raises:
        ConfigurationError: on unknown keys or invalid values.
        KeyError: if a required key is missing from the merged mapping.
    """
    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise ConfigurationError(", ".join(sorted(unknown)), "unknown setting")

    hours = data["recall_window_hours"]
    if not isinstance(hours, (int, float)) or isinstance(hours, bool) or hours <= 0:
        raise ConfigurationError("recall_window_hours", f"expected > 0, got {hours!r}")

    production = data["production"]
    options = tuple(production["expiry_month_options"])
    for months in options:
        _positive_int("production.expiry_month_options", months)
    default_months = _positive_int(
        "production.default_expiry_months", production["default_expiry_months"]
    )
    if default_months not in options:
        raise ConfigurationError(
            "production.default_expiry_months",
            f"{default_months} is not one of {list(options)}",
        )

    lots = data["lot_numbering"]
    date_format = str(lots["default_date_format"]).lower()
    if date_format not in LOT_DATE_FORMATS:
        raise ConfigurationError(
            "lot_numbering.default_date_format", f"unknown format {date_format!r}"
        )

    history = data["history"]
    tz_name = history["display_timezone"]
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError("history.display_timezone", f"unknown zone {tz_name!r}") from None

    max_page = _positive_int("history.max_page_size", history["max_page_size"])
    default_page = _positive_int(
        "history.default_page_size", history["default_page_size"]
    )
    if default_page > max_page:
        raise ConfigurationError(
            "history.default_page_size", "must not exceed history.max_page_size"
        )

    return KernelSettings(
        recall_window_hours=float(hours),
        transfer_policy=_parse_transfer_policy(data["transfer_policy"]),
        max_production_quantity=_positive_int(
            "production.max_quantity", production["max_quantity"]
        ),
        expiry_month_options=options,
        default_expiry_months=default_months,
        default_lot_prefix=str(lots["default_prefix"]),
        default_lot_model_digits=_positive_int(
            "lot_numbering.default_model_digits", lots["default_model_digits"]
        ),
        default_lot_date_format=date_format,
        code_prefix=str(data["virtual_code"]["prefix"]),
        code_digits=_positive_int("virtual_code.digits", data["virtual_code"]["digits"]),
        max_reason_length=_positive_int("max_reason_length", data["max_reason_length"]),
        display_timezone=tz_name,
        default_page_size=default_page,
        max_page_size=max_page,
        database_url=str(data["database"]["url"]),
        checksum=compute_checksum(data),
    )


def load_settings(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> KernelSettings:
    """Load defaults, overlay an optional file and in-memory overrides, then parse."""
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = deep_merge(data, load_yaml_file(Path(path)))
    if overrides:
        data = deep_merge(data, overrides)
    return parse_settings(data)

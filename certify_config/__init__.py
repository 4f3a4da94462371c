"""
certify_config -- single public entrypoint for kernel configuration.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_settings()``.  YAML files are read with PyYAML's ``safe_load``
    and layered over the packaged ``defaults.yaml``.

Architecture position:
    Configuration layer, above ``certify_kernel``.  The kernel MUST NEVER
    import from ``certify_config``; ``certify_config.bridges`` translates
    settings into kernel value objects.

Failure modes:
    - ``FileNotFoundError`` -- settings file missing.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ConfigurationError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful ``get_settings()`` call emits a
    ``CERTIFY_CONFIG_TRACE`` log entry carrying the settings checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from certify_config.loader import load_settings
from certify_config.schema import ConfigurationError, KernelSettings

_logger = logging.getLogger("certify_kernel.config")

__all__ = ["ConfigurationError", "KernelSettings", "get_settings"]


def get_settings(
    path: Path | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> KernelSettings:
    """
    The ONLY public configuration entrypoint.

    Args:
        path: Optional YAML file overlaid on the packaged defaults.
        overrides: Optional in-memory mapping overlaid last (tests, CLIs).

    Returns:
        Frozen KernelSettings.
    """
    settings = load_settings(Path(path) if path is not None else None, overrides)
    _logger.info(
        "CERTIFY_CONFIG_TRACE",
        extra={
            "trace_type": "CERTIFY_CONFIG_TRACE",
            "source": str(path) if path is not None else "defaults",
            "checksum": settings.checksum,
            "recall_window_hours": settings.recall_window_hours,
        },
    )
    return settings

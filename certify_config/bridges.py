"""
Config -> Kernel Bridges.

Converts ``KernelSettings`` into kernel inputs.  These live in
certify_config (the producer) because the kernel never imports
certify_config.

Usage:
    from certify_config import get_settings
    from certify_config.bridges import build_ledger_rules

    rules = build_ledger_rules(get_settings())
"""

from __future__ import annotations

from datetime import timedelta

from certify_config.schema import KernelSettings
from certify_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from certify_kernel.domain.clock import Clock
from certify_kernel.domain.notifications import NotificationPublisher
from certify_kernel.domain.recall_window import RecallWindowPolicy
from certify_kernel.domain.rules import LedgerRules
from certify_kernel.domain.transfer_policy import TransferPolicy
from certify_kernel.kernel import CertifyKernel


def build_transfer_policy(settings: KernelSettings) -> TransferPolicy:
    return TransferPolicy.from_mapping(settings.transfer_policy)


def build_recall_policy(settings: KernelSettings) -> RecallWindowPolicy:
    return RecallWindowPolicy(window=timedelta(hours=settings.recall_window_hours))


def build_ledger_rules(settings: KernelSettings) -> LedgerRules:
    """Assemble the full LedgerRules value object from settings."""
    return LedgerRules(
        recall_policy=build_recall_policy(settings),
        transfer_policy=build_transfer_policy(settings),
        max_production_quantity=settings.max_production_quantity,
        expiry_month_options=settings.expiry_month_options,
        default_expiry_months=settings.default_expiry_months,
        default_lot_prefix=settings.default_lot_prefix,
        default_lot_model_digits=settings.default_lot_model_digits,
        default_lot_date_format=settings.default_lot_date_format,
        code_prefix=settings.code_prefix,
        code_digits=settings.code_digits,
        max_reason_length=settings.max_reason_length,
        display_timezone=settings.display_timezone,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )


def build_kernel(
    settings: KernelSettings,
    clock: Clock | None = None,
    publisher: NotificationPublisher | None = None,
    create_schema: bool = False,
) -> CertifyKernel:
    """
    Initialize the database engine from ``settings.database_url`` and
    return a CertifyKernel wired with the configured rules.
    """
    engine = init_engine_from_url(settings.database_url)
    if create_schema:
        create_tables(engine)
    return CertifyKernel(
        session_factory=get_session_factory(),
        clock=clock,
        rules=build_ledger_rules(settings),
        publisher=publisher,
    )

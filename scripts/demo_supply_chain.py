#!/usr/bin/env python3
"""
Walk one product through the whole supply chain and print each step.

Registers a manufacturer, a distributor and a hospital, produces a lot,
ships it down the chain, treats a patient, recalls the treatment, returns
a shipment, then prints the hospital's history and each party's stock.

Usage:
    python3 scripts/demo_supply_chain.py
    python3 scripts/demo_supply_chain.py --db-url sqlite:///demo.db
    python3 scripts/demo_supply_chain.py --config settings.yaml --json
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = "sqlite:///:memory:"


def banner(title: str) -> None:
    print()
    print("=" * 72)
    print(f"  {title}")
    print("=" * 72)


class PrintingPublisher:
    """Print patient messages instead of sending them."""

    def publish(self, notification) -> None:
        print(f"            -> {notification.notification_type.value} message to patient:")
        for line in notification.body.splitlines():
            print(f"               {line}")


def step(label: str, result) -> object:
    if not result.is_success:
        print(f"  [REFUSED] {label}: {result.failure.code} -- {result.failure.message}")
        return None
    print(f"  [OK]      {label}")
    return result.value


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Supply chain demo: production through recall and return.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=str, default=None, help="YAML settings overlay")
    parser.add_argument(
        "--db-url", type=str, default=DB_URL,
        help=f"Database URL (default: {DB_URL})",
    )
    parser.add_argument("--json", action="store_true", help="Print history entries as JSON")
    args = parser.parse_args()

    from certify_config import get_settings
    from certify_config.bridges import build_kernel
    from certify_kernel.domain.clock import DeterministicClock
    from certify_kernel.domain.enums import OrganizationType

    logging.disable(logging.CRITICAL)
    settings = get_settings(args.config, overrides={"database": {"url": args.db_url}})
    clock = DeterministicClock()
    try:
        kernel = build_kernel(
            settings, clock=clock, publisher=PrintingPublisher(), create_schema=True
        )
    except Exception as exc:
        print(f"  ERROR: Cannot initialize database: {exc}", file=sys.stderr)
        return 1

    banner("ORGANIZATIONS")
    ids = {}
    for name, org_type, contact in (
        ("Neo Dermal", OrganizationType.MANUFACTURER, None),
        ("Seoul Medical Supply", OrganizationType.DISTRIBUTOR, None),
        ("Gangnam Skin Clinic", OrganizationType.HOSPITAL, "02-555-0101"),
    ):
        org = step(f"register {name}", kernel.register_organization(name, org_type, None, contact))
        step(f"approve {name}", kernel.approve_organization(org.id))
        ids[org_type] = org.id
    manufacturer_id = ids[OrganizationType.MANUFACTURER]
    distributor_id = ids[OrganizationType.DISTRIBUTOR]
    hospital_id = ids[OrganizationType.HOSPITAL]

    banner("PRODUCTION")
    product = step(
        "register product PDO Thread",
        kernel.register_product(manufacturer_id, "PDO Thread", "PDO-19G-100", "08800012345678"),
    )
    lot = step(
        "produce 20 units",
        kernel.create_lot(manufacturer_id, product.id, 20, clock.now_utc().date()),
    )
    print(f"            lot {lot.lot_number}, expires {lot.expiry_date}")
    print(f"            codes {lot.unit_codes[0]} .. {lot.unit_codes[-1]}")

    banner("DISTRIBUTION")
    clock.advance_by(timedelta(hours=1))
    step("manufacturer -> distributor, 12 units",
         kernel.transfer(manufacturer_id, distributor_id, product.id, 12))
    clock.advance_by(timedelta(hours=1))
    to_hospital = step("distributor -> hospital, 6 units",
                       kernel.transfer(distributor_id, hospital_id, product.id, 6))
    step("distributor -> hospital, 50 units",
         kernel.transfer(distributor_id, hospital_id, product.id, 50))

    banner("TREATMENT AND RECALL")
    clock.advance_by(timedelta(hours=1))
    treatment = step(
        "treat patient with 2 units",
        kernel.consume_for_treatment(
            hospital_id, product.id, 2, "010-1234-5678", clock.now_utc().date()
        ),
    )
    clock.advance_by(timedelta(hours=3))
    eligibility = kernel.can_recall_treatment(treatment.id, hospital_id).unwrap()
    print(f"            recall allowed: {eligibility.allowed}, remaining {eligibility.remaining}")
    step("recall treatment", kernel.recall_treatment(treatment.id, hospital_id, "wrong patient"))
    step("recall treatment again",
         kernel.recall_treatment(treatment.id, hospital_id, "wrong patient"))

    banner("RETURN")
    clock.advance_by(timedelta(days=3))
    step("hospital returns its shipment",
         kernel.return_shipment(to_hospital.id, hospital_id, "ordered wrong gauge"))
    step("audit lot", kernel.verify_lot(lot.id))

    banner("HOSPITAL HISTORY")
    history = kernel.get_history(hospital_id).unwrap()
    for entry in history.items:
        if args.json:
            print(json.dumps(asdict(entry), default=str))
        else:
            print(
                f"  {entry.occurred_at:%Y-%m-%d %H:%M}  {entry.action.value:<9} "
                f"{entry.quantity:>3}  {entry.counterparty_name or '':<22} {entry.reason or ''}"
            )

    banner("STOCK")
    for label, org_id in (
        ("manufacturer", manufacturer_id),
        ("distributor", distributor_id),
        ("hospital", hospital_id),
    ):
        total = sum(s.quantity for s in kernel.get_inventory(org_id).unwrap())
        print(f"  {label:<13} {total:>4}")

    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())

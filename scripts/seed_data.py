#!/usr/bin/env python3
"""
Seed the database with one project's worth of field activity.

Drops all tables, recreates them, and drives a small project through the
FieldTracker: piece marks through fabrication, a delivery reconciled with
one damaged line, a split delivery, and a crew working the crane zone.

Usage:
    python3 scripts/seed_data.py
    python3 scripts/seed_data.py --database-url postgresql://.../steeltrack
"""

import argparse
import logging
import sys
import time
from dataclasses import replace
from datetime import date
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

PROJECT_ID = UUID("5f0c1a8e-3b7d-4c2a-9e61-0d4b7a2c9f10")
PM_ID = "0b7f3c52-1e44-4d0a-8f2b-6a1c9d3e7b01"
SHOP_ID = "2c9e5a17-6b3f-4e81-a0d4-8f7b1c2e5d02"
FIELD_ID = "4e1d8b63-9a2c-4f57-b3e0-1d6c8a9f2e03"
W = 72


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--config", help="YAML settings file (default: env / built-in)")
    parser.add_argument("--database-url", help="Override the configured database URL")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.disable(logging.CRITICAL)

    from steeltrack_config import load_settings
    from steeltrack_kernel.domain.identity import StaticRoleResolver
    from steeltrack_kernel.exceptions import SteelTrackError
    from steeltrack_services import FieldTracker

    settings = load_settings(args.config)
    if args.database_url:
        settings = replace(settings, database_url=args.database_url)
    tracker = FieldTracker.from_settings(settings)

    resolver = StaticRoleResolver({PM_ID: "project_manager", SHOP_ID: "shop", FIELD_ID: "field"})
    pm, shop, field = (resolver.resolve(a) for a in (PM_ID, SHOP_ID, FIELD_ID))

    print()
    print("=" * W)
    print("  SEED: steel erection project".center(W))
    print("=" * W)
    t0 = time.monotonic()

    tracker.database.drop_tables()
    tracker.database.create_tables()

    try:
        beams = [
            tracker.create_piece_mark(
                pm, PROJECT_ID, f"B-{n}", 4, "412.75",
                material="A992", drawing_number="E-201", sequence_number="SEQ-1",
                shop_assigned_to=shop.actor_id,
            )
            for n in (101, 102, 103)
        ]
        column = tracker.create_piece_mark(
            pm, PROJECT_ID, "C-201", 2, "1880.5", material="A992", drawing_number="E-101"
        )
        print(f"  piece marks      {len(beams) + 1}")

        for beam in beams[:2]:
            for status in ("fabricating", "completed"):
                tracker.advance_piece_mark_status(shop, beam.id, status)

        truck = tracker.create_delivery(
            pm, PROJECT_ID, "D-001", scheduled_date=date(2024, 3, 4), truck_number="TRK-17"
        )
        first_items = [
            tracker.add_delivery_item(pm, truck.id, beams[0].id, 4),
            tracker.add_delivery_item(pm, truck.id, beams[1].id, 4),
        ]
        column_item = tracker.add_delivery_item(pm, truck.id, column.id, 1)
        second = tracker.create_delivery(pm, PROJECT_ID, "D-002", scheduled_date=date(2024, 3, 6))
        second_item = tracker.add_delivery_item(pm, second.id, column.id, 1)

        for delivery in (truck, second):
            tracker.update_delivery_status(pm, delivery.id, "in_transit")
            tracker.update_delivery_status(pm, delivery.id, "delivered")

        result = tracker.reconcile_delivery(field, truck.id, [
            {"item_id": first_items[0].id, "received_quantity": 4,
             "condition": "good", "location": "yard"},
            {"item_id": first_items[1].id, "received_quantity": 3,
             "condition": "damaged", "location": "yard", "notes": "one beam bent in transit"},
            {"item_id": column_item.id, "received_quantity": 1,
             "condition": "good", "location": "staging"},
        ])
        print(f"  D-001 received   {len(result.discrepancies)} discrepancy")
        tracker.reconcile_delivery(field, second.id, [
            {"item_id": second_item.id, "received_quantity": 1,
             "condition": "good", "location": "staging"},
        ])
        print("  D-002 received   column split delivery complete")

        crew = tracker.assign_crew(
            field, PROJECT_ID, "Raising Gang 1", field.actor_id, date(2024, 3, 7),
            crew_size=5, zone="Grid A-C", piece_mark_ids=[beams[0].id, column.id],
        )
        tracker.update_crew_status(field, crew.id, "active")
        tracker.update_piece_mark_location(field, column.id, "crane_zone")
        tracker.advance_piece_mark_status(pm, column.id, "installed")
        tracker.update_crew_status(field, crew.id, "completed")
        print(f"  crew             {crew.crew_name} installed C-201")

        tracker.validate_activity_chain()
    except SteelTrackError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        tracker.database.dispose()

    print()
    print(f"  Seeded in {time.monotonic() - t0:.2f}s. Project {PROJECT_ID}")
    print("  View with: python3 scripts/view_history.py --verify")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Print the activity log, oldest first, and optionally verify its hash chain.

Usage:
    python3 scripts/view_history.py
    python3 scripts/view_history.py --piece-mark <uuid>
    python3 scripts/view_history.py --delivery <uuid> --verify
"""

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 80


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--config", help="YAML settings file (default: env / built-in)")
    parser.add_argument("--database-url", help="Override the configured database URL")
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--piece-mark", metavar="UUID", help="History of one piece mark")
    scope.add_argument("--delivery", metavar="UUID", help="History of one delivery")
    scope.add_argument("--actor", metavar="UUID", help="Everything one actor did")
    parser.add_argument("--limit", type=int, default=None, help="Show at most N entries")
    parser.add_argument("--verify", action="store_true", help="Verify the hash chain")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.disable(logging.CRITICAL)

    from dataclasses import replace

    from steeltrack_config import load_settings
    from steeltrack_kernel.domain.dtos import thaw
    from steeltrack_kernel.exceptions import AuditChainBrokenError, SteelTrackError
    from steeltrack_kernel.selectors import ActivitySelector
    from steeltrack_services import FieldTracker

    try:
        settings = load_settings(args.config)
        if args.database_url:
            settings = replace(settings, database_url=args.database_url)
        tracker = FieldTracker.from_settings(settings)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    try:
        if args.piece_mark:
            entries = tracker.piece_mark_history(args.piece_mark)
        elif args.delivery:
            entries = tracker.delivery_history(args.delivery)
        elif args.actor:
            entries = tracker.actor_history(args.actor)
        else:
            with tracker.database.session_scope() as session:
                entries = ActivitySelector(session).after_seq(0)
    except SteelTrackError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    if args.limit is not None:
        entries = entries[: args.limit]

    print()
    print("=" * W)
    print("ACTIVITY LOG".center(W))
    print("=" * W)
    print()

    if not entries:
        print("  No activity entries found. Run seed_data.py first.")
    for entry in entries:
        print(
            f"  #{entry.seq:<6} {entry.occurred_at:%Y-%m-%d %H:%M:%S}  "
            f"{entry.actor_role.value:<7} {entry.transition_kind.value}"
        )
        print(f"          {entry.subject_type.value} {entry.subject_id}")
        if entry.description:
            print(f"          {entry.description}")
        if entry.after_state:
            print(f"          after: {json.dumps(thaw(entry.after_state), default=str)}")
        if entry.discrepancy:
            print(f"          discrepancy: {json.dumps(thaw(entry.discrepancy), default=str)}")
        print()

    print(f"  Total: {len(entries)} entries")

    if args.verify:
        try:
            tracker.validate_activity_chain()
            print("  Hash chain: OK")
        except AuditChainBrokenError as exc:
            print(f"  Hash chain: BROKEN ({exc})", file=sys.stderr)
            return 2

    print()
    tracker.database.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Backfill Inventory Deductions - repair ready orders that were never deducted.

Usage:
    python scripts/backfill_inventory_deductions.py
    python scripts/backfill_inventory_deductions.py --as-of 2025-06-30T23:59:59
    python scripts/backfill_inventory_deductions.py --clamp-negative --user-id 1

Safe to rerun: orders that already have a deduction marker are skipped.
Exit status is 0 when every order was processed or skipped, 1 when some
orders errored, 2 when storage was unavailable.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from orderflow.core.config import settings
from orderflow.core.errors import StorageUnavailable
from orderflow.core.logging_config import configure_logging
from orderflow.db.session import SessionLocal, unit_of_work
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.services.reconciliation_service import ReconciliationService

logger = logging.getLogger("backfill_inventory_deductions")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0])
    parser.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="Only orders created at or before this ISO timestamp",
    )
    parser.add_argument("--user-id", type=int, default=None, help="User recorded on the movements")
    parser.add_argument(
        "--clamp-negative",
        action="store_true",
        help="Afterwards, correct negative inventory balances to zero",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(settings)

    db = SessionLocal()
    try:
        report = ReconciliationService(db, settings).backfill_missing_deductions(
            as_of=args.as_of, acting_user_id=args.user_id
        )
        print(json.dumps(report.to_dict(), indent=2))

        if args.clamp_negative:
            ledger = InventoryLedger(db)
            with unit_of_work(db):
                corrected = ledger.clamp_negative_balances(args.user_id)
            print(f"Corrected {len(corrected)} negative balances")
    except StorageUnavailable as e:
        logger.error(f"Backfill aborted: {e}")
        return 2
    finally:
        db.close()

    return 1 if report.errored else 0


if __name__ == "__main__":
    sys.exit(main())

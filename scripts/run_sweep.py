#!/usr/bin/env python3
"""
Run a billing reconciliation sweep.

Usage:
    # Renew expired billing periods (auto-renewing plans only)
    python scripts/run_sweep.py reset

    # Suspend accounts that used up their monthly quota
    python scripts/run_sweep.py suspend

    # Create tables and seed the default plan first (fresh database)
    python scripts/run_sweep.py reset --init-db
"""

import argparse
import os
import sys

# Add backend directory to path to import the meterbill package
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "backend"))

from meterbill.core.logging import setup_logging
from meterbill.db.session import init_db
from meterbill.tasks.sweeps import run_reset_usage_sweep, run_suspend_exceeded_sweep

SWEEPS = {
    "reset": run_reset_usage_sweep,
    "suspend": run_suspend_exceeded_sweep,
}


def main():
    parser = argparse.ArgumentParser(description="Run a billing reconciliation sweep")
    parser.add_argument("sweep", choices=sorted(SWEEPS), help="Which sweep to run")
    parser.add_argument("--init-db", action="store_true", help="Create tables and seed the default plan before sweeping")
    args = parser.parse_args()

    setup_logging()
    try:
        if args.init_db:
            init_db()
        result = SWEEPS[args.sweep]()
    except Exception as e:
        print(f"❌ Sweep failed: {e}")
        return 1

    print(f"✅ {result.sweep}: scanned {result.scanned}, processed {result.processed}, "
          f"skipped {result.skipped}, failed {result.failed}")
    if result.failed_account_ids:
        print(f"   Failed accounts: {', '.join(str(a) for a in result.failed_account_ids)}")
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Run the overdue-loan and expired-reservation sweeps once.

Usage:
    python scripts/run_sweeps.py [--loans-only | --reservations-only]

Intended for cron on deployments that run with SCHEDULER_ENABLED off.
Exits non-zero when any row failed to process.
"""

import sys

# Add parent directory to path for imports
sys.path.insert(0, ".")

from library_app import create_app
from library_app.services import loan_service, reservation_service


def run_sweeps(loans=True, reservations=True):
    app = create_app()
    failed = 0

    with app.app_context():
        if loans:
            result = loan_service().check_overdue_loans()
            print(f"Overdue loans: {result.count} marked, {len(result.skipped)} skipped")
            if result.failed:
                print(f"  Failed loan ids: {', '.join(str(i) for i in result.failed)}")
            failed += len(result.failed)

        if reservations:
            result = reservation_service().check_expired_reservations()
            print(f"Expired reservations: {result.count} expired, {len(result.skipped)} skipped")
            if result.failed:
                print(f"  Failed reservation ids: {', '.join(str(i) for i in result.failed)}")
            failed += len(result.failed)

    return 1 if failed else 0


if __name__ == "__main__":
    args = sys.argv[1:]
    sys.exit(run_sweeps(
        loans="--reservations-only" not in args,
        reservations="--loans-only" not in args,
    ))

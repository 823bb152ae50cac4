#!/usr/bin/env python3
"""
Finalize expired ticket transfers.

Marks every pending transfer whose 24-hour cancellation window has passed as
completed. Transfers waiting for an unregistered recipient to claim them are
left pending. Safe to run repeatedly (e.g. from cron every few minutes).

Usage:
    python scripts/finalize_transfers.py
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.dependencies import get_transfer_service


def main() -> int:
    transfers = get_transfer_service()
    finalized = transfers.finalize_expired()

    print("=" * 50)
    print("TRANSFER FINALIZATION")
    print("=" * 50)
    print(f"Transfers completed: {finalized}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

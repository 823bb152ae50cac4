#!/usr/bin/env python3
"""
Wave Payment Reconciliation

Wave has no synchronous confirmation, so pending Wave payments are polled until
the gateway reports a terminal state. Each round verifies every pending payment
not checked within `--min-age` seconds. When a round settles nothing, the wait
before the next round doubles (up to `--max-delay`); it resets as soon as a
payment settles.

A gateway error while verifying fails the payment (verify never leaves a
payment pending after an unexpected error), so it counts as failed, not as a
retryable error. Errors are payments that vanished between listing and
verification.

Usage:
    python scripts/reconcile_wave_payments.py --once
    python scripts/reconcile_wave_payments.py --rounds 20 --base-delay 5 --max-delay 300
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.payment import PaymentGatewayName
from services.errors import CapacityExceededAtVerification, PaymentFailed, PaymentNotFound, TicketingError
from services.payment_service import PaymentOrchestrator

logger = logging.getLogger("scripts.reconcile_wave_payments")


@dataclass
class ReconcileSummary:
    checked: int = 0
    succeeded: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: int = 0

    @property
    def settled(self) -> int:
        return self.succeeded + self.failed


def reconcile_once(
    orchestrator: PaymentOrchestrator,
    min_age: timedelta = timedelta(seconds=30),
    limit: int = 100,
    gateway: PaymentGatewayName = PaymentGatewayName.WAVE,
) -> ReconcileSummary:
    """Verify every stale pending payment of a gateway once."""

    summary = ReconcileSummary()
    for reference in orchestrator.stale_pending_references(gateway, min_age, limit):
        summary.checked += 1
        try:
            result = orchestrator.verify(reference, gateway)
        except (PaymentFailed, CapacityExceededAtVerification):
            summary.failed += 1
            continue
        except PaymentNotFound as e:
            logger.warning("Could not verify payment", extra={"reference": reference, "error": e.message})
            summary.errors += 1
            continue
        except TicketingError as e:
            # verify() has already marked the payment failed; it is not polled again.
            logger.warning("Payment failed during verification", extra={"reference": reference, "error": e.message})
            summary.failed += 1
            continue

        if result.pending:
            summary.still_pending += 1
        else:
            summary.succeeded += 1
    return summary


def next_delay(current: float, summary: ReconcileSummary, base_delay: float, max_delay: float) -> float:
    """Exponential backoff while nothing settles; back to the base delay once something does."""

    if summary.settled:
        return base_delay
    return min(current * 2, max_delay)


def run(
    orchestrator: PaymentOrchestrator,
    rounds: Optional[int],
    base_delay: float,
    max_delay: float,
    min_age: timedelta,
    limit: int,
    sleep: Callable[[float], None] = time.sleep,
) -> ReconcileSummary:
    total = ReconcileSummary()
    delay = base_delay
    completed = 0
    while rounds is None or completed < rounds:
        summary = reconcile_once(orchestrator, min_age=min_age, limit=limit)
        completed += 1
        for name in ("checked", "succeeded", "failed", "still_pending", "errors"):
            setattr(total, name, getattr(total, name) + getattr(summary, name))

        print(
            f"Round {completed}: checked={summary.checked} succeeded={summary.succeeded} "
            f"failed={summary.failed} pending={summary.still_pending} errors={summary.errors}"
        )
        if rounds is not None and completed >= rounds:
            break
        delay = next_delay(delay, summary, base_delay, max_delay)
        sleep(delay)
    return total


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Poll Wave for the outcome of pending payments")
    parser.add_argument("--once", action="store_true", help="Run a single round and exit")
    parser.add_argument("--rounds", type=int, default=None, help="Number of rounds (default: run forever)")
    parser.add_argument("--base-delay", type=float, default=5.0, help="Seconds between rounds at first")
    parser.add_argument("--max-delay", type=float, default=300.0, help="Upper bound for the backoff delay")
    parser.add_argument("--min-age", type=int, default=30, help="Skip payments checked within this many seconds")
    parser.add_argument("--limit", type=int, default=100, help="Maximum payments per round")
    args = parser.parse_args()

    from api.dependencies import get_payment_orchestrator

    orchestrator = get_payment_orchestrator()
    total = run(
        orchestrator,
        rounds=1 if args.once else args.rounds,
        base_delay=args.base_delay,
        max_delay=args.max_delay,
        min_age=timedelta(seconds=args.min_age),
        limit=args.limit,
    )

    print()
    print("=" * 50)
    print("RECONCILIATION SUMMARY")
    print("=" * 50)
    print(f"Checked:        {total.checked}")
    print(f"Succeeded:      {total.succeeded}")
    print(f"Failed:         {total.failed}")
    print(f"Still pending:  {total.still_pending}")
    print(f"Errors:         {total.errors}")
    return 1 if total.errors else 0


if __name__ == "__main__":
    sys.exit(main())

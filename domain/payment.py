"""
Domain: Payments and purchase references.

Contract implemented here:
- A Payment moves through pending -> success | failed, and success -> refunded.
  No other transition exists (in particular never success -> pending).
- The payment reference format is load-bearing for correlation and is kept
  bit-exact: PAY-{epochMillis}-{rand 0..999}.
- Ticket references derive from it: {paymentReference}-TKT-{index}, index from 0.

Transitions return new instances; entities are never mutated in place.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple
from uuid import UUID

from .money import Currency
from .time import epoch_millis, require_utc_timestamp


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentGatewayName(str, Enum):
    STRIPE = "stripe"
    WAVE = "wave"


_ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.SUCCESS, PaymentStatus.FAILED},
    PaymentStatus.SUCCESS: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}


class InvalidPaymentTransition(ValueError):
    """Raised when a payment status change is not part of the state machine."""

    def __init__(self, current: PaymentStatus, target: PaymentStatus):
        self.current = current
        self.target = target
        super().__init__(f"Payment cannot move from {current.value} to {target.value}")


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


def generate_payment_reference(now: datetime, rng: Optional[random.Random] = None) -> str:
    """
    Build a PAY-{epochMillis}-{rand} reference.

    The random suffix is an integer in [0, 999] without zero padding.
    """

    suffix = (rng or random).randint(0, 999)
    return f"PAY-{epoch_millis(now)}-{suffix}"


def ticket_reference(payment_reference: str, index: int) -> str:
    if index < 0:
        raise ValueError("Ticket index must not be negative")
    return f"{payment_reference}-TKT-{index}"


def ticket_references(payment_reference: str, quantity: int) -> List[str]:
    """References for a batch of `quantity` tickets; re-derivable from the payment reference."""

    return [ticket_reference(payment_reference, i) for i in range(quantity)]


@dataclass(frozen=True, slots=True)
class Payment:
    """
    A purchase attempt for one or more tickets of a single tier.

    gateway_session_id: checkout session id returned by Stripe or Wave
    gateway_transaction_id: payment intent id (Stripe) or transaction id (Wave)
    exchange_rate: rate applied when the settlement currency differs from the tier currency
    """

    payment_id: UUID
    user_id: UUID
    event_id: UUID
    amount: Decimal
    currency: Currency
    reference: str
    gateway: PaymentGatewayName
    tier_name: str
    quantity: int
    status: PaymentStatus = PaymentStatus.PENDING
    ticket_ids: Tuple[UUID, ...] = ()
    gateway_session_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_status_check: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("Invalid payment amount")
        if self.quantity < 1:
            raise ValueError("Payment quantity must be at least 1")
        for name in ("created_at", "updated_at", "last_status_check"):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)

    def transition_to(self, status: PaymentStatus, at: datetime) -> "Payment":
        """
        Return a new Payment in `status`.

        Raises:
            InvalidPaymentTransition: if the move is not allowed
        """

        require_utc_timestamp("at", at)
        if not can_transition(self.status, status):
            raise InvalidPaymentTransition(self.status, status)
        return replace(self, status=status, updated_at=at, last_status_check=at)

    def with_session(self, session_id: str) -> "Payment":
        return replace(self, gateway_session_id=session_id)

    def with_ticket_ids(self, ticket_ids: List[UUID]) -> "Payment":
        return replace(self, ticket_ids=tuple(ticket_ids))

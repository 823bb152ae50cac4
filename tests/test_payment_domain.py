"""
Tests for `domain/payment.py`.

Covers contract rules:
- Payment references are PAY-{epochMillis}-{0..999} without zero padding.
- Ticket references are {paymentReference}-TKT-{index}, index from 0.
- The status machine is pending -> success | failed, success -> refunded.
- Payment amounts must be positive.
"""

from __future__ import annotations

import random
import re
from decimal import Decimal
from uuid import UUID

import pytest

from domain.money import Currency
from domain.payment import (
    InvalidPaymentTransition,
    Payment,
    PaymentGatewayName,
    PaymentStatus,
    can_transition,
    generate_payment_reference,
    ticket_reference,
    ticket_references,
)
from fakes import BUYER_ID, EVENT_ID, NOW, FixedRandom


def _payment(**overrides) -> Payment:
    values = dict(
        payment_id=UUID("00000000-0000-0000-0000-000000000300"),
        user_id=BUYER_ID,
        event_id=EVENT_ID,
        amount=Decimal("3000.00"),
        currency=Currency.GMD,
        reference="PAY-1700000000000-42",
        gateway=PaymentGatewayName.STRIPE,
        tier_name="VIP",
        quantity=2,
    )
    values.update(overrides)
    return Payment(**values)


def test_payment_reference_format() -> None:
    """Verify the reference embeds epoch millis and an unpadded suffix."""

    assert generate_payment_reference(NOW, FixedRandom(42)) == "PAY-1700000000000-42"
    assert generate_payment_reference(NOW, FixedRandom(7)) == "PAY-1700000000000-7"

    reference = generate_payment_reference(NOW, random.Random(1))
    assert re.fullmatch(r"PAY-1700000000000-(0|[1-9]\d{0,2})", reference)


def test_ticket_references_derive_from_payment_reference() -> None:
    assert ticket_references("PAY-1700000000000-42", 3) == [
        "PAY-1700000000000-42-TKT-0",
        "PAY-1700000000000-42-TKT-1",
        "PAY-1700000000000-42-TKT-2",
    ]
    assert ticket_reference("PAY-1-2", 0) == "PAY-1-2-TKT-0"

    with pytest.raises(ValueError):
        ticket_reference("PAY-1-2", -1)


def test_allowed_transitions() -> None:
    assert can_transition(PaymentStatus.PENDING, PaymentStatus.SUCCESS)
    assert can_transition(PaymentStatus.PENDING, PaymentStatus.FAILED)
    assert can_transition(PaymentStatus.SUCCESS, PaymentStatus.REFUNDED)

    assert not can_transition(PaymentStatus.SUCCESS, PaymentStatus.PENDING)
    assert not can_transition(PaymentStatus.FAILED, PaymentStatus.SUCCESS)
    assert not can_transition(PaymentStatus.PENDING, PaymentStatus.REFUNDED)


def test_transition_returns_new_payment_and_stamps_time() -> None:
    payment = _payment()
    succeeded = payment.transition_to(PaymentStatus.SUCCESS, NOW)

    assert payment.status is PaymentStatus.PENDING
    assert succeeded.status is PaymentStatus.SUCCESS
    assert succeeded.updated_at == NOW
    assert succeeded.status.is_terminal


def test_success_never_goes_back_to_pending() -> None:
    """Verify the state machine rejects success -> pending."""

    succeeded = _payment().transition_to(PaymentStatus.SUCCESS, NOW)

    with pytest.raises(InvalidPaymentTransition):
        succeeded.transition_to(PaymentStatus.PENDING, NOW)

    with pytest.raises(InvalidPaymentTransition):
        succeeded.transition_to(PaymentStatus.FAILED, NOW)


def test_payment_amount_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _payment(amount=Decimal("0"))

    with pytest.raises(ValueError):
        _payment(quantity=0)

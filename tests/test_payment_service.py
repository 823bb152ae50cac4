"""
Tests for `services/payment_service.py`.

Covers contract rules:
- initiate creates one pending payment and `quantity` pending tickets with
  references derived from the payment reference; nothing is reserved.
- A failure after the records exist removes them again (compensation); a
  reference that is already taken is redrawn and never deleted.
- verify commits a success exactly once: repeated calls return the stored
  result and never increment `sold` twice or regenerate QR codes.
- Only the purchaser may verify, and a refused caller changes nothing.
- A concurrent verify that loses the commit returns the stored result.
- A pending gateway answer changes nothing; a failure marks the payment and
  all of its tickets failed, and stays failed.
- A payment whose tier filled up in the meantime fails closed and is refunded.
- Refunds release the seats and move the tickets to failed.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from domain.money import Currency
from domain.payment import PaymentGatewayName, PaymentStatus
from domain.ticket import TicketStatus
from services.errors import (
    CapacityExceededAtVerification,
    GatewaySessionError,
    InsufficientInventory,
    NotAuthorized,
    PaymentFailed,
    PaymentNotFound,
    RefundNotSupported,
    TicketingError,
    TierNotFound,
    UnsupportedCurrency,
    UnsupportedGateway,
)
from services.payment_gateway import GatewayOutcome
from fakes import (
    BUYER_ID,
    EVENT_ID,
    FRIEND_ID,
    ORGANIZER_ID,
    Ticketing,
    build_ticketing,
    email_recipient,
    make_event,
)


def _buy(world: Ticketing, quantity: int = 1, gateway: str = "stripe", tier: str = "VIP", **kwargs):
    return world.orchestrator.initiate(
        event_id=EVENT_ID,
        tier_name=tier,
        quantity=quantity,
        user_id=BUYER_ID,
        gateway=gateway,
        **kwargs,
    )


# ============================================================================
# initiate
# ============================================================================

def test_initiate_creates_pending_payment_and_tickets(ticketing: Ticketing) -> None:
    """Verify the reference format and the pending batch for a three-ticket purchase."""

    handle = _buy(ticketing, quantity=3)

    assert handle.reference == "PAY-1700000000000-42"
    assert handle.ticket_references == [
        "PAY-1700000000000-42-TKT-0",
        "PAY-1700000000000-42-TKT-1",
        "PAY-1700000000000-42-TKT-2",
    ]
    assert handle.amount == Decimal("4500.00")
    assert handle.currency is Currency.GMD

    payment = ticketing.payment(handle.reference)
    assert payment.status is PaymentStatus.PENDING
    assert payment.gateway_session_id == handle.session_id
    assert len(payment.ticket_ids) == 3

    tickets = ticketing.tickets_for(handle.reference)
    assert [t.reference for t in tickets] == handle.ticket_references
    assert {t.status for t in tickets} == {TicketStatus.PENDING}
    assert {t.owner_id for t in tickets} == {BUYER_ID}
    assert all(t.qr_code is None for t in tickets)

    # Availability is checked, never reserved.
    assert ticketing.event().get_tier("VIP").sold == 0


def test_initiate_passes_reference_and_callback_to_gateway(ticketing: Ticketing) -> None:
    handle = _buy(ticketing, quantity=2)

    session = ticketing.stripe.sessions[0]
    assert session["reference"] == handle.reference
    assert session["callback_url"] == (
        f"https://tickets.example/payment-success?reference={handle.reference}&gateway=stripe"
    )
    assert session["metadata"]["ticket_type"] == "VIP"
    assert session["metadata"]["ticket_references"] == handle.ticket_references


def test_initiate_assigns_recipients_in_order(ticketing: Ticketing) -> None:
    """Verify ticket i gets recipient i, the rest default to the buyer's contact."""

    friend = email_recipient("friend@example.com", "Fatou")
    handle = _buy(ticketing, quantity=2, recipients=[friend])

    first, second = ticketing.tickets_for(handle.reference)
    assert first.recipient_info == friend
    assert second.recipient_info.value == "buyer@example.com"


def test_initiate_rejects_unknown_gateway_and_currency(ticketing: Ticketing) -> None:
    with pytest.raises(UnsupportedGateway) as excinfo:
        _buy(ticketing, gateway="paypal")
    assert excinfo.value.details["enabled_gateways"] == ["stripe", "wave"]

    with pytest.raises(UnsupportedCurrency):
        _buy(ticketing, currency="JPY")

    assert ticketing.payments.payments == {}
    assert ticketing.tickets.tickets == {}


def test_initiate_rejects_short_tier_without_creating_records() -> None:
    world = build_ticketing(make_event(vip_quantity=3, vip_sold=2))

    with pytest.raises(InsufficientInventory) as excinfo:
        _buy(world, quantity=2)

    assert excinfo.value.details["available"] == 1
    assert world.payments.payments == {}
    assert world.stripe.sessions == []


def test_initiate_rejects_free_tickets() -> None:
    event = make_event()
    free = replace(event, tiers=(replace(event.tiers[0], price=Decimal("0")), event.tiers[1]))
    world = build_ticketing(free)

    with pytest.raises(TicketingError):
        _buy(world)

    assert world.payments.payments == {}


def test_initiate_converts_to_requested_currency(ticketing: Ticketing) -> None:
    """Verify a GMD tier bought in USD is converted and the rate recorded."""

    handle = _buy(ticketing, currency="usd")

    payment = ticketing.payment(handle.reference)
    assert handle.currency is Currency.USD
    assert payment.exchange_rate == Decimal("0.01428571")
    assert handle.amount == Decimal("21.43")
    assert ticketing.stripe.sessions[0]["amount"] == Decimal("21.43")


def test_wave_settles_in_its_default_currency(ticketing: Ticketing) -> None:
    handle = _buy(ticketing, gateway="wave", currency="USD")

    assert handle.gateway is PaymentGatewayName.WAVE
    assert handle.currency is Currency.GMD
    assert handle.amount == Decimal("1500.00")
    assert ticketing.payment(handle.reference).exchange_rate is None


def test_gateway_failure_removes_pending_records(ticketing: Ticketing) -> None:
    """Verify compensation deletes the payment and its tickets."""

    ticketing.stripe.fail_create = True

    with pytest.raises(GatewaySessionError):
        _buy(ticketing, quantity=2)

    assert ticketing.payments.payments == {}
    assert ticketing.tickets.tickets == {}


def test_session_attach_failure_removes_pending_records(ticketing: Ticketing) -> None:
    ticketing.payments.fail_on_attach = True

    with pytest.raises(RuntimeError):
        _buy(ticketing)

    assert ticketing.payments.payments == {}
    assert ticketing.tickets.tickets == {}


def test_reference_collision_draws_a_new_reference(ticketing: Ticketing) -> None:
    """Verify a taken reference is skipped and the purchase gets a fresh one."""

    ticketing.rng.values = [42, 42, 7]
    first = _buy(ticketing)

    second = _buy(ticketing)

    assert first.reference == "PAY-1700000000000-42"
    assert second.reference == "PAY-1700000000000-7"
    assert second.ticket_references == ["PAY-1700000000000-7-TKT-0"]
    assert len(ticketing.payments.payments) == 2
    assert ticketing.payment(first.reference).status is PaymentStatus.PENDING


def test_reference_collision_never_removes_a_settled_payment(ticketing: Ticketing) -> None:
    """Verify running out of fresh references leaves the earlier purchase untouched."""

    first = _buy(ticketing)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("1500.00"))
    ticketing.orchestrator.verify(first.reference)

    with pytest.raises(RuntimeError):
        _buy(ticketing)

    assert ticketing.payment(first.reference).status is PaymentStatus.SUCCESS
    tickets = ticketing.tickets_for(first.reference)
    assert [t.status for t in tickets] == [TicketStatus.SUCCESS]
    assert len(ticketing.payments.payments) == 1
    assert len(ticketing.tickets.tickets) == 1
    assert ticketing.event().get_tier("VIP").sold == 1
    assert len(ticketing.stripe.sessions) == 1


def test_initiate_raises_tier_not_found_without_availability_check(
    ticketing: Ticketing, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(ticketing.inventory, "require_available", lambda *args: None)

    with pytest.raises(TierNotFound) as excinfo:
        _buy(ticketing, tier="Gold")

    assert excinfo.value.details["available_ticket_types"] == ["VIP", "Regular"]
    assert ticketing.payments.payments == {}


# ============================================================================
# verify
# ============================================================================

def test_verify_success_commits_sale(ticketing: Ticketing) -> None:
    """Verify tickets, inventory, QR codes and the confirmation after a paid session."""

    handle = _buy(ticketing, quantity=2)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("3000.00"), transaction_id="pi_123")

    result = ticketing.orchestrator.verify(handle.reference, "stripe")

    assert result.status == "success"
    assert not result.already_verified
    assert result.payment.gateway_transaction_id == "pi_123"
    assert {t.status for t in result.tickets} == {TicketStatus.SUCCESS}
    assert all(t.qr_code is not None for t in result.tickets)
    assert ticketing.event().get_tier("VIP").sold == 2

    user_id, summary = ticketing.notifications.purchases[0]
    assert user_id == BUYER_ID
    assert summary.quantity == 2
    assert summary.references == tuple(handle.ticket_references)


def test_verify_is_idempotent(ticketing: Ticketing) -> None:
    """Verify a second call returns the stored result and changes nothing."""

    handle = _buy(ticketing, quantity=2)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("3000.00"))

    first = ticketing.orchestrator.verify(handle.reference)
    second = ticketing.orchestrator.verify(handle.reference)

    assert second.already_verified
    assert second.message == "Payment already verified"
    assert second.payment == first.payment
    assert [t.qr_code for t in second.tickets] == [t.qr_code for t in first.tickets]
    assert ticketing.event().get_tier("VIP").sold == 2
    assert ticketing.stripe.status_calls == 1
    assert len(ticketing.notifications.purchases) == 1


def test_verify_accepts_gateway_session_id(ticketing: Ticketing) -> None:
    handle = _buy(ticketing)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("1500.00"))

    result = ticketing.orchestrator.verify(handle.session_id)

    assert result.payment.reference == handle.reference
    assert result.payment.status is PaymentStatus.SUCCESS


def test_verify_by_someone_else_changes_nothing(ticketing: Ticketing) -> None:
    """Verify a stranger is refused before the gateway is asked."""

    handle = _buy(ticketing)
    ticketing.stripe.will_report(GatewayOutcome.FAILED, provider_status="unpaid")

    with pytest.raises(NotAuthorized):
        ticketing.orchestrator.verify(handle.reference, requested_by=FRIEND_ID)

    assert ticketing.stripe.status_calls == 0
    assert ticketing.payment(handle.reference).status is PaymentStatus.PENDING
    assert {t.status for t in ticketing.tickets_for(handle.reference)} == {TicketStatus.PENDING}

    with pytest.raises(PaymentFailed):
        ticketing.orchestrator.verify(handle.reference, requested_by=BUYER_ID)


def test_concurrent_verify_commits_once(ticketing: Ticketing) -> None:
    """Verify the losing verify returns the winner's stored result."""

    handle = _buy(ticketing, quantity=2)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("3000.00"), transaction_id="pi_winner")
    winner = []
    ticketing.sales.before_commit = lambda: winner.append(ticketing.orchestrator.verify(handle.reference))

    result = ticketing.orchestrator.verify(handle.reference)

    assert not winner[0].already_verified
    assert result.already_verified
    assert result.status == "success"
    assert result.payment.gateway_transaction_id == "pi_winner"
    assert ticketing.sales.commit_calls == 2
    assert ticketing.event().get_tier("VIP").sold == 2
    assert ticketing.tickets.qr_writes == 2
    assert [t.qr_code for t in result.tickets] == [t.qr_code for t in winner[0].tickets]
    assert len(ticketing.notifications.purchases) == 1


def test_second_buyer_fails_closed_when_tier_fills() -> None:
    """Verify two purchases of the last tickets: the later verify fails and is refunded."""

    world = build_ticketing(make_event(vip_quantity=2))
    first = _buy(world, quantity=2)
    world.clock.advance(timedelta(milliseconds=1))
    second = _buy(world, quantity=2)
    assert first.reference != second.reference

    world.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("3000.00"), transaction_id="pi_late")

    assert world.orchestrator.verify(first.reference).status == "success"
    with pytest.raises(CapacityExceededAtVerification) as excinfo:
        world.orchestrator.verify(second.reference)

    assert excinfo.value.details["refunded"] is True
    assert excinfo.value.details["remaining"] == 0
    assert world.stripe.refunds == ["pi_late"]
    assert world.event().get_tier("VIP").sold == 2
    assert world.event().sold_out is False
    assert world.payment(second.reference).status is PaymentStatus.FAILED
    assert {t.status for t in world.tickets_for(second.reference)} == {TicketStatus.FAILED}

    with pytest.raises(PaymentFailed):
        world.orchestrator.verify(second.reference)


def test_wave_pending_leaves_everything_untouched(ticketing: Ticketing) -> None:
    """Verify a pending answer only records the time of the check."""

    handle = _buy(ticketing, gateway="wave")
    ticketing.clock.advance(timedelta(seconds=45))
    ticketing.wave.will_report(GatewayOutcome.PENDING, provider_status="processing")

    result = ticketing.orchestrator.verify(handle.reference, "wave")

    assert result.pending
    assert result.status == "pending"
    assert result.provider_status == "processing"
    payment = ticketing.payment(handle.reference)
    assert payment.status is PaymentStatus.PENDING
    assert payment.last_status_check == ticketing.clock()
    assert {t.status for t in ticketing.tickets_for(handle.reference)} == {TicketStatus.PENDING}
    assert ticketing.event().get_tier("VIP").sold == 0
    assert ticketing.sales.commit_calls == 0


def test_wave_pending_then_success(ticketing: Ticketing) -> None:
    handle = _buy(ticketing, gateway="wave")
    ticketing.wave.will_report(GatewayOutcome.PENDING)
    ticketing.wave.will_report(GatewayOutcome.SUCCESS, Decimal("1500.00"), transaction_id="T_1")

    assert ticketing.orchestrator.verify(handle.reference).pending
    result = ticketing.orchestrator.verify(handle.reference)

    assert result.status == "success"
    assert result.payment.gateway_transaction_id == "T_1"
    assert ticketing.event().get_tier("VIP").sold == 1


def test_unpaid_stripe_session_fails_payment_and_tickets(ticketing: Ticketing) -> None:
    """Verify a failed payment stays failed on retry without asking Stripe again."""

    handle = _buy(ticketing, quantity=2)
    ticketing.stripe.will_report(GatewayOutcome.FAILED, provider_status="unpaid")

    with pytest.raises(PaymentFailed) as excinfo:
        ticketing.orchestrator.verify(handle.reference)
    assert excinfo.value.status_code == 402
    assert excinfo.value.details["provider_status"] == "unpaid"

    assert ticketing.payment(handle.reference).status is PaymentStatus.FAILED
    assert {t.status for t in ticketing.tickets_for(handle.reference)} == {TicketStatus.FAILED}

    with pytest.raises(PaymentFailed):
        ticketing.orchestrator.verify(handle.reference)
    assert ticketing.stripe.status_calls == 1
    assert ticketing.event().get_tier("VIP").sold == 0


def test_amount_mismatch_fails_payment(ticketing: Ticketing) -> None:
    handle = _buy(ticketing)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("15.00"))

    with pytest.raises(PaymentFailed) as excinfo:
        ticketing.orchestrator.verify(handle.reference)

    assert "does not match" in excinfo.value.message
    assert ticketing.payment(handle.reference).status is PaymentStatus.FAILED
    assert ticketing.event().get_tier("VIP").sold == 0


def test_gateway_error_during_verify_fails_payment(ticketing: Ticketing) -> None:
    handle = _buy(ticketing, gateway="wave")
    ticketing.wave.fail_check = True

    with pytest.raises(GatewaySessionError):
        ticketing.orchestrator.verify(handle.reference)

    assert ticketing.payment(handle.reference).status is PaymentStatus.FAILED


def test_verify_unknown_reference(ticketing: Ticketing) -> None:
    with pytest.raises(PaymentNotFound):
        ticketing.orchestrator.verify("PAY-1-1")


def test_verify_rejects_mismatched_gateway(ticketing: Ticketing) -> None:
    handle = _buy(ticketing, gateway="wave")

    with pytest.raises(TicketingError):
        ticketing.orchestrator.verify(handle.reference, "stripe")

    assert ticketing.payment(handle.reference).status is PaymentStatus.PENDING


def test_qr_failure_does_not_change_outcome(ticketing: Ticketing) -> None:
    """Verify a QR storage failure leaves the sale committed."""

    handle = _buy(ticketing, quantity=2)
    broken = ticketing.tickets_for(handle.reference)[0].ticket_id
    ticketing.tickets.fail_qr_for.add(broken)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("3000.00"))

    result = ticketing.orchestrator.verify(handle.reference)

    assert result.payment.status is PaymentStatus.SUCCESS
    by_id = {t.ticket_id: t for t in result.tickets}
    assert by_id[broken].qr_code is None
    assert sum(1 for t in result.tickets if t.qr_code is not None) == 1


def test_notification_failure_does_not_change_outcome(ticketing: Ticketing) -> None:
    ticketing.notifications.fail = True
    handle = _buy(ticketing)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("1500.00"))

    result = ticketing.orchestrator.verify(handle.reference)

    assert result.payment.status is PaymentStatus.SUCCESS


# ============================================================================
# refund
# ============================================================================

def test_refund_releases_seats(ticketing: Ticketing) -> None:
    handle = _buy(ticketing, quantity=2)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("3000.00"), transaction_id="pi_9")
    ticketing.orchestrator.verify(handle.reference)

    payment = ticketing.orchestrator.refund(handle.reference, ORGANIZER_ID)

    assert payment.status is PaymentStatus.REFUNDED
    assert ticketing.stripe.refunds == ["pi_9"]
    assert ticketing.event().get_tier("VIP").sold == 0
    assert {t.status for t in ticketing.tickets_for(handle.reference)} == {TicketStatus.FAILED}

    result = ticketing.orchestrator.verify(handle.reference)
    assert result.message == "Payment was refunded"


def test_refund_requires_event_organizer(ticketing: Ticketing) -> None:
    handle = _buy(ticketing)
    ticketing.stripe.will_report(GatewayOutcome.SUCCESS, Decimal("1500.00"))
    ticketing.orchestrator.verify(handle.reference)

    with pytest.raises(NotAuthorized):
        ticketing.orchestrator.refund(handle.reference, FRIEND_ID)

    assert ticketing.stripe.refunds == []


def test_refund_only_for_successful_stripe_payments(ticketing: Ticketing) -> None:
    pending = _buy(ticketing)
    with pytest.raises(TicketingError):
        ticketing.orchestrator.refund(pending.reference, ORGANIZER_ID)

    ticketing.clock.advance(timedelta(milliseconds=1))
    wave = _buy(ticketing, gateway="wave")
    ticketing.wave.will_report(GatewayOutcome.SUCCESS, Decimal("1500.00"), transaction_id="T_2")
    ticketing.orchestrator.verify(wave.reference)

    with pytest.raises(RefundNotSupported):
        ticketing.orchestrator.refund(wave.reference, ORGANIZER_ID)
    assert ticketing.payment(wave.reference).status is PaymentStatus.SUCCESS


# ============================================================================
# reconciliation
# ============================================================================

def test_stale_pending_references(ticketing: Ticketing) -> None:
    wave = _buy(ticketing, gateway="wave")
    ticketing.clock.advance(timedelta(milliseconds=1))
    _buy(ticketing, gateway="stripe")

    assert ticketing.orchestrator.stale_pending_references("wave", timedelta(seconds=30)) == []

    ticketing.clock.advance(timedelta(minutes=1))
    assert ticketing.orchestrator.stale_pending_references("wave", timedelta(seconds=30)) == [wave.reference]

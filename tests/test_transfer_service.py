"""
Tests for `services/transfer_service.py`.

Covers contract rules:
- Only the current owner may transfer, and only paid, unscanned tickets.
- The sender may cancel within 24 hours; cancelling restores the previous state.
- Unregistered recipients claim the ticket from a matching account.
- Ownership writes are guarded by the ticket version; a stale writer loses.
- Expired transfers are finalized; unclaimed ones stay pending.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

import pytest

from domain.ticket import TicketStatus, TransferStatus
from domain.user import User
from services.errors import (
    ConcurrentModification,
    NoPendingTransfer,
    NotOwner,
    TicketAlreadyScanned,
    TicketingError,
    TicketNotFound,
    TicketNotPaid,
    TransferWindowExpired,
)
from fakes import (
    BUYER_ID,
    FRIEND_ID,
    NOW,
    ORGANIZER_ID,
    STRANGER_ID,
    Ticketing,
    email_recipient,
    make_ticket,
    mobile_recipient,
)

TICKET_ID = UUID("00000000-0000-0000-0000-000000000200")


def _seed(world: Ticketing, **kwargs) -> None:
    world.tickets.add(make_ticket(ticket_id=TICKET_ID, **kwargs))


def test_transfer_to_registered_user(ticketing: Ticketing) -> None:
    """Verify the recipient's account becomes the owner and both sides are told."""

    _seed(ticketing)
    recipient = email_recipient("Friend@Example.com", "Fatou")

    result = ticketing.transfers.transfer(TICKET_ID, BUYER_ID, recipient)

    assert result.recipient_is_registered
    assert result.ticket.owner_id == FRIEND_ID
    assert result.ticket.version == 1
    assert result.ticket.latest_transfer.expires_at == NOW + timedelta(hours=24)
    assert ticketing.notifications.notices[0][0] == recipient
    assert ticketing.notifications.confirmations[0][0] == BUYER_ID


def test_transfer_by_mobile_matches_digits(ticketing: Ticketing) -> None:
    _seed(ticketing)

    result = ticketing.transfers.transfer(TICKET_ID, BUYER_ID, mobile_recipient("+220 345 6789"))

    assert result.ticket.owner_id == FRIEND_ID


def test_transfer_to_local_mobile_number_finds_account(ticketing: Ticketing) -> None:
    """Verify a local Gambian number resolves to the account stored in E.164."""

    _seed(ticketing)

    result = ticketing.transfers.transfer(TICKET_ID, BUYER_ID, mobile_recipient("345 6789"))

    assert result.recipient_is_registered
    assert result.ticket.owner_id == FRIEND_ID


def test_transfer_preconditions(ticketing: Ticketing) -> None:
    _seed(ticketing)
    recipient = email_recipient("friend@example.com")

    with pytest.raises(NotOwner):
        ticketing.transfers.transfer(TICKET_ID, STRANGER_ID, recipient)

    with pytest.raises(TicketingError):
        ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("buyer@example.com"))

    with pytest.raises(TicketNotFound):
        ticketing.transfers.transfer(UUID("00000000-0000-0000-0000-000000000999"), BUYER_ID, recipient)


def test_unpaid_ticket_cannot_be_transferred(ticketing: Ticketing) -> None:
    _seed(ticketing, status=TicketStatus.PENDING)

    with pytest.raises(TicketNotPaid):
        ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("friend@example.com"))


def test_scanned_ticket_cannot_be_transferred(ticketing: Ticketing) -> None:
    _seed(ticketing)
    ticketing.tickets.mark_scanned(TICKET_ID, ORGANIZER_ID, NOW)

    with pytest.raises(TicketAlreadyScanned) as excinfo:
        ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("friend@example.com"))

    assert excinfo.value.details["scanned_at"] == NOW.isoformat()


def test_cancel_within_window_restores_owner(ticketing: Ticketing) -> None:
    _seed(ticketing)
    original = ticketing.tickets.get_by_id(TICKET_ID)
    ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("friend@example.com"))
    ticketing.clock.advance(timedelta(hours=23))

    ticket = ticketing.transfers.cancel_transfer(TICKET_ID, BUYER_ID)

    assert ticket.owner_id == BUYER_ID
    assert ticket.recipient_info == original.recipient_info
    assert not ticket.transferred
    assert ticket.latest_transfer.status is TransferStatus.CANCELLED
    assert ticket.version == 2


def test_cancel_rules(ticketing: Ticketing) -> None:
    """Verify cancellation needs a pending transfer, the sender, and an open window."""

    _seed(ticketing)
    with pytest.raises(NoPendingTransfer):
        ticketing.transfers.cancel_transfer(TICKET_ID, BUYER_ID)

    ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("friend@example.com"))
    with pytest.raises(NotOwner):
        ticketing.transfers.cancel_transfer(TICKET_ID, FRIEND_ID)

    ticketing.clock.advance(timedelta(hours=24))
    with pytest.raises(TransferWindowExpired):
        ticketing.transfers.cancel_transfer(TICKET_ID, BUYER_ID)
    assert ticketing.tickets.get_by_id(TICKET_ID).owner_id == FRIEND_ID


def test_unregistered_recipient_claims_ticket(ticketing: Ticketing) -> None:
    """Verify an ownerless ticket is claimed by the account that matches the contact."""

    _seed(ticketing)
    result = ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("newcomer@example.com"))
    assert not result.recipient_is_registered
    assert result.ticket.owner_id is None

    with pytest.raises(NotOwner):
        ticketing.transfers.claim_transfer(TICKET_ID, FRIEND_ID)
    with pytest.raises(NotOwner):
        ticketing.transfers.claim_transfer(TICKET_ID, UUID("00000000-0000-0000-0000-000000000555"))

    newcomer = User(user_id=UUID("00000000-0000-0000-0000-000000000005"), email="newcomer@example.com")
    ticketing.users.add(newcomer)
    ticket = ticketing.transfers.claim_transfer(TICKET_ID, newcomer.user_id)

    assert ticket.owner_id == newcomer.user_id
    assert ticket.latest_transfer.status is TransferStatus.COMPLETED

    with pytest.raises(NoPendingTransfer):
        ticketing.transfers.claim_transfer(TICKET_ID, newcomer.user_id)


def test_stale_writer_loses(ticketing: Ticketing, monkeypatch: pytest.MonkeyPatch) -> None:
    """Verify two transfers read from the same version cannot both apply."""

    _seed(ticketing)
    stale = ticketing.tickets.get_by_id(TICKET_ID)
    ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("friend@example.com"))

    monkeypatch.setattr(ticketing.tickets, "get_by_id", lambda ticket_id: stale)
    with pytest.raises(ConcurrentModification):
        ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("newcomer@example.com"))

    monkeypatch.undo()
    assert ticketing.tickets.get_by_id(TICKET_ID).owner_id == FRIEND_ID


def test_finalize_expired_transfers(ticketing: Ticketing) -> None:
    """Verify expired transfers complete while unclaimed ones stay pending."""

    _seed(ticketing)
    unclaimed_id = UUID("00000000-0000-0000-0000-000000000201")
    ticketing.tickets.add(make_ticket(ticket_id=unclaimed_id, index=1))
    ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("friend@example.com"))
    ticketing.transfers.transfer(unclaimed_id, BUYER_ID, email_recipient("newcomer@example.com"))

    assert ticketing.transfers.finalize_expired() == 0

    ticketing.clock.advance(timedelta(hours=25))
    assert ticketing.transfers.finalize_expired() == 1

    assert ticketing.tickets.get_by_id(TICKET_ID).latest_transfer.status is TransferStatus.COMPLETED
    assert ticketing.tickets.get_by_id(unclaimed_id).latest_transfer.status is TransferStatus.PENDING
    assert ticketing.transfers.finalize_expired() == 0


def test_transfer_history_visibility(ticketing: Ticketing) -> None:
    _seed(ticketing)
    ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("friend@example.com"))

    assert len(ticketing.transfers.get_transfer_history(TICKET_ID, BUYER_ID)) == 1
    assert len(ticketing.transfers.get_transfer_history(TICKET_ID, FRIEND_ID)) == 1
    with pytest.raises(NotOwner):
        ticketing.transfers.get_transfer_history(TICKET_ID, STRANGER_ID)


def test_notification_failure_does_not_block_transfer(ticketing: Ticketing) -> None:
    _seed(ticketing)
    ticketing.notifications.fail = True

    result = ticketing.transfers.transfer(TICKET_ID, BUYER_ID, email_recipient("friend@example.com"))

    assert result.ticket.owner_id == FRIEND_ID

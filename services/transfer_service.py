"""
Ticket ownership transfers.

Ownership lives only on the ticket row, so every transfer mutation is one
conditional update guarded by the row's `version`. A writer that loses the
race gets ConcurrentModification and nothing is written.

Rules:
- Only the current owner may transfer, and only paid, unscanned tickets.
- A transfer stays `pending` for 24 hours; during that window the sender may
  cancel it, which restores the previous owner and recipient info.
- A recipient without an account leaves the ticket ownerless until they claim
  it from a registered account whose email or mobile matches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Protocol
from uuid import UUID

from domain.event import Event
from domain.ticket import RecipientInfo, Ticket, TransferRecord, TransferStatus
from domain.time import to_iso_utc, utc_now
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
from services.notification_service import NotificationService, TicketSummary

logger = logging.getLogger(__name__)


class TicketStore(Protocol):
    def get_by_id(self, ticket_id: UUID) -> Optional[Ticket]: ...

    def save_ownership(self, ticket: Ticket) -> Optional[Ticket]: ...

    def list_with_pending_transfers(self, limit: int = 500) -> List[Ticket]: ...


class UserDirectory(Protocol):
    def get_by_id(self, user_id: UUID) -> Optional[User]: ...

    def find_by_contact(self, recipient: RecipientInfo) -> Optional[User]: ...


class EventLookup(Protocol):
    def get_event(self, event_id: UUID) -> Optional[Event]: ...


@dataclass(frozen=True, slots=True)
class TransferResult:
    ticket: Ticket
    recipient_is_registered: bool


class TransferService:
    def __init__(
        self,
        tickets: TicketStore,
        users: UserDirectory,
        events: EventLookup,
        notifications: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._tickets = tickets
        self._users = users
        self._events = events
        self._notifications = notifications
        self._clock = clock

    def _load(self, ticket_id: UUID) -> Ticket:
        ticket = self._tickets.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def _save(self, ticket: Ticket) -> Ticket:
        saved = self._tickets.save_ownership(ticket)
        if saved is None:
            logger.warning("Ticket ownership write lost a race", extra={"ticket_id": str(ticket.ticket_id)})
            raise ConcurrentModification(ticket.ticket_id)
        return saved

    def transfer(self, ticket_id: UUID, from_user_id: UUID, recipient: RecipientInfo) -> TransferResult:
        """
        Move a paid ticket to another person.

        Raises:
            TicketNotFound, NotOwner, TicketNotPaid, TicketAlreadyScanned, ConcurrentModification
        """

        ticket = self._load(ticket_id)
        if ticket.owner_id != from_user_id:
            raise NotOwner()
        if not ticket.is_paid:
            raise TicketNotPaid(ticket.ticket_id, ticket.status.value, action="transferred")
        if ticket.scanned:
            scanned_at = to_iso_utc(ticket.scanned_at, name="scanned_at") if ticket.scanned_at else None
            raise TicketAlreadyScanned(ticket.ticket_id, scanned_at)
        if not recipient.value:
            raise TicketingError("Recipient contact is required")

        account = self._users.find_by_contact(recipient)
        if account is not None and account.user_id == from_user_id:
            raise TicketingError("You cannot transfer a ticket to yourself")

        now = self._clock()
        saved = self._save(
            ticket.transfer_to(
                from_user_id=from_user_id,
                recipient=recipient,
                recipient_user_id=account.user_id if account else None,
                at=now,
            )
        )
        logger.info(
            "Ticket transferred",
            extra={
                "ticket_id": str(ticket_id),
                "recipient_type": recipient.type.value,
                "recipient_registered": account is not None,
            },
        )

        self._notify_transfer(saved, from_user_id, recipient)
        return TransferResult(ticket=saved, recipient_is_registered=account is not None)

    def cancel_transfer(self, ticket_id: UUID, user_id: UUID) -> Ticket:
        """
        Undo the latest transfer while it is still pending.

        Raises:
            TicketNotFound, NoPendingTransfer, NotOwner, TransferWindowExpired, ConcurrentModification
        """

        ticket = self._load(ticket_id)
        latest = ticket.latest_transfer
        if latest is None or latest.status is not TransferStatus.PENDING:
            raise NoPendingTransfer(ticket_id=str(ticket_id))
        if latest.from_user_id != user_id:
            raise NotOwner("Only the sender can cancel this transfer")

        now = self._clock()
        if latest.is_expired(now):
            raise TransferWindowExpired(to_iso_utc(latest.expires_at, name="expires_at"))

        saved = self._save(ticket.cancel_latest_transfer(by=user_id, at=now))
        logger.info("Ticket transfer cancelled", extra={"ticket_id": str(ticket_id)})
        return saved

    def claim_transfer(self, ticket_id: UUID, user_id: UUID) -> Ticket:
        """
        Take ownership of a ticket sent to this user's email or mobile number.

        Raises:
            TicketNotFound, NoPendingTransfer, NotOwner, ConcurrentModification
        """

        user = self._users.get_by_id(user_id)
        if user is None:
            raise NotOwner("Unknown account")
        ticket = self._load(ticket_id)
        latest = ticket.latest_transfer
        if latest is None or latest.status is not TransferStatus.PENDING:
            raise NoPendingTransfer("No pending transfer to claim", ticket_id=str(ticket_id))
        if latest.to_user_id != user.user_id and not user.owns_contact(latest.to):
            raise NotOwner("This ticket was not transferred to you")

        saved = self._save(ticket.complete_latest_transfer(at=self._clock(), owner_id=user.user_id))
        logger.info("Ticket transfer claimed", extra={"ticket_id": str(ticket_id), "user_id": str(user.user_id)})
        return saved

    def finalize_expired(self, now: Optional[datetime] = None) -> int:
        """
        Close every pending transfer whose cancellation window has passed.

        Transfers to recipients without an account stay pending until claimed.

        Returns:
            Number of transfers marked completed
        """

        now = now or self._clock()
        finalized = 0
        for ticket in self._tickets.list_with_pending_transfers():
            latest = ticket.latest_transfer
            if latest is None or latest.status is not TransferStatus.PENDING or not latest.is_expired(now):
                continue
            if ticket.owner_id is None:
                # Still waiting for an unregistered recipient to claim it.
                continue
            try:
                self._save(ticket.complete_latest_transfer(at=now))
            except ConcurrentModification:
                continue
            finalized += 1
        logger.info("Expired transfers finalized", extra={"count": finalized})
        return finalized

    def get_transfer_history(self, ticket_id: UUID, user_id: UUID) -> List[TransferRecord]:
        """History is visible to the current owner and to anyone who sent or received the ticket."""

        ticket = self._load(ticket_id)
        involved = ticket.owner_id == user_id or any(
            record.from_user_id == user_id or record.to_user_id == user_id for record in ticket.transfer_history
        )
        if not involved:
            raise NotOwner("You are not allowed to view this ticket's history")
        return list(ticket.transfer_history)

    def _notify_transfer(self, ticket: Ticket, from_user_id: UUID, recipient: RecipientInfo) -> None:
        if self._notifications is None:
            return
        try:
            event = self._events.get_event(ticket.event_id)
            if event is None:
                return
            summary = TicketSummary(
                event_title=event.title,
                event_date=event.date,
                tier_name=ticket.tier_name,
                quantity=1,
                references=(ticket.reference,),
            )
            self._notifications.send_transfer_notice(recipient, summary)
            self._notifications.send_transfer_confirmation(from_user_id, recipient, summary)
        except Exception:
            logger.exception("Transfer notification failed", extra={"ticket_id": str(ticket.ticket_id)})


__all__ = ["TransferResult", "TransferService"]

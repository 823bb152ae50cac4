"""
Ticket records: batch construction, QR association and lookups.

Ticket status is never changed here; it moves in lockstep with the parent
payment through the sale commit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence
from uuid import UUID, uuid4

from domain.payment import ticket_references
from domain.ticket import RecipientInfo, Ticket, TicketStatus
from repositories.event_repository import EventRepository
from repositories.ticket_repository import TicketRepository
from services.errors import TicketingError, TicketNotFound, TicketNotPaid
from services.qr_code_service import QRCodeService

logger = logging.getLogger(__name__)


def build_tickets(
    *,
    event_id: UUID,
    owner_id: UUID,
    tier_name: str,
    unit_price: Decimal,
    payment_reference: str,
    quantity: int,
    recipients: Sequence[Optional[RecipientInfo]],
    fallback_recipient: RecipientInfo,
    created_at: datetime,
    id_factory: Callable[[], UUID] = uuid4,
) -> List[Ticket]:
    """
    Build `quantity` pending tickets for one purchase.

    Ticket i gets recipients[i] when one was given, else the purchaser's contact.
    """

    tickets: List[Ticket] = []
    for index, reference in enumerate(ticket_references(payment_reference, quantity)):
        recipient = recipients[index] if index < len(recipients) else None
        tickets.append(
            Ticket(
                ticket_id=id_factory(),
                event_id=event_id,
                owner_id=owner_id,
                recipient_info=recipient or fallback_recipient,
                tier_name=tier_name,
                price=unit_price,
                reference=reference,
                payment_reference=payment_reference,
                status=TicketStatus.PENDING,
                created_at=created_at,
            )
        )
    return tickets


class TicketService:
    def __init__(self, tickets: TicketRepository, events: EventRepository, qr_codes: QRCodeService):
        self._tickets = tickets
        self._events = events
        self._qr_codes = qr_codes

    def get_ticket(self, ticket_id: UUID) -> Ticket:
        ticket = self._tickets.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def generate_qr(self, ticket: Ticket, now: datetime) -> Ticket:
        """
        Sign and store a QR payload for a paid ticket.

        Raises:
            TicketNotPaid: for pending or failed tickets
        """

        if ticket.status is not TicketStatus.SUCCESS:
            raise TicketNotPaid(ticket.ticket_id, ticket.status.value, action="given a QR code")
        qr_code = self._qr_codes.generate(ticket, now)
        self._tickets.set_qr_code(ticket.ticket_id, qr_code)
        return ticket.with_qr_code(qr_code)

    def generate_qr_codes(self, payment_reference: str, now: datetime) -> int:
        """
        Generate QR codes for every paid ticket of a payment that lacks one.

        Failures are logged per ticket and never raised.

        Returns:
            Number of QR codes generated
        """

        generated = 0
        for ticket in self._tickets.list_by_payment_reference(payment_reference):
            if ticket.qr_code is not None or not ticket.is_paid:
                continue
            try:
                self.generate_qr(ticket, now)
                generated += 1
            except Exception:
                logger.exception(
                    "QR code generation failed",
                    extra={"ticket_id": str(ticket.ticket_id), "reference": ticket.reference},
                )
        return generated

    def list_user_tickets(self, user_id: UUID) -> List[Ticket]:
        return self._tickets.list_by_owner(user_id)

    def list_event_tickets(self, event_id: UUID) -> List[Ticket]:
        return self._tickets.list_by_event(event_id)

    def search_by_reference(self, fragment: str, admin_id: UUID) -> List[Ticket]:
        """Search tickets by reference, limited to events the admin organizes."""

        fragment = fragment.strip()
        if not fragment:
            raise TicketingError("A reference fragment is required")
        return self._tickets.search_by_reference(fragment, self._events.list_event_ids_created_by(admin_id))


__all__ = ["TicketService", "build_tickets"]

"""
Door scanning for event organizers.

A ticket is admitted once. The scanned flag is set with a conditional update
(`scanned = false`), so two scanners reading the same ticket at the same time
cannot both admit it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol
from uuid import UUID

from domain.event import Event
from domain.ticket import Ticket
from domain.time import to_iso_utc, utc_now
from services.errors import (
    EventAlreadyPassed,
    EventNotFound,
    InvalidQRCode,
    NotAuthorized,
    TicketAlreadyScanned,
    TicketingError,
    TicketNotFound,
    TicketNotPaid,
)
from services.qr_code_service import QRCodeService

logger = logging.getLogger(__name__)


class ScanTicketStore(Protocol):
    def get_by_id(self, ticket_id: UUID) -> Optional[Ticket]: ...

    def mark_scanned(self, ticket_id: UUID, scanned_by: UUID, at: datetime) -> Optional[Ticket]: ...


class ScanEventStore(Protocol):
    def get_event(self, event_id: UUID) -> Optional[Event]: ...


@dataclass(frozen=True, slots=True)
class ScanResult:
    ticket: Ticket
    event: Event


def _scanned_at(ticket: Ticket) -> Optional[str]:
    return to_iso_utc(ticket.scanned_at, name="scanned_at") if ticket.scanned_at else None


class ScanService:
    def __init__(
        self,
        tickets: ScanTicketStore,
        events: ScanEventStore,
        qr_codes: QRCodeService,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._tickets = tickets
        self._events = events
        self._qr_codes = qr_codes
        self._clock = clock

    def _resolve(self, ticket_id: Optional[UUID], qr_data: Optional[str], now: datetime) -> Ticket:
        if qr_data:
            payload = self._qr_codes.verify(qr_data, now)
            if ticket_id is not None and ticket_id != payload.ticket_id:
                raise InvalidQRCode("QR code does not belong to this ticket")
            ticket = self._tickets.get_by_id(payload.ticket_id)
            if ticket is not None and ticket.reference != payload.reference:
                raise InvalidQRCode("QR code does not match the ticket")
            ticket_id = payload.ticket_id
        elif ticket_id is not None:
            ticket = self._tickets.get_by_id(ticket_id)
        else:
            raise TicketingError("Either a ticket id or QR data is required")

        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def scan(self, admin_id: UUID, ticket_id: Optional[UUID] = None, qr_data: Optional[str] = None) -> ScanResult:
        """
        Admit a ticket holder.

        Raises:
            TicketNotFound, InvalidQRCode, NotAuthorized, TicketNotPaid,
            TicketAlreadyScanned, EventAlreadyPassed
        """

        now = self._clock()
        ticket = self._resolve(ticket_id, qr_data, now)

        event = self._events.get_event(ticket.event_id)
        if event is None:
            raise EventNotFound(ticket.event_id)
        if event.created_by != admin_id:
            raise NotAuthorized("You can only scan tickets for events you created", event_id=str(event.event_id))

        if not ticket.is_paid:
            raise TicketNotPaid(ticket.ticket_id, ticket.status.value, action="scanned")
        if ticket.scanned:
            raise TicketAlreadyScanned(ticket.ticket_id, _scanned_at(ticket))
        if event.has_passed(now):
            raise EventAlreadyPassed(event.event_id, to_iso_utc(event.date, name="date"))

        scanned = self._tickets.mark_scanned(ticket.ticket_id, admin_id, now)
        if scanned is None:
            # Another scanner got there first; report their scan time.
            current = self._tickets.get_by_id(ticket.ticket_id) or ticket
            raise TicketAlreadyScanned(ticket.ticket_id, _scanned_at(current))

        logger.info(
            "Ticket scanned",
            extra={"ticket_id": str(ticket.ticket_id), "event_id": str(event.event_id), "scanned_by": str(admin_id)},
        )
        return ScanResult(ticket=scanned, event=event)


__all__ = ["ScanResult", "ScanService"]

"""
Ticket repository (persistence).

Persists Ticket entities. Recipient info, transfer history and QR code are
stored as JSONB columns on the ticket row, so every ownership change is a
single-row update. Ownership updates are guarded by the `version` column
(optimistic locking); a guard miss returns None instead of writing.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional
from uuid import UUID

from supabase import Client  # type: ignore[import-not-found]

from domain.ticket import (
    QRCode,
    RecipientInfo,
    RecipientType,
    Ticket,
    TicketStatus,
    TransferRecord,
    TransferStatus,
)
from domain.time import parse_optional_utc_datetime, parse_utc_datetime, to_iso_utc
from repositories.client import raise_for_error, response_rows

_TICKETS_TABLE: str = "tickets"


def _uuid_or_none(value: Any) -> Optional[UUID]:
    return UUID(str(value)) if value else None


def _iso_or_none(value: Optional[datetime], name: str) -> Optional[str]:
    return to_iso_utc(value, name=name) if value is not None else None


def recipient_to_json(info: Optional[RecipientInfo]) -> Optional[dict[str, Any]]:
    if info is None:
        return None
    return {"type": info.type.value, "value": info.value, "name": info.name}


def recipient_from_json(data: Optional[Mapping[str, Any]]) -> Optional[RecipientInfo]:
    if not data:
        return None
    return RecipientInfo(type=RecipientType(str(data["type"])), value=data.get("value"), name=data.get("name"))


def transfer_to_json(record: TransferRecord) -> dict[str, Any]:
    return {
        "from": str(record.from_user_id),
        "to": recipient_to_json(record.to),
        "to_user": str(record.to_user_id) if record.to_user_id else None,
        "transferred_at": to_iso_utc(record.transferred_at, name="transferred_at"),
        "expires_at": to_iso_utc(record.expires_at, name="expires_at"),
        "status": record.status.value,
        "previous_recipient_info": recipient_to_json(record.previous_recipient_info),
        "previous_transferred": record.previous_transferred,
        "cancelled_at": _iso_or_none(record.cancelled_at, "cancelled_at"),
        "cancelled_by": str(record.cancelled_by) if record.cancelled_by else None,
        "completed_at": _iso_or_none(record.completed_at, "completed_at"),
    }


def transfer_from_json(data: Mapping[str, Any]) -> TransferRecord:
    to = recipient_from_json(data.get("to"))
    if to is None:
        raise ValueError("Transfer record is missing its recipient")
    return TransferRecord(
        from_user_id=UUID(str(data["from"])),
        to=to,
        to_user_id=_uuid_or_none(data.get("to_user")),
        transferred_at=parse_utc_datetime(data["transferred_at"]),
        expires_at=parse_utc_datetime(data["expires_at"]),
        status=TransferStatus(str(data["status"])),
        previous_recipient_info=recipient_from_json(data.get("previous_recipient_info")),
        previous_transferred=bool(data.get("previous_transferred", False)),
        cancelled_at=parse_optional_utc_datetime(data.get("cancelled_at")),
        cancelled_by=_uuid_or_none(data.get("cancelled_by")),
        completed_at=parse_optional_utc_datetime(data.get("completed_at")),
    )


def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
    """Convert a Supabase row into a Ticket."""

    qr = row.get("qr_code")
    return Ticket(
        ticket_id=UUID(str(row["ticket_id"])),
        event_id=UUID(str(row["event_id"])),
        owner_id=_uuid_or_none(row.get("owner_id")),
        recipient_info=recipient_from_json(row.get("recipient_info")),
        tier_name=str(row["tier_name"]),
        price=Decimal(str(row["price"])),
        reference=str(row["reference"]),
        payment_reference=str(row["payment_reference"]),
        status=TicketStatus(str(row["status"])),
        scanned=bool(row.get("scanned", False)),
        scanned_at=parse_optional_utc_datetime(row.get("scanned_at_utc")),
        scanned_by=_uuid_or_none(row.get("scanned_by")),
        transferred=bool(row.get("transferred", False)),
        transfer_history=tuple(transfer_from_json(t) for t in (row.get("transfer_history") or [])),
        qr_code=QRCode(data=str(qr["data"]), generated_at=parse_utc_datetime(qr["generated_at"])) if qr else None,
        created_at=parse_optional_utc_datetime(row.get("created_at_utc")),
        version=int(row.get("version") or 0),
    )


def _ownership_payload(ticket: Ticket, version: int) -> dict[str, Any]:
    return {
        "owner_id": str(ticket.owner_id) if ticket.owner_id else None,
        "recipient_info": recipient_to_json(ticket.recipient_info),
        "transferred": ticket.transferred,
        "transfer_history": [transfer_to_json(t) for t in ticket.transfer_history],
        "version": version,
    }


def _ticket_to_row(ticket: Ticket) -> dict[str, Any]:
    row = {
        "ticket_id": str(ticket.ticket_id),
        "event_id": str(ticket.event_id),
        "tier_name": ticket.tier_name,
        "price": str(ticket.price),
        "reference": ticket.reference,
        "payment_reference": ticket.payment_reference,
        "status": ticket.status.value,
        "scanned": ticket.scanned,
        "scanned_at_utc": _iso_or_none(ticket.scanned_at, "scanned_at"),
        "scanned_by": str(ticket.scanned_by) if ticket.scanned_by else None,
        "qr_code": None,
        "created_at_utc": _iso_or_none(ticket.created_at, "created_at"),
    }
    row.update(_ownership_payload(ticket, ticket.version))
    return row


class TicketRepository:
    """Supabase-backed ticket persistence."""

    def __init__(self, client: Client):
        self._client = client

    def _select(self):
        return self._client.table(_TICKETS_TABLE).select("*")

    def create_many(self, tickets: Iterable[Ticket]) -> None:
        """Insert a batch of tickets in one request (the reference column is UNIQUE)."""

        rows = [_ticket_to_row(t) for t in tickets]
        if not rows:
            return
        response = self._client.table(_TICKETS_TABLE).insert(rows).execute()
        raise_for_error(response, "create tickets")

    def get_by_id(self, ticket_id: UUID) -> Optional[Ticket]:
        response = self._select().eq("ticket_id", str(ticket_id)).limit(1).execute()
        raise_for_error(response, "fetch ticket")
        rows = response_rows(response)
        return _row_to_ticket(rows[0]) if rows else None

    def list_by_payment_reference(self, payment_reference: str) -> List[Ticket]:
        response = self._select().eq("payment_reference", payment_reference).order("reference").execute()
        raise_for_error(response, "list tickets by payment")
        return [_row_to_ticket(row) for row in response_rows(response)]

    def list_by_owner(self, owner_id: UUID) -> List[Ticket]:
        response = self._select().eq("owner_id", str(owner_id)).order("created_at_utc", desc=True).execute()
        raise_for_error(response, "list tickets by owner")
        return [_row_to_ticket(row) for row in response_rows(response)]

    def list_by_event(self, event_id: UUID) -> List[Ticket]:
        response = self._select().eq("event_id", str(event_id)).execute()
        raise_for_error(response, "list tickets by event")
        return [_row_to_ticket(row) for row in response_rows(response)]

    def search_by_reference(self, fragment: str, event_ids: List[UUID], limit: int = 50) -> List[Ticket]:
        """Case-insensitive reference search restricted to the given events."""

        if not event_ids:
            return []
        response = (
            self._select()
            .ilike("reference", f"%{fragment}%")
            .in_("event_id", [str(e) for e in event_ids])
            .limit(limit)
            .execute()
        )
        raise_for_error(response, "search tickets")
        return [_row_to_ticket(row) for row in response_rows(response)]

    def list_with_pending_transfers(self, limit: int = 500) -> List[Ticket]:
        response = (
            self._select()
            .eq("transferred", True)
            .contains("transfer_history", [{"status": TransferStatus.PENDING.value}])
            .limit(limit)
            .execute()
        )
        raise_for_error(response, "list pending transfers")
        return [_row_to_ticket(row) for row in response_rows(response)]

    def delete_by_payment_reference(self, payment_reference: str) -> None:
        """Delete the still-pending tickets of a payment (initiate compensation)."""

        response = (
            self._client.table(_TICKETS_TABLE)
            .delete()
            .eq("payment_reference", payment_reference)
            .eq("status", TicketStatus.PENDING.value)
            .execute()
        )
        raise_for_error(response, "delete tickets")

    def set_qr_code(self, ticket_id: UUID, qr_code: QRCode) -> None:
        payload = {"qr_code": {"data": qr_code.data, "generated_at": to_iso_utc(qr_code.generated_at, name="generated_at")}}
        response = self._client.table(_TICKETS_TABLE).update(payload).eq("ticket_id", str(ticket_id)).execute()
        raise_for_error(response, "store QR code")

    def save_ownership(self, ticket: Ticket) -> Optional[Ticket]:
        """
        Write owner, recipient info and transfer history if nobody changed the row since it was read.

        Returns:
            The saved Ticket (version incremented) or None if the version guard failed
        """

        response = (
            self._client.table(_TICKETS_TABLE)
            .update(_ownership_payload(ticket, ticket.version + 1))
            .eq("ticket_id", str(ticket.ticket_id))
            .eq("version", ticket.version)
            .execute()
        )
        raise_for_error(response, "save ticket ownership")
        rows = response_rows(response)
        return _row_to_ticket(rows[0]) if rows else None

    def mark_scanned(self, ticket_id: UUID, scanned_by: UUID, at: datetime) -> Optional[Ticket]:
        """
        Flag a ticket as scanned only if it is not scanned yet.

        Returns:
            The updated Ticket, or None if it was already scanned
        """

        response = (
            self._client.table(_TICKETS_TABLE)
            .update({
                "scanned": True,
                "scanned_at_utc": to_iso_utc(at, name="at"),
                "scanned_by": str(scanned_by),
            })
            .eq("ticket_id", str(ticket_id))
            .eq("scanned", False)
            .execute()
        )
        raise_for_error(response, "mark ticket scanned")
        rows = response_rows(response)
        return _row_to_ticket(rows[0]) if rows else None


__all__ = ["TicketRepository"]

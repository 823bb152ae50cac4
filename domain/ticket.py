"""
Domain: Tickets, recipients and ownership transfers.

Contract implemented here:
- A ticket's status mirrors its parent Payment (pending, success, failed); the
  status is only ever set in lockstep with the payment by the orchestrator.
- Ownership moves through TransferRecords appended to `transfer_history`.
  A record is `pending` for a 24-hour window, during which the original owner
  may cancel it; cancelling restores the previous owner and recipient info.
- `owner_id` is None while a ticket waits to be claimed by an unregistered
  recipient.

Transitions return new Ticket instances; history tuples are never mutated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
from uuid import UUID

from .time import require_utc_timestamp

TRANSFER_WINDOW = timedelta(hours=24)

# Country codes whose local numbers are written without them (see format_phone_number).
_LOCAL_PREFIXES: Tuple[str, ...] = ("+220", "+974")


class TicketStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class RecipientType(str, Enum):
    MOBILE = "mobile"
    EMAIL = "email"


class TransferStatus(str, Enum):
    PENDING = "pending"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class RecipientInfo:
    type: RecipientType
    value: Optional[str] = None
    name: Optional[str] = None

    def matches(self, email: Optional[str], mobile_number: Optional[str]) -> bool:
        """True if the contact value identifies the given account details."""

        if not self.value:
            return False
        if self.type is RecipientType.EMAIL:
            return email is not None and email.strip().lower() == self.value.strip().lower()
        return mobile_number is not None and _same_phone_number(mobile_number, self.value)


def format_phone_number(phone_number: str) -> str:
    """
    Normalize a local or international number to E.164.

    Local formats: Gambia has 7-digit numbers (+220), Qatar 8-digit (+974);
    either may carry a leading 0 trunk prefix. 10-digit numbers are North American.
    """

    formatted = re.sub(r"[^\d+]", "", phone_number or "")
    if not formatted.strip("+"):
        raise ValueError("Phone number has no digits")
    if formatted.startswith("+"):
        return formatted

    if formatted.startswith("0"):
        if len(formatted) == 8:
            return "+220" + formatted[1:]
        if len(formatted) == 9:
            return "+974" + formatted[1:]

    if len(formatted) == 7:
        return "+220" + formatted
    if len(formatted) == 8:
        return "+974" + formatted
    if len(formatted) == 10:
        return "+1" + formatted
    return "+" + formatted


def phone_number_variants(phone_number: str) -> Tuple[str, ...]:
    """Spellings under which the same number may have been stored on an account."""

    e164 = format_phone_number(phone_number)
    variants = {phone_number.strip(), e164, e164[1:]}
    for prefix in _LOCAL_PREFIXES:
        if e164.startswith(prefix):
            local = e164[len(prefix):]
            variants.update({local, "0" + local})
    return tuple(sorted(variants))


def _same_phone_number(a: str, b: str) -> bool:
    try:
        e164_a, e164_b = format_phone_number(a), format_phone_number(b)
    except ValueError:
        return False
    # A country code written without "+" is read as a local number by format_phone_number.
    return e164_a == e164_b or re.sub(r"\D", "", a) == re.sub(r"\D", "", b)


@dataclass(frozen=True, slots=True)
class TransferRecord:
    """
    One ownership move attempt.

    previous_recipient_info is the ticket's recipient info before the move; it is
    restored verbatim when the transfer is cancelled.
    """

    from_user_id: UUID
    to: RecipientInfo
    to_user_id: Optional[UUID]
    transferred_at: datetime
    expires_at: datetime
    status: TransferStatus = TransferStatus.PENDING
    previous_recipient_info: Optional[RecipientInfo] = None
    previous_transferred: bool = False
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[UUID] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("transferred_at", self.transferred_at)
        require_utc_timestamp("expires_at", self.expires_at)
        if self.expires_at <= self.transferred_at:
            raise ValueError("expires_at must be after transferred_at")

    def is_expired(self, as_of: datetime) -> bool:
        return as_of >= self.expires_at


@dataclass(frozen=True, slots=True)
class QRCode:
    data: str
    generated_at: datetime

    def __post_init__(self) -> None:
        require_utc_timestamp("generated_at", self.generated_at)


@dataclass(frozen=True, slots=True)
class Ticket:
    """
    A single admission ticket, created in a batch tied to one Payment.
    """

    ticket_id: UUID
    event_id: UUID
    owner_id: Optional[UUID]
    recipient_info: Optional[RecipientInfo]
    tier_name: str
    price: Decimal
    reference: str
    payment_reference: str
    status: TicketStatus = TicketStatus.PENDING
    scanned: bool = False
    scanned_at: Optional[datetime] = None
    scanned_by: Optional[UUID] = None
    transferred: bool = False
    transfer_history: Tuple[TransferRecord, ...] = ()
    qr_code: Optional[QRCode] = None
    created_at: Optional[datetime] = None
    version: int = 0  # Optimistic locking for ownership changes

    def __post_init__(self) -> None:
        if not self.reference.startswith(f"{self.payment_reference}-TKT-"):
            raise ValueError("Ticket reference must derive from its payment reference")
        if self.scanned_at is not None:
            require_utc_timestamp("scanned_at", self.scanned_at)
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)

    @property
    def is_paid(self) -> bool:
        return self.status is TicketStatus.SUCCESS

    @property
    def latest_transfer(self) -> Optional[TransferRecord]:
        return self.transfer_history[-1] if self.transfer_history else None

    @property
    def has_pending_transfer(self) -> bool:
        latest = self.latest_transfer
        return latest is not None and latest.status is TransferStatus.PENDING

    def with_status(self, status: TicketStatus) -> "Ticket":
        return replace(self, status=status)

    def with_qr_code(self, qr_code: QRCode) -> "Ticket":
        return replace(self, qr_code=qr_code)

    def mark_scanned(self, by: UUID, at: datetime) -> "Ticket":
        require_utc_timestamp("at", at)
        if self.scanned:
            raise ValueError("Ticket already scanned")
        return replace(self, scanned=True, scanned_at=at, scanned_by=by)

    def transfer_to(
        self,
        *,
        from_user_id: UUID,
        recipient: RecipientInfo,
        recipient_user_id: Optional[UUID],
        at: datetime,
        window: timedelta = TRANSFER_WINDOW,
    ) -> "Ticket":
        """
        Move ownership to `recipient` and append a pending TransferRecord.

        A still-pending previous record is closed as completed first, since the
        ticket is moving on and that move can no longer be undone.
        """

        require_utc_timestamp("at", at)
        history = list(self.transfer_history)
        if history and history[-1].status is TransferStatus.PENDING:
            history[-1] = replace(history[-1], status=TransferStatus.COMPLETED, completed_at=at)

        history.append(
            TransferRecord(
                from_user_id=from_user_id,
                to=recipient,
                to_user_id=recipient_user_id,
                transferred_at=at,
                expires_at=at + window,
                previous_recipient_info=self.recipient_info,
                previous_transferred=self.transferred,
            )
        )
        return replace(
            self,
            owner_id=recipient_user_id,
            recipient_info=recipient,
            transferred=True,
            transfer_history=tuple(history),
        )

    def cancel_latest_transfer(self, *, by: UUID, at: datetime) -> "Ticket":
        """Revert the latest pending transfer, restoring the pre-transfer owner and recipient."""

        require_utc_timestamp("at", at)
        latest = self.latest_transfer
        if latest is None or latest.status is not TransferStatus.PENDING:
            raise ValueError("No pending transfer to cancel")

        cancelled = replace(latest, status=TransferStatus.CANCELLED, cancelled_at=at, cancelled_by=by)
        return replace(
            self,
            owner_id=latest.from_user_id,
            recipient_info=latest.previous_recipient_info,
            transferred=latest.previous_transferred,
            transfer_history=self.transfer_history[:-1] + (cancelled,),
        )

    def complete_latest_transfer(self, *, at: datetime, owner_id: Optional[UUID] = None) -> "Ticket":
        """
        Close the latest pending transfer.

        `owner_id` assigns ownership when an unregistered recipient claims the ticket.
        """

        require_utc_timestamp("at", at)
        latest = self.latest_transfer
        if latest is None or latest.status is not TransferStatus.PENDING:
            raise ValueError("No pending transfer to complete")

        completed = replace(
            latest,
            status=TransferStatus.COMPLETED,
            completed_at=at,
            to_user_id=owner_id if owner_id is not None else latest.to_user_id,
        )
        return replace(
            self,
            owner_id=owner_id if owner_id is not None else self.owner_id,
            transfer_history=self.transfer_history[:-1] + (completed,),
        )

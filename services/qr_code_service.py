"""
Signed QR payloads for paid tickets.

Payload format: `<body>.<signature>` where body is the unpadded base64url JSON
`{ticket_id, reference, event_id, issued_at_ms}` and signature is the hex
HMAC-SHA256 of the body text under the server secret. The signature covers the
encoded text exactly as transmitted, so any altered character is rejected.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from domain.ticket import QRCode, Ticket
from domain.time import epoch_millis, require_utc_timestamp
from services.errors import InvalidQRCode, TicketNotPaid

logger = logging.getLogger(__name__)

QR_VALIDITY = timedelta(hours=24)


@dataclass(frozen=True, slots=True)
class QRPayload:
    ticket_id: UUID
    reference: str
    event_id: UUID
    issued_at: datetime


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class QRCodeService:
    def __init__(self, secret: str, validity: timedelta = QR_VALIDITY):
        if not secret:
            raise ValueError("QR secret must not be empty")
        self._secret = secret.encode("utf-8")
        self._validity = validity

    def _sign(self, body: str) -> str:
        return hmac.new(self._secret, body.encode("utf-8"), hashlib.sha256).hexdigest()

    def generate(self, ticket: Ticket, now: datetime) -> QRCode:
        """
        Build the signed payload for a paid ticket.

        Raises:
            TicketNotPaid: if the ticket is not in success state
        """

        require_utc_timestamp("now", now)
        if not ticket.is_paid:
            raise TicketNotPaid(ticket.ticket_id, ticket.status.value, action="given a QR code")

        body = _b64encode(
            json.dumps(
                {
                    "ticket_id": str(ticket.ticket_id),
                    "reference": ticket.reference,
                    "event_id": str(ticket.event_id),
                    "issued_at_ms": epoch_millis(now),
                },
                separators=(",", ":"),
                sort_keys=True,
            ).encode("utf-8")
        )
        return QRCode(data=f"{body}.{self._sign(body)}", generated_at=now)

    def verify(self, data: str, now: datetime) -> QRPayload:
        """
        Check the signature and age of a scanned payload.

        Raises:
            InvalidQRCode: if the payload is malformed, tampered with or expired
        """

        require_utc_timestamp("now", now)
        body, sep, signature = (data or "").strip().rpartition(".")
        if not sep or not body or not signature:
            raise InvalidQRCode("Malformed QR code")

        if not hmac.compare_digest(self._sign(body).encode("ascii"), signature.lower().encode("utf-8")):
            logger.warning("QR signature mismatch")
            raise InvalidQRCode("QR code signature is invalid")

        try:
            fields = json.loads(_b64decode(body))
            payload = QRPayload(
                ticket_id=UUID(str(fields["ticket_id"])),
                reference=str(fields["reference"]),
                event_id=UUID(str(fields["event_id"])),
                issued_at=datetime.fromtimestamp(int(fields["issued_at_ms"]) / 1000, tz=timezone.utc),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidQRCode("Malformed QR code") from e

        if now - payload.issued_at > self._validity:
            raise InvalidQRCode("QR code has expired")
        return payload


__all__ = ["QRCodeService", "QRPayload", "QR_VALIDITY"]

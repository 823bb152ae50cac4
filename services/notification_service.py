"""
Purchase and transfer notifications.

Delivery (SMS, email) is an external concern. `NotificationService` is the
interface the ticketing services call; `LoggingNotificationService` renders the
messages, normalizes phone numbers to E.164 and writes them to the log.

Callers treat every notification as best-effort: a failure is logged and never
changes the outcome of a purchase or transfer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol, Tuple
from uuid import UUID

from domain.money import Currency
from domain.ticket import RecipientInfo, RecipientType, format_phone_number
from domain.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TicketSummary:
    """What a notification says about the tickets involved."""

    event_title: str
    event_date: datetime
    tier_name: str
    quantity: int
    references: Tuple[str, ...] = ()
    amount: Optional[Decimal] = None
    currency: Optional[Currency] = None


class UserLookup(Protocol):
    def get_by_id(self, user_id: UUID) -> Optional[User]: ...


def purchase_message(summary: TicketSummary) -> str:
    lines = [
        "Ticket Purchase Confirmed!",
        "",
        f"Event: {summary.event_title}",
        f"Date: {summary.event_date.date().isoformat()}",
        f"Ticket Type: {summary.tier_name.upper()}",
        f"Quantity: {summary.quantity}",
    ]
    if summary.amount is not None and summary.currency is not None:
        lines.append(f"Total: {summary.amount} {summary.currency.value}")
    if summary.references:
        lines.append(f"References: {', '.join(summary.references)}")
    lines += ["", "Enjoy the event!"]
    return "\n".join(lines)


def transfer_notice_message(recipient: RecipientInfo, summary: TicketSummary) -> str:
    return "\n".join([
        "Ticket Transfer Notification!",
        "",
        f"Hello {recipient.name or 'there'}!",
        "",
        "You have received a ticket transfer:",
        f"Event: {summary.event_title}",
        f"Date: {summary.event_date.date().isoformat()}",
        f"Ticket Type: {summary.tier_name.upper()}",
    ])


def transfer_confirmation_message(recipient: RecipientInfo, summary: TicketSummary) -> str:
    return "\n".join([
        "Ticket Transfer Sent",
        "",
        f"Your {summary.tier_name.upper()} ticket for {summary.event_title} was sent to "
        f"{recipient.name or recipient.value}.",
        "You can cancel the transfer within 24 hours.",
    ])


class NotificationService(ABC):
    @abstractmethod
    def send_purchase_confirmation(self, user_id: UUID, summary: TicketSummary) -> None:
        """Tell a buyer their tickets are confirmed."""

    @abstractmethod
    def send_transfer_notice(self, recipient: RecipientInfo, summary: TicketSummary) -> None:
        """Tell a recipient a ticket was transferred to them."""

    @abstractmethod
    def send_transfer_confirmation(self, user_id: UUID, recipient: RecipientInfo, summary: TicketSummary) -> None:
        """Tell a sender their transfer went through."""


class LoggingNotificationService(NotificationService):
    def __init__(self, users: UserLookup):
        self._users = users

    def _deliver(self, recipient: RecipientInfo, message: str, kind: str) -> None:
        if not recipient.value:
            raise ValueError(f"No {recipient.type.value} address to send the {kind} to")

        if recipient.type is RecipientType.MOBILE:
            destination = format_phone_number(recipient.value)
            channel = "sms"
        else:
            destination = recipient.value.strip()
            channel = "email"

        logger.info(
            "Notification %s via %s to %s:\n%s",
            kind,
            channel,
            destination,
            message,
            extra={"notification": kind, "channel": channel},
        )

    def _contact_for(self, user_id: UUID) -> RecipientInfo:
        user = self._users.get_by_id(user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found")
        # SMS first, matching how buyers are usually reached.
        if user.mobile_number:
            return RecipientInfo(type=RecipientType.MOBILE, value=user.mobile_number, name=user.name)
        return user.contact()

    def send_purchase_confirmation(self, user_id: UUID, summary: TicketSummary) -> None:
        self._deliver(self._contact_for(user_id), purchase_message(summary), "purchase_confirmation")

    def send_transfer_notice(self, recipient: RecipientInfo, summary: TicketSummary) -> None:
        self._deliver(recipient, transfer_notice_message(recipient, summary), "transfer_notice")

    def send_transfer_confirmation(self, user_id: UUID, recipient: RecipientInfo, summary: TicketSummary) -> None:
        self._deliver(
            self._contact_for(user_id),
            transfer_confirmation_message(recipient, summary),
            "transfer_confirmation",
        )


__all__ = [
    "LoggingNotificationService",
    "NotificationService",
    "TicketSummary",
    "format_phone_number",
]

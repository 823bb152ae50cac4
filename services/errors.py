"""
Failure taxonomy for the ticketing services.

Every error carries an HTTP-style status code and a `details` mapping with the
authoritative state a caller can act on (remaining inventory, available tiers,
the time of a prior scan). Routers translate these into HTTP responses; the
services never build responses themselves.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TicketingError(Exception):
    """Base class for expected, user-visible failures."""

    status_code: int = 400

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)


# Input / lookup errors

class EventNotFound(TicketingError):
    status_code = 404

    def __init__(self, event_id: Any):
        super().__init__("Event not found", event_id=str(event_id))


class TierNotFound(TicketingError):
    def __init__(self, tier_name: str, available: list[str]):
        super().__init__(
            f"Invalid ticket type: {tier_name!r}",
            ticket_type=tier_name,
            available_ticket_types=available,
        )


class PaymentNotFound(TicketingError):
    status_code = 404

    def __init__(self, reference: str):
        super().__init__("Payment not found", reference=reference)


class TicketNotFound(TicketingError):
    status_code = 404

    def __init__(self, ticket_id: Any):
        super().__init__("Ticket not found", ticket_id=str(ticket_id))


class UnsupportedGateway(TicketingError):
    def __init__(self, gateway: str, enabled: list[str]):
        super().__init__(f"Invalid payment gateway: {gateway!r}", gateway=gateway, enabled_gateways=enabled)


class UnsupportedCurrency(TicketingError):
    def __init__(self, currency: str):
        super().__init__(f"Unsupported currency: {currency!r}", currency=currency)


class NotAuthorized(TicketingError):
    status_code = 403


# Inventory errors

class EventSoldOut(TicketingError):
    status_code = 409

    def __init__(self, event_id: Any):
        super().__init__("Event is sold out", event_id=str(event_id))


class InsufficientInventory(TicketingError):
    status_code = 409

    def __init__(self, tier_name: str, requested: int, remaining: int, available_tiers: Optional[list[str]] = None):
        if remaining <= 0:
            message = f"{tier_name!r} tickets are sold out"
        else:
            message = f"Only {remaining} {tier_name!r} tickets available"
        super().__init__(
            message,
            ticket_type=tier_name,
            requested=requested,
            available=remaining,
            available_ticket_types=available_tiers or [],
        )


class CapacityExceededAtVerification(TicketingError):
    """Paid tickets would overshoot the tier at verification time; the payment was failed closed."""

    status_code = 409

    def __init__(self, reference: str, tier_name: str, remaining: Optional[int], refunded: bool):
        super().__init__(
            "Tickets sold out before this payment could be confirmed",
            reference=reference,
            ticket_type=tier_name,
            remaining=remaining,
            refunded=refunded,
        )


# Gateway errors

class GatewaySessionError(TicketingError):
    """Network or API failure while talking to Stripe or Wave."""

    status_code = 502

    def __init__(self, gateway: str, message: str, **details: Any):
        super().__init__(message, gateway=gateway, **details)


class PaymentFailed(TicketingError):
    status_code = 402

    def __init__(self, reference: str, reason: str = "Payment failed", provider_status: Optional[str] = None):
        super().__init__(reason, reference=reference, status="failed", provider_status=provider_status)


class RefundNotSupported(TicketingError):
    def __init__(self, gateway: str, reason: str = "Refunds are only supported for Stripe payments"):
        super().__init__(reason, gateway=gateway)


# Ticket ownership / transfer / scanning errors

class NotOwner(TicketingError):
    status_code = 403

    def __init__(self, message: str = "You don't own this ticket"):
        super().__init__(message)


class TicketNotPaid(TicketingError):
    def __init__(self, ticket_id: Any, status: str, action: str = "used"):
        super().__init__(f"Only paid tickets can be {action}", ticket_id=str(ticket_id), status=status)


class NoPendingTransfer(TicketingError):
    status_code = 409

    def __init__(self, message: str = "No pending transfer to cancel", **details: Any):
        super().__init__(message, **details)


class TransferWindowExpired(NoPendingTransfer):
    def __init__(self, expires_at: str):
        super().__init__("Transfer can no longer be cancelled", expires_at=expires_at)


class ConcurrentModification(TicketingError):
    status_code = 409

    def __init__(self, ticket_id: Any):
        super().__init__("Ticket was modified concurrently, please retry", ticket_id=str(ticket_id))


class TicketAlreadyScanned(TicketingError):
    status_code = 409

    def __init__(self, ticket_id: Any, scanned_at: Optional[str]):
        super().__init__("Ticket already scanned", ticket_id=str(ticket_id), scanned_at=scanned_at)


class EventAlreadyPassed(TicketingError):
    def __init__(self, event_id: Any, event_date: str):
        super().__init__("Event has already taken place", event_id=str(event_id), event_date=event_date)


class InvalidQRCode(TicketingError):
    def __init__(self, reason: str = "Invalid QR code"):
        super().__init__(reason)

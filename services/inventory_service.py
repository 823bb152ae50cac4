"""
Ticket inventory: availability checks and sold-count commits.

Nothing is reserved when a purchase starts. `check_availability` is a plain
read; the authoritative capacity check happens when a verified sale is
committed, as a conditional increment inside `commit_ticket_sale`. A failed
payment therefore never has inventory to give back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple
from uuid import UUID

from domain.event import Availability, Event
from domain.money import Currency
from repositories.sale_repository import SaleCommitResult
from services.errors import EventNotFound, EventSoldOut, InsufficientInventory, TierNotFound

logger = logging.getLogger(__name__)


class EventStore(Protocol):
    def get_event(self, event_id: UUID) -> Optional[Event]: ...


class SaleStore(Protocol):
    def commit_ticket_sale(
        self,
        *,
        reference: str,
        event_id: UUID,
        tier_name: str,
        quantity: int,
        transaction_id: Optional[str],
        at: datetime,
    ) -> SaleCommitResult: ...

    def release_ticket_sale(self, *, reference: str, at: datetime) -> SaleCommitResult: ...


@dataclass(frozen=True, slots=True)
class TierAvailability:
    name: str
    price: Decimal
    currency: Currency
    quantity: int
    sold: int
    remaining: int
    is_sold_out: bool
    description: str
    benefits: Tuple[str, ...]


@dataclass(frozen=True, slots=True)
class InventorySummary:
    event_id: UUID
    title: str
    sold_out: bool
    tiers: List[TierAvailability]


class InventoryService:
    def __init__(self, events: EventStore, sales: SaleStore):
        self._events = events
        self._sales = sales

    def get_event(self, event_id: UUID) -> Event:
        event = self._events.get_event(event_id)
        if event is None:
            raise EventNotFound(event_id)
        return event

    def check_availability(self, event: Event, tier_name: str, quantity: int) -> Availability:
        """
        Check whether `quantity` tickets of a tier can still be sold.

        Raises:
            TierNotFound: if the event has no tier with that name
            ValueError: if quantity is not positive
        """

        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        tier = event.get_tier(tier_name)
        if tier is None:
            raise TierNotFound(tier_name, event.tier_names)
        return Availability(available=quantity <= tier.remaining, remaining=tier.remaining)

    def require_available(self, event: Event, tier_name: str, quantity: int) -> Availability:
        """
        Like check_availability, but raise when the purchase cannot go ahead.

        Raises:
            EventSoldOut, TierNotFound, InsufficientInventory
        """

        if event.sold_out:
            raise EventSoldOut(event.event_id)

        availability = self.check_availability(event, tier_name, quantity)
        if not availability.available:
            raise InsufficientInventory(
                tier_name,
                requested=quantity,
                remaining=availability.remaining,
                available_tiers=[t.name for t in event.available_tiers()],
            )
        return availability

    def commit_sale(
        self,
        *,
        reference: str,
        event_id: UUID,
        tier_name: str,
        quantity: int,
        transaction_id: Optional[str],
        at: datetime,
    ) -> SaleCommitResult:
        """
        Commit a verified purchase: tickets to success, `sold` += quantity, sold_out
        recomputed, payment to success. All or nothing.
        """

        result = self._sales.commit_ticket_sale(
            reference=reference,
            event_id=event_id,
            tier_name=tier_name,
            quantity=quantity,
            transaction_id=transaction_id,
            at=at,
        )
        logger.info(
            "Ticket sale commit",
            extra={
                "reference": reference,
                "tier": tier_name,
                "quantity": quantity,
                "success": result.success,
                "error_code": result.error_code,
                "remaining": result.remaining,
            },
        )
        return result

    def release_sale(self, *, reference: str, at: datetime) -> SaleCommitResult:
        """Give a refunded purchase's seats back (sold never drops below zero)."""

        result = self._sales.release_ticket_sale(reference=reference, at=at)
        logger.info(
            "Ticket sale release",
            extra={"reference": reference, "success": result.success, "error_code": result.error_code},
        )
        return result

    def summarize(self, event_id: UUID) -> InventorySummary:
        event = self.get_event(event_id)
        return InventorySummary(
            event_id=event.event_id,
            title=event.title,
            sold_out=event.sold_out,
            tiers=[
                TierAvailability(
                    name=tier.name,
                    price=tier.price,
                    currency=tier.currency,
                    quantity=tier.quantity,
                    sold=tier.sold,
                    remaining=tier.remaining,
                    is_sold_out=tier.is_sold_out,
                    description=tier.description,
                    benefits=tier.benefits,
                )
                for tier in event.tiers
            ],
        )


__all__ = ["InventoryService", "InventorySummary", "TierAvailability"]

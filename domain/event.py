"""
Domain: Events and their ticket tiers.

Invariants implemented here:
- An event has at least one TicketTier; tier names are unique (case-insensitive).
- For every tier, 0 <= sold <= quantity.
- `sold_out` is derived: TRUE iff every tier has sold >= quantity. It is never
  stored on the entity and never trusted from persistence.
- Tiers are looked up through an explicit name -> tier mapping.

This module contains only pure domain entities/value objects: no I/O, no database,
no frameworks. All timestamps must be passed explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from .money import Currency
from .time import require_utc_timestamp


class EventCategory(str, Enum):
    MUSIC = "music"
    SPORTS = "sports"
    ART = "art"
    FOOD = "food"
    BUSINESS = "business"
    TECHNOLOGY = "technology"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Location:
    country: str
    city: str


@dataclass(frozen=True, slots=True)
class TicketTier:
    """
    A named category of ticket for an event, with its own price and capacity.
    """

    name: str
    price: Decimal
    currency: Currency
    quantity: int
    sold: int = 0
    description: str = ""
    benefits: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("TicketTier name is required")
        if self.price < 0:
            raise ValueError(f"Price for tier {self.name!r} must not be negative")
        if self.quantity < 1:
            raise ValueError(f"Quantity for tier {self.name!r} must be at least 1")
        if self.sold < 0:
            raise ValueError(f"Sold count for tier {self.name!r} must not be negative")
        if self.sold > self.quantity:
            raise ValueError(
                f"Sold count for tier {self.name!r} ({self.sold}) exceeds quantity ({self.quantity})"
            )

    @property
    def remaining(self) -> int:
        return self.quantity - self.sold

    @property
    def is_sold_out(self) -> bool:
        return self.sold >= self.quantity

    def with_sold(self, sold: int) -> "TicketTier":
        """Return a copy with an updated sold count (validated on construction)."""
        return replace(self, sold=sold)


@dataclass(frozen=True, slots=True)
class Availability:
    """Answer to an availability check for one tier."""

    available: bool
    remaining: int


@dataclass(frozen=True, slots=True)
class Event:
    """
    Pure domain entity for an event.

    `tiers` keeps the organizer's ordering; `tier_map` provides name lookup.
    """

    event_id: UUID
    title: str
    location: Location
    date: datetime
    category: EventCategory
    tiers: Tuple[TicketTier, ...]
    created_by: UUID
    description: Optional[str] = None
    image: Optional[str] = None
    created_at: Optional[datetime] = None
    _tier_map: Dict[str, TicketTier] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        require_utc_timestamp("date", self.date)
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)
        if not self.tiers:
            raise ValueError("At least one ticket tier is required")

        seen: set[str] = set()
        for tier in self.tiers:
            key = tier.name.lower()
            if key in seen:
                raise ValueError(f"Duplicate ticket tier name: {tier.name!r}")
            seen.add(key)

        # frozen + slots: populate the lookup table through object.__setattr__
        object.__setattr__(self, "_tier_map", {tier.name: tier for tier in self.tiers})

    @property
    def sold_out(self) -> bool:
        return all(tier.is_sold_out for tier in self.tiers)

    @property
    def tier_names(self) -> List[str]:
        return [tier.name for tier in self.tiers]

    def get_tier(self, name: str) -> Optional[TicketTier]:
        return self._tier_map.get(name)

    def available_tiers(self) -> List[TicketTier]:
        return [tier for tier in self.tiers if not tier.is_sold_out]

    def has_passed(self, as_of: datetime) -> bool:
        """True once the event's calendar day (UTC) is over; doors stay open all day."""
        require_utc_timestamp("as_of", as_of)
        return self.date.date() < as_of.date()

    def with_tier_sold(self, name: str, sold: int) -> "Event":
        """
        Return a new Event with one tier's sold count replaced.

        Raises:
            KeyError: if the tier does not exist
            ValueError: if the new count violates 0 <= sold <= quantity
        """

        if name not in self._tier_map:
            raise KeyError(name)
        tiers = tuple(tier.with_sold(sold) if tier.name == name else tier for tier in self.tiers)
        return replace(self, tiers=tiers)

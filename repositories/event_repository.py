"""
Event repository (persistence).

Reads events with their ticket tiers. Events are created and edited elsewhere;
this repository never writes tier counters directly. `sold` moves only through
the atomic sale functions in `sale_repository`.

Tables:
- events: one row per event (the stored `sold_out` column is informational only)
- ticket_tiers: one row per (event_id, name), ordered by `position`
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping, Optional
from uuid import UUID

from supabase import Client  # type: ignore[import-not-found]

from domain.event import Event, EventCategory, Location, TicketTier
from domain.money import Currency
from domain.time import parse_optional_utc_datetime, parse_utc_datetime
from repositories.client import raise_for_error, response_rows

# Keep these aligned with sql/ticketing_functions.sql.
_EVENTS_TABLE: str = "events"
_TIERS_TABLE: str = "ticket_tiers"


def _row_to_tier(row: Mapping[str, Any]) -> TicketTier:
    return TicketTier(
        name=str(row["name"]),
        price=Decimal(str(row["price"])),
        currency=Currency.parse(row.get("currency") or "GMD"),
        quantity=int(row["quantity"]),
        sold=int(row.get("sold") or 0),
        description=str(row.get("description") or ""),
        benefits=tuple(row.get("benefits") or ()),
    )


def _row_to_event(row: Mapping[str, Any]) -> Event:
    """Convert an `events` row with embedded `ticket_tiers` into an Event."""

    tier_rows = sorted(row.get(_TIERS_TABLE) or [], key=lambda r: r.get("position", 0))
    return Event(
        event_id=UUID(str(row["event_id"])),
        title=str(row["title"]),
        location=Location(country=str(row["country"]), city=str(row["city"])),
        date=parse_utc_datetime(row["date_utc"]),
        category=EventCategory(str(row["category"]).lower()),
        tiers=tuple(_row_to_tier(t) for t in tier_rows),
        created_by=UUID(str(row["created_by"])),
        description=row.get("description"),
        image=row.get("image"),
        created_at=parse_optional_utc_datetime(row.get("created_at_utc")),
    )


class EventRepository:
    """Supabase-backed reads of events and tiers."""

    def __init__(self, client: Client):
        self._client = client

    def get_event(self, event_id: UUID) -> Optional[Event]:
        """
        Fetch one event with its tiers.

        Returns:
            Event or None if not found
        """

        response = (
            self._client.table(_EVENTS_TABLE)
            .select(f"*, {_TIERS_TABLE}(*)")
            .eq("event_id", str(event_id))
            .limit(1)
            .execute()
        )
        raise_for_error(response, "fetch event")

        rows = response_rows(response)
        if not rows:
            return None
        return _row_to_event(rows[0])

    def list_event_ids_created_by(self, user_id: UUID) -> List[UUID]:
        """Ids of every event organized by `user_id` (admin ownership checks)."""

        response = (
            self._client.table(_EVENTS_TABLE)
            .select("event_id")
            .eq("created_by", str(user_id))
            .execute()
        )
        raise_for_error(response, "list events by creator")
        return [UUID(str(row["event_id"])) for row in response_rows(response)]


__all__ = ["EventRepository"]

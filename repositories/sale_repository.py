"""
Sale repository: atomic ticket-sale commits.

Committing a verified sale touches three tables (payments, tickets,
ticket_tiers) and must be all-or-nothing, so it runs inside PostgreSQL
functions (see sql/ticketing_functions.sql) called through Supabase RPC:

- commit_ticket_sale(): locks the payment row, checks it is still pending,
  flips its pending tickets to success, increments the tier's `sold` only if it
  stays within `quantity`, recomputes the event's `sold_out`, then marks the
  payment success. All in a single transaction.
- release_ticket_sale(): the refund counterpart. Marks a success payment
  refunded, its tickets failed, and decrements `sold`.
- fail_ticket_sale(): marks a pending payment and its pending tickets failed
  together. `sold` is untouched since nothing was counted yet.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import UUID

from supabase import Client  # type: ignore[import-not-found]

from domain.time import to_iso_utc

# Error codes returned by the database functions.
ALREADY_PROCESSED = "ALREADY_PROCESSED"
CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
NOT_FOUND = "NOT_FOUND"
NOT_REFUNDABLE = "NOT_REFUNDABLE"


@dataclass(frozen=True, slots=True)
class SaleCommitResult:
    """
    Result from commit_ticket_sale / release_ticket_sale.

    tickets_updated: number of ticket rows whose status changed
    sold / remaining: the tier counters after the change (None on failure)
    sold_out: the event flag recomputed after the change (None on failure)
    """

    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    tickets_updated: int = 0
    sold: Optional[int] = None
    remaining: Optional[int] = None
    sold_out: Optional[bool] = None


def _result_from_json(data: Mapping[str, Any]) -> SaleCommitResult:
    if data.get("success"):
        return SaleCommitResult(
            success=True,
            tickets_updated=int(data.get("tickets_updated") or 0),
            sold=data.get("sold"),
            remaining=data.get("remaining"),
            sold_out=data.get("sold_out"),
        )
    return SaleCommitResult(
        success=False,
        error_code=data.get("error"),
        error_message=data.get("message"),
        sold=data.get("sold"),
        remaining=data.get("remaining"),
    )


class SaleRepository:
    def __init__(self, client: Client):
        self._client = client

    def _call(self, function: str, params: dict[str, Any]) -> SaleCommitResult:
        from postgrest.exceptions import APIError

        try:
            response = self._client.rpc(function, params).execute()
        except APIError as e:
            # supabase-py raises APIError for JSON bodies returned by the function,
            # for both success and error payloads.
            error_data = e.json() if callable(getattr(e, "json", None)) else {}
            if not isinstance(error_data, Mapping) or "success" not in error_data:
                raise RuntimeError(f"Failed to call {function}: {e}") from e
            return _result_from_json(error_data)

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to call {function}: {error}")

        data = getattr(response, "data", None)
        if not isinstance(data, Mapping):
            raise RuntimeError(f"Unexpected response from {function}: {data!r}")
        return _result_from_json(data)

    def commit_ticket_sale(
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
        Atomically commit a verified purchase.

        Returns:
            SaleCommitResult; on failure error_code is ALREADY_PROCESSED,
            CAPACITY_EXCEEDED or NOT_FOUND and nothing was written
        """

        return self._call(
            "commit_ticket_sale",
            {
                "p_reference": reference,
                "p_event_id": str(event_id),
                "p_tier_name": tier_name,
                "p_quantity": quantity,
                "p_transaction_id": transaction_id,
                "p_at": to_iso_utc(at, name="at"),
            },
        )

    def release_ticket_sale(self, *, reference: str, at: datetime) -> SaleCommitResult:
        """
        Atomically refund a committed purchase and give its seats back.

        Returns:
            SaleCommitResult; on failure error_code is NOT_REFUNDABLE or NOT_FOUND
        """

        return self._call("release_ticket_sale", {"p_reference": reference, "p_at": to_iso_utc(at, name="at")})

    def fail_ticket_sale(self, *, reference: str, at: datetime) -> SaleCommitResult:
        """
        Atomically mark a pending payment and its tickets failed.

        Returns:
            SaleCommitResult; on failure error_code is ALREADY_PROCESSED or NOT_FOUND
        """

        return self._call("fail_ticket_sale", {"p_reference": reference, "p_at": to_iso_utc(at, name="at")})


__all__ = [
    "ALREADY_PROCESSED",
    "CAPACITY_EXCEEDED",
    "NOT_FOUND",
    "NOT_REFUNDABLE",
    "SaleCommitResult",
    "SaleRepository",
]

"""
Payment repository (persistence).

This module provides persistence operations for the Payment domain entity. It
never writes the status column: status changes go through the atomic sale
functions in `sale_repository`, which lock the row and check the current status
first.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional
from uuid import UUID

from supabase import Client  # type: ignore[import-not-found]

from domain.money import Currency
from domain.payment import Payment, PaymentGatewayName, PaymentStatus
from domain.time import parse_optional_utc_datetime, to_iso_utc
from repositories.client import UNIQUE_VIOLATION, DuplicateRecordError, raise_for_error, response_rows

# Supabase table name for payments.
# Keep this aligned with your database schema.
_PAYMENTS_TABLE: str = "payments"


def _row_to_payment(row: Mapping[str, Any]) -> Payment:
    """Convert a Supabase row into a Payment."""

    rate = row.get("exchange_rate")
    return Payment(
        payment_id=UUID(str(row["payment_id"])),
        user_id=UUID(str(row["user_id"])),
        event_id=UUID(str(row["event_id"])),
        amount=Decimal(str(row["amount"])),
        currency=Currency.parse(row["currency"]),
        reference=str(row["reference"]),
        gateway=PaymentGatewayName(str(row["gateway"])),
        tier_name=str(row["tier_name"]),
        quantity=int(row["quantity"]),
        status=PaymentStatus(str(row["status"])),
        ticket_ids=tuple(UUID(str(t)) for t in (row.get("ticket_ids") or [])),
        gateway_session_id=row.get("gateway_session_id"),
        gateway_transaction_id=row.get("gateway_transaction_id"),
        exchange_rate=Decimal(str(rate)) if rate is not None else None,
        created_at=parse_optional_utc_datetime(row.get("created_at_utc")),
        updated_at=parse_optional_utc_datetime(row.get("updated_at_utc")),
        last_status_check=parse_optional_utc_datetime(row.get("last_status_check_utc")),
    )


def _payment_to_row(payment: Payment) -> dict[str, Any]:
    return {
        "payment_id": str(payment.payment_id),
        "user_id": str(payment.user_id),
        "event_id": str(payment.event_id),
        "amount": str(payment.amount),
        "currency": payment.currency.value,
        "reference": payment.reference,
        "gateway": payment.gateway.value,
        "tier_name": payment.tier_name,
        "quantity": payment.quantity,
        "status": payment.status.value,
        "ticket_ids": [str(t) for t in payment.ticket_ids],
        "gateway_session_id": payment.gateway_session_id,
        "gateway_transaction_id": payment.gateway_transaction_id,
        "exchange_rate": str(payment.exchange_rate) if payment.exchange_rate is not None else None,
        "created_at_utc": to_iso_utc(payment.created_at, name="created_at") if payment.created_at else None,
        "updated_at_utc": to_iso_utc(payment.updated_at, name="updated_at") if payment.updated_at else None,
        "last_status_check_utc": (
            to_iso_utc(payment.last_status_check, name="last_status_check") if payment.last_status_check else None
        ),
    }


class PaymentRepository:
    """Supabase-backed payment persistence."""

    def __init__(self, client: Client):
        self._client = client

    def _fetch_one(self, column: str, value: str) -> Optional[Payment]:
        response = (
            self._client.table(_PAYMENTS_TABLE)
            .select("*")
            .eq(column, value)
            .limit(1)
            .execute()
        )
        raise_for_error(response, "fetch payment")

        rows = response_rows(response)
        if not rows:
            return None
        return _row_to_payment(rows[0])

    def create(self, payment: Payment) -> Payment:
        """
        Insert a new payment row.

        Raises:
            DuplicateRecordError: if the reference is already taken (UNIQUE column)
        """

        from postgrest.exceptions import APIError

        try:
            response = self._client.table(_PAYMENTS_TABLE).insert(_payment_to_row(payment)).execute()
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateRecordError(f"Payment reference already exists: {payment.reference}") from e
            raise RuntimeError(f"Failed to create payment: {e}") from e
        raise_for_error(response, "create payment")
        return payment

    def get_by_reference(self, reference: str) -> Optional[Payment]:
        return self._fetch_one("reference", reference)

    def get_by_session_id(self, session_id: str) -> Optional[Payment]:
        return self._fetch_one("gateway_session_id", session_id)

    def attach_session(self, reference: str, session_id: str, ticket_ids: List[UUID]) -> None:
        """Record the gateway session and the created ticket ids on a pending payment."""

        response = (
            self._client.table(_PAYMENTS_TABLE)
            .update({"gateway_session_id": session_id, "ticket_ids": [str(t) for t in ticket_ids]})
            .eq("reference", reference)
            .execute()
        )
        raise_for_error(response, "attach gateway session")

    def touch_status_check(self, reference: str, at: datetime) -> None:
        """Record that the gateway was polled without changing the status."""

        response = (
            self._client.table(_PAYMENTS_TABLE)
            .update({"last_status_check_utc": to_iso_utc(at, name="at")})
            .eq("reference", reference)
            .execute()
        )
        raise_for_error(response, "record status check")

    def delete_by_reference(self, reference: str) -> None:
        """Delete a payment that is still pending (initiate compensation)."""

        response = (
            self._client.table(_PAYMENTS_TABLE)
            .delete()
            .eq("reference", reference)
            .eq("status", PaymentStatus.PENDING.value)
            .execute()
        )
        raise_for_error(response, "delete payment")

    def list_pending(self, gateway: PaymentGatewayName, checked_before: datetime, limit: int = 100) -> List[Payment]:
        """Pending payments for a gateway whose last status check is older than `checked_before`."""

        response = (
            self._client.table(_PAYMENTS_TABLE)
            .select("*")
            .eq("gateway", gateway.value)
            .eq("status", PaymentStatus.PENDING.value)
            .lt("last_status_check_utc", to_iso_utc(checked_before, name="checked_before"))
            .order("last_status_check_utc")
            .limit(limit)
            .execute()
        )
        raise_for_error(response, "list pending payments")
        return [_row_to_payment(row) for row in response_rows(response)]


__all__ = ["PaymentRepository"]

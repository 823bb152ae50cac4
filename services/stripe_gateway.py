"""
Stripe Checkout adapter.

Verification is synchronous: the client comes back from the hosted checkout
with a session id, and one retrieve call settles the outcome. The only
authoritative success signal is `payment_status == "paid"`.

pip install stripe
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Mapping, Optional

import stripe

from domain.money import Currency, from_minor_units, to_minor_units
from domain.payment import PaymentGatewayName
from services.errors import GatewaySessionError
from services.payment_gateway import CheckoutSession, GatewayOutcome, GatewayStatus, PaymentGateway

logger = logging.getLogger(__name__)

# Stripe metadata values are strings of at most 500 characters.
_METADATA_VALUE_LIMIT = 500


def _stripe_metadata(metadata: Mapping[str, Any]) -> dict[str, str]:
    result: dict[str, str] = {}
    for key, value in metadata.items():
        text = value if isinstance(value, str) else json.dumps(value, default=str)
        result[str(key)] = text[:_METADATA_VALUE_LIMIT]
    return result


def _field(obj: Any, name: str) -> Any:
    """Read a field from a StripeObject, a plain dict, or an expanded/unexpanded reference."""

    if obj is None:
        return None
    if isinstance(obj, str):
        return obj if name == "id" else None
    getter = getattr(obj, "get", None)
    if callable(getter):
        return getter(name)
    return getattr(obj, name, None)


class StripeGateway(PaymentGateway):
    name = PaymentGatewayName.STRIPE
    supported_currencies = frozenset({Currency.USD, Currency.EUR, Currency.GBP, Currency.XOF, Currency.GMD})
    default_currency = Currency.GMD

    def __init__(self, api_key: str, frontend_url: str, stripe_client: Any = stripe):
        self._api_key = api_key
        self._frontend_url = frontend_url.rstrip("/")
        self._stripe = stripe_client

    def create_session(
        self,
        *,
        amount: Decimal,
        currency: Currency,
        reference: str,
        callback_url: str,
        metadata: Mapping[str, Any],
    ) -> CheckoutSession:
        logger.info(
            "Creating Stripe checkout session",
            extra={"reference": reference, "amount": str(amount), "currency": currency.value},
        )

        stripe_metadata = _stripe_metadata(metadata)
        title = str(metadata.get("event_title") or "Event")
        tier = str(metadata.get("ticket_type") or "")
        quantity = metadata.get("quantity", 1)
        separator = "&" if "?" in callback_url else "?"
        cancel_path = f"/events/{metadata['event_id']}" if metadata.get("event_id") else "/"

        try:
            session = self._stripe.checkout.Session.create(
                api_key=self._api_key,
                idempotency_key=reference,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.value.lower(),
                            "product_data": {
                                "name": f"{title} - {tier} Ticket",
                                "description": f"Purchase of {quantity} {tier} ticket(s) for {title}",
                            },
                            "unit_amount": to_minor_units(amount, currency),
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=f"{callback_url}{separator}session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self._frontend_url}{cancel_path}",
                client_reference_id=reference,
                metadata=stripe_metadata,
                payment_intent_data={"metadata": stripe_metadata},
            )
        except stripe.StripeError as e:
            logger.error("Stripe session creation failed", extra={"reference": reference, "error": str(e)})
            raise GatewaySessionError("stripe", "Failed to create Stripe checkout session", reference=reference) from e

        session_id = _field(session, "id")
        logger.info("Stripe checkout session created", extra={"reference": reference, "session_id": session_id})
        return CheckoutSession(session_id=str(session_id), redirect_url=_field(session, "url"))

    def check_status(self, session_id: str) -> GatewayStatus:
        try:
            session = self._stripe.checkout.Session.retrieve(
                session_id,
                api_key=self._api_key,
                expand=["payment_intent"],
            )
        except stripe.StripeError as e:
            logger.error("Stripe session retrieval failed", extra={"session_id": session_id, "error": str(e)})
            raise GatewaySessionError("stripe", "Failed to retrieve Stripe checkout session", session_id=session_id) from e

        payment_status = _field(session, "payment_status")
        outcome = GatewayOutcome.SUCCESS if payment_status == "paid" else GatewayOutcome.FAILED

        amount_total = _field(session, "amount_total")
        currency_code = _field(session, "currency")
        provider_amount: Optional[Decimal] = None
        if amount_total is not None and currency_code:
            provider_amount = from_minor_units(int(amount_total), Currency.parse(currency_code))

        return GatewayStatus(
            outcome=outcome,
            provider_amount=provider_amount,
            provider_transaction_id=_field(_field(session, "payment_intent"), "id"),
            provider_status=payment_status,
        )

    def refund(self, transaction_id: str, amount: Optional[Decimal] = None) -> str:
        """Refund a payment intent in full."""

        logger.info("Requesting Stripe refund", extra={"payment_intent": transaction_id})
        try:
            refund = self._stripe.Refund.create(
                api_key=self._api_key,
                idempotency_key=f"refund-{transaction_id}",
                payment_intent=transaction_id,
            )
        except stripe.StripeError as e:
            logger.error("Stripe refund failed", extra={"payment_intent": transaction_id, "error": str(e)})
            raise GatewaySessionError("stripe", "Failed to refund Stripe payment", payment_intent=transaction_id) from e
        return str(_field(refund, "id"))


__all__ = ["StripeGateway"]

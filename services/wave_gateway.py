"""
Wave checkout adapter.

Wave settles asynchronously: the session is polled until it reports a
terminal state. A session the API cannot find yet (404) is still pending.

Status mapping:
- payment_status `succeeded` or checkout_status `complete` -> success
- payment_status/checkout_status `failed`, `cancelled`, `expired` -> failed
- anything else -> pending
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping, Optional

import requests

from domain.money import Currency, quantize_amount
from domain.payment import PaymentGatewayName
from services.errors import GatewaySessionError, RefundNotSupported
from services.payment_gateway import CheckoutSession, GatewayOutcome, GatewayStatus, PaymentGateway

logger = logging.getLogger(__name__)

_SUCCESS_STATES = {"succeeded", "complete", "completed"}
_FAILURE_STATES = {"failed", "cancelled", "expired"}


def map_wave_status(payment_status: Optional[str], checkout_status: Optional[str]) -> GatewayOutcome:
    payment_status = (payment_status or "").lower()
    checkout_status = (checkout_status or "").lower()

    if payment_status == "succeeded" or checkout_status in _SUCCESS_STATES:
        return GatewayOutcome.SUCCESS
    if payment_status in _FAILURE_STATES or checkout_status in _FAILURE_STATES:
        return GatewayOutcome.FAILED
    return GatewayOutcome.PENDING


class WaveGateway(PaymentGateway):
    name = PaymentGatewayName.WAVE
    supported_currencies = frozenset({Currency.XOF, Currency.GMD})
    default_currency = Currency.GMD

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.wave.com/v1",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def create_session(
        self,
        *,
        amount: Decimal,
        currency: Currency,
        reference: str,
        callback_url: str,
        metadata: Mapping[str, Any],
    ) -> CheckoutSession:
        payload = {
            "amount": str(quantize_amount(amount, currency)),
            "currency": currency.value,
            "client_reference": reference,
            "success_url": callback_url,
            "error_url": str(metadata.get("error_url") or callback_url),
        }
        logger.info(
            "Creating Wave checkout session",
            extra={"reference": reference, "amount": payload["amount"], "currency": currency.value},
        )

        try:
            response = self._session.post(
                f"{self._api_url}/checkout/sessions",
                headers={**self._headers, "Idempotency-Key": reference},
                json=payload,
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Wave session creation failed", extra={"reference": reference, "error": str(e)})
            raise GatewaySessionError("wave", "Failed to create Wave checkout session", reference=reference) from e

        session_id = data.get("id")
        if not session_id:
            raise GatewaySessionError("wave", "Wave response did not include a session id", reference=reference)

        logger.info("Wave checkout session created", extra={"reference": reference, "session_id": session_id})
        return CheckoutSession(session_id=str(session_id), redirect_url=data.get("wave_launch_url"))

    def check_status(self, session_id: str) -> GatewayStatus:
        try:
            response = self._session.get(
                f"{self._api_url}/checkout/sessions/{session_id}",
                headers=self._headers,
                timeout=self._timeout,
            )
            if response.status_code == 404:
                logger.info("Wave session not found yet, treating as pending", extra={"session_id": session_id})
                return GatewayStatus(outcome=GatewayOutcome.PENDING, provider_status="not_found")
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Wave status check failed", extra={"session_id": session_id, "error": str(e)})
            raise GatewaySessionError("wave", "Failed to check Wave payment status", session_id=session_id) from e

        payment_status = data.get("payment_status")
        checkout_status = data.get("checkout_status")
        amount = data.get("amount")
        currency_code = data.get("currency")

        provider_amount: Optional[Decimal] = None
        if amount is not None and currency_code:
            provider_amount = quantize_amount(Decimal(str(amount)), Currency.parse(currency_code))

        return GatewayStatus(
            outcome=map_wave_status(payment_status, checkout_status),
            provider_amount=provider_amount,
            provider_transaction_id=data.get("transaction_id"),
            provider_status=payment_status or checkout_status,
            raw=data,
        )

    def refund(self, transaction_id: str, amount: Optional[Decimal] = None) -> str:
        raise RefundNotSupported("wave")


__all__ = ["WaveGateway", "map_wave_status"]

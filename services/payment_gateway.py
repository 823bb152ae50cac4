"""
Payment gateway adapter interface.

Stripe and Wave are interchangeable behind `PaymentGateway`:
- create_session(): start a hosted checkout; the payment reference doubles as
  the idempotency key so retrying with the same reference never opens a second
  charge session.
- check_status(): ask the provider for the outcome. Stripe answers once;
  Wave is polled until it reports a terminal state.
- refund(): give the money back (Stripe only).

Adapters never touch local records; the orchestrator owns all state changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, FrozenSet, Mapping, Optional

from domain.money import Currency
from domain.payment import PaymentGatewayName


class GatewayOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    """Handle returned when a checkout is opened with the provider."""

    session_id: str
    redirect_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class GatewayStatus:
    """
    Provider view of a checkout session.

    provider_amount: amount the provider reports, in major units (None if not reported)
    provider_status: raw provider status string, kept for diagnostics
    """

    outcome: GatewayOutcome
    provider_amount: Optional[Decimal] = None
    provider_transaction_id: Optional[str] = None
    provider_status: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    name: PaymentGatewayName
    supported_currencies: FrozenSet[Currency]
    default_currency: Currency

    def settlement_currency(self, requested: Currency) -> Currency:
        """The currency a charge is made in: the requested one if supported, else the gateway default."""

        return requested if requested in self.supported_currencies else self.default_currency

    @abstractmethod
    def create_session(
        self,
        *,
        amount: Decimal,
        currency: Currency,
        reference: str,
        callback_url: str,
        metadata: Mapping[str, Any],
    ) -> CheckoutSession:
        """Open a checkout session. Raises GatewaySessionError on provider failure."""

    @abstractmethod
    def check_status(self, session_id: str) -> GatewayStatus:
        """Report the session outcome. Raises GatewaySessionError on provider failure."""

    @abstractmethod
    def refund(self, transaction_id: str, amount: Optional[Decimal] = None) -> str:
        """Refund a captured payment and return the provider refund id."""


__all__ = [
    "CheckoutSession",
    "GatewayOutcome",
    "GatewayStatus",
    "PaymentGateway",
]

"""
Payment orchestration: the purchase state machine.

States: NONE -> PENDING -> {SUCCESS, FAILED} -> [REFUNDED]

initiate()
- Checks availability (no reservation), prices the purchase in the settlement
  currency, creates a pending Payment with `quantity` pending Tickets and opens a
  checkout session with the gateway.
- If anything fails after the records exist, they are deleted again
  (compensation) before the error propagates.
- A reference that is already taken is redrawn; compensation only ever removes
  the pending rows this call inserted.

verify()
- A caller other than the purchaser is refused before the gateway is asked.
- Asks the gateway for the outcome of the checkout session. Pending leaves every
  status untouched. Failure marks the payment and its tickets failed.
- Success is committed once through `commit_ticket_sale`: ticket flips, the
  conditional `sold` increment, the `sold_out` recompute and the payment status
  in one transaction. A concurrent or repeated verify sees ALREADY_PROCESSED
  and returns the stored result, so inventory and QR codes are produced once.
- When the tier filled up between initiate and verify the sale fails closed
  (CapacityExceededAtVerification); Stripe payments are refunded best-effort.

refund()
- Stripe only. Refunds the payment intent, then moves the payment to refunded,
  its tickets to failed and gives the seats back.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Union
from uuid import UUID, uuid4

from domain.event import Event
from domain.money import Currency, quantize_amount
from domain.payment import (
    Payment,
    PaymentGatewayName,
    PaymentStatus,
    generate_payment_reference,
)
from domain.ticket import RecipientInfo, RecipientType, Ticket
from domain.time import utc_now
from domain.user import User
from repositories.client import DuplicateRecordError
from repositories.sale_repository import (
    ALREADY_PROCESSED,
    CAPACITY_EXCEEDED,
    NOT_FOUND,
    SaleCommitResult,
)
from services.currency_service import CurrencyConverter
from services.errors import (
    CapacityExceededAtVerification,
    NotAuthorized,
    PaymentFailed,
    PaymentNotFound,
    TicketingError,
    TierNotFound,
    UnsupportedCurrency,
    UnsupportedGateway,
)
from services.inventory_service import InventoryService
from services.notification_service import NotificationService, TicketSummary
from services.payment_gateway import GatewayOutcome, GatewayStatus, PaymentGateway
from services.ticket_service import TicketService, build_tickets

logger = logging.getLogger(__name__)

# Fresh `PAY-<ms>-<rand>` draws before giving up on a reference collision.
_REFERENCE_ATTEMPTS: int = 5


class PaymentStore(Protocol):
    def create(self, payment: Payment) -> Payment: ...

    def get_by_reference(self, reference: str) -> Optional[Payment]: ...

    def get_by_session_id(self, session_id: str) -> Optional[Payment]: ...

    def attach_session(self, reference: str, session_id: str, ticket_ids: List[UUID]) -> None: ...

    def touch_status_check(self, reference: str, at: datetime) -> None: ...

    def delete_by_reference(self, reference: str) -> None: ...

    def list_pending(self, gateway: PaymentGatewayName, checked_before: datetime, limit: int = 100) -> List[Payment]: ...


class PaymentTicketStore(Protocol):
    def create_many(self, tickets: Sequence[Ticket]) -> None: ...

    def list_by_payment_reference(self, payment_reference: str) -> List[Ticket]: ...

    def delete_by_payment_reference(self, payment_reference: str) -> None: ...


class FailureStore(Protocol):
    def fail_ticket_sale(self, *, reference: str, at: datetime) -> SaleCommitResult: ...


class PurchaserLookup(Protocol):
    def get_by_id(self, user_id: UUID) -> Optional[User]: ...


@dataclass(frozen=True, slots=True)
class CheckoutHandle:
    """What the client needs to complete payment off-system."""

    reference: str
    session_id: str
    redirect_url: Optional[str]
    gateway: PaymentGatewayName
    amount: Decimal
    currency: Currency
    ticket_references: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """
    Outcome of a verify call.

    pending: the gateway has no terminal answer yet; nothing was changed
    already_verified: the payment was settled by an earlier call
    """

    payment: Payment
    tickets: List[Ticket]
    pending: bool = False
    already_verified: bool = False
    provider_status: Optional[str] = None

    @property
    def status(self) -> str:
        return "pending" if self.pending else self.payment.status.value

    @property
    def message(self) -> str:
        if self.pending:
            return "Payment is still being processed"
        if self.payment.status is PaymentStatus.REFUNDED:
            return "Payment was refunded"
        if self.already_verified:
            return "Payment already verified"
        return "Payment verified successfully"


class PaymentOrchestrator:
    def __init__(
        self,
        *,
        payments: PaymentStore,
        tickets: PaymentTicketStore,
        sales: FailureStore,
        users: PurchaserLookup,
        inventory: InventoryService,
        ticket_service: TicketService,
        gateways: Mapping[PaymentGatewayName, PaymentGateway],
        converter: Optional[CurrencyConverter] = None,
        notifications: Optional[NotificationService] = None,
        frontend_url: str = "http://localhost:3000",
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
        id_factory: Callable[[], UUID] = uuid4,
    ):
        self._payments = payments
        self._tickets = tickets
        self._sales = sales
        self._users = users
        self._inventory = inventory
        self._ticket_service = ticket_service
        self._gateways: Dict[PaymentGatewayName, PaymentGateway] = dict(gateways)
        self._converter = converter
        self._notifications = notifications
        self._frontend_url = frontend_url.rstrip("/")
        self._clock = clock
        self._rng = rng
        self._id_factory = id_factory

    # Lookups

    @property
    def enabled_gateways(self) -> List[str]:
        return sorted(name.value for name in self._gateways)

    def _gateway(self, name: Union[str, PaymentGatewayName]) -> PaymentGateway:
        try:
            key = name if isinstance(name, PaymentGatewayName) else PaymentGatewayName(str(name).strip().lower())
        except ValueError:
            raise UnsupportedGateway(str(name), self.enabled_gateways) from None
        adapter = self._gateways.get(key)
        if adapter is None:
            raise UnsupportedGateway(key.value, self.enabled_gateways)
        return adapter

    def _load_payment(self, reference: str) -> Payment:
        payment = self._payments.get_by_reference(reference) or self._payments.get_by_session_id(reference)
        if payment is None:
            raise PaymentNotFound(reference)
        return payment

    # Pricing

    def _price(
        self,
        adapter: PaymentGateway,
        unit_price: Decimal,
        quantity: int,
        tier_currency: Currency,
        requested: Optional[Currency],
    ) -> tuple[Decimal, Currency, Optional[Decimal]]:
        """Amount, settlement currency and applied exchange rate for a purchase."""

        subtotal = unit_price * quantity
        settlement = adapter.settlement_currency(requested or tier_currency)
        if settlement is tier_currency:
            return quantize_amount(subtotal, tier_currency), tier_currency, None

        if self._converter is None:
            raise UnsupportedCurrency(settlement.value)
        conversion = self._converter.convert(subtotal, tier_currency, settlement)
        logger.info(
            "Converted purchase amount",
            extra={
                "from": tier_currency.value,
                "to": settlement.value,
                "rate": str(conversion.rate),
                "amount": str(conversion.amount),
            },
        )
        return conversion.amount, settlement, conversion.rate

    # initiate

    def initiate(
        self,
        *,
        event_id: UUID,
        tier_name: str,
        quantity: int,
        user_id: UUID,
        gateway: Union[str, PaymentGatewayName],
        currency: Optional[str] = None,
        recipients: Sequence[Optional[RecipientInfo]] = (),
    ) -> CheckoutHandle:
        """
        Start a purchase and open a gateway checkout session.

        Raises:
            UnsupportedGateway, UnsupportedCurrency, EventNotFound, EventSoldOut,
            TierNotFound, InsufficientInventory, GatewaySessionError
        """

        adapter = self._gateway(gateway)
        requested_currency: Optional[Currency] = None
        if currency:
            try:
                requested_currency = Currency.parse(currency)
            except ValueError:
                raise UnsupportedCurrency(currency) from None

        event = self._inventory.get_event(event_id)
        self._inventory.require_available(event, tier_name, quantity)
        tier = event.get_tier(tier_name)
        if tier is None:
            raise TierNotFound(tier_name, event.tier_names)

        amount, settlement, rate = self._price(adapter, tier.price, quantity, tier.currency, requested_currency)
        if amount <= 0:
            raise TicketingError("Free tickets cannot be purchased through a payment gateway", ticket_type=tier.name)

        now = self._clock()
        purchaser = self._users.get_by_id(user_id)
        fallback = purchaser.contact() if purchaser else RecipientInfo(type=RecipientType.EMAIL)

        for attempt in range(1, _REFERENCE_ATTEMPTS + 1):
            reference = generate_payment_reference(now, self._rng)
            tickets = build_tickets(
                event_id=event.event_id,
                owner_id=user_id,
                tier_name=tier.name,
                unit_price=tier.price,
                payment_reference=reference,
                quantity=quantity,
                recipients=recipients,
                fallback_recipient=fallback,
                created_at=now,
                id_factory=self._id_factory,
            )
            ticket_ids = [t.ticket_id for t in tickets]
            payment = Payment(
                payment_id=self._id_factory(),
                user_id=user_id,
                event_id=event.event_id,
                amount=amount,
                currency=settlement,
                reference=reference,
                gateway=adapter.name,
                tier_name=tier.name,
                quantity=quantity,
                ticket_ids=tuple(ticket_ids),
                exchange_rate=rate,
                created_at=now,
                updated_at=now,
                last_status_check=now,
            )
            try:
                self._payments.create(payment)
            except DuplicateRecordError:
                logger.warning("Payment reference collision", extra={"reference": reference, "attempt": attempt})
                continue
            break
        else:
            raise RuntimeError(f"Could not allocate a unique payment reference after {_REFERENCE_ATTEMPTS} attempts")

        logger.info(
            "Initiating payment",
            extra={
                "reference": reference,
                "event_id": str(event.event_id),
                "tier": tier.name,
                "quantity": quantity,
                "gateway": adapter.name.value,
                "amount": str(amount),
                "currency": settlement.value,
            },
        )

        # The payment row is ours from here on; anything that fails removes it again.
        try:
            self._tickets.create_many(tickets)
            session = adapter.create_session(
                amount=amount,
                currency=settlement,
                reference=reference,
                callback_url=f"{self._frontend_url}/payment-success?reference={reference}&gateway={adapter.name.value}",
                metadata={
                    "payment_reference": reference,
                    "event_id": str(event.event_id),
                    "event_title": event.title,
                    "ticket_type": tier.name,
                    "quantity": quantity,
                    "ticket_references": [t.reference for t in tickets],
                    "user_id": str(user_id),
                    "error_url": f"{self._frontend_url}/payment-failed?reference={reference}",
                },
            )
            self._payments.attach_session(reference, session.session_id, ticket_ids)
        except Exception:
            logger.exception("Payment initiation failed, removing pending records", extra={"reference": reference})
            self._compensate(reference)
            raise

        return CheckoutHandle(
            reference=reference,
            session_id=session.session_id,
            redirect_url=session.redirect_url,
            gateway=adapter.name,
            amount=amount,
            currency=settlement,
            ticket_references=[t.reference for t in tickets],
        )

    def _compensate(self, reference: str) -> None:
        """Remove the pending records of a failed initiate. Settled rows are never deleted."""

        try:
            self._tickets.delete_by_payment_reference(reference)
            self._payments.delete_by_reference(reference)
        except Exception:
            logger.exception("Compensation failed; pending records remain", extra={"reference": reference})

    # verify

    def verify(
        self,
        reference: str,
        gateway: Optional[Union[str, PaymentGatewayName]] = None,
        requested_by: Optional[UUID] = None,
    ) -> VerificationResult:
        """
        Settle a payment with its gateway's answer, exactly once.

        `reference` may also be the gateway session id (Stripe redirects carry it).
        When `requested_by` is given, only the purchaser may verify; the check
        happens before the gateway is asked.

        Raises:
            PaymentNotFound, NotAuthorized, PaymentFailed, CapacityExceededAtVerification,
            GatewaySessionError
        """

        payment = self._load_payment(reference)
        if requested_by is not None and payment.user_id != requested_by:
            raise NotAuthorized("Not your payment", reference=payment.reference)
        if gateway is not None and self._gateway(gateway).name is not payment.gateway:
            raise TicketingError(
                "Gateway does not match the payment",
                reference=payment.reference,
                gateway=payment.gateway.value,
            )

        settled = self._settled_result(payment)
        if settled is not None:
            return settled

        try:
            return self._settle_pending(payment)
        except (PaymentFailed, CapacityExceededAtVerification, PaymentNotFound):
            raise
        except Exception:
            logger.exception("Payment verification failed", extra={"reference": payment.reference})
            self._fail(payment.reference)
            raise

    def _settled_result(self, payment: Payment) -> Optional[VerificationResult]:
        """Stored result for a payment that already left pending; raises for failed ones."""

        if payment.status in (PaymentStatus.SUCCESS, PaymentStatus.REFUNDED):
            return VerificationResult(
                payment=payment,
                tickets=self._tickets.list_by_payment_reference(payment.reference),
                already_verified=True,
            )
        if payment.status is PaymentStatus.FAILED:
            raise PaymentFailed(payment.reference)
        return None

    def _settle_pending(self, payment: Payment) -> VerificationResult:
        adapter = self._gateway(payment.gateway)
        if not payment.gateway_session_id:
            raise TicketingError("Payment has no gateway session", reference=payment.reference)

        status = adapter.check_status(payment.gateway_session_id)
        now = self._clock()

        if status.outcome is GatewayOutcome.PENDING:
            self._payments.touch_status_check(payment.reference, now)
            logger.info(
                "Payment still pending",
                extra={"reference": payment.reference, "provider_status": status.provider_status},
            )
            return VerificationResult(
                payment=payment,
                tickets=self._tickets.list_by_payment_reference(payment.reference),
                pending=True,
                provider_status=status.provider_status,
            )

        if status.outcome is GatewayOutcome.FAILED:
            self._fail(payment.reference)
            raise PaymentFailed(payment.reference, provider_status=status.provider_status)

        if not self._amount_matches(payment, status):
            logger.error(
                "Provider amount does not match payment",
                extra={
                    "reference": payment.reference,
                    "expected": str(payment.amount),
                    "reported": str(status.provider_amount),
                },
            )
            self._fail(payment.reference)
            raise PaymentFailed(
                payment.reference,
                "Paid amount does not match the payment amount",
                provider_status=status.provider_status,
            )

        return self._commit(payment, adapter, status, now)

    @staticmethod
    def _amount_matches(payment: Payment, status: GatewayStatus) -> bool:
        if status.provider_amount is None:
            return True
        return quantize_amount(status.provider_amount, payment.currency) == quantize_amount(
            payment.amount, payment.currency
        )

    def _commit(
        self,
        payment: Payment,
        adapter: PaymentGateway,
        status: GatewayStatus,
        now: datetime,
    ) -> VerificationResult:
        result = self._inventory.commit_sale(
            reference=payment.reference,
            event_id=payment.event_id,
            tier_name=payment.tier_name,
            quantity=payment.quantity,
            transaction_id=status.provider_transaction_id,
            at=now,
        )

        if result.success:
            self._after_commit(payment, now)
            return VerificationResult(
                payment=self._load_payment(payment.reference),
                tickets=self._tickets.list_by_payment_reference(payment.reference),
                provider_status=status.provider_status,
            )

        if result.error_code == ALREADY_PROCESSED:
            logger.info("Payment settled by a concurrent verification", extra={"reference": payment.reference})
            stored = self._settled_result(self._load_payment(payment.reference))
            if stored is None:
                raise RuntimeError(f"Payment {payment.reference} reported processed but is still pending")
            return stored

        if result.error_code == CAPACITY_EXCEEDED:
            self._fail(payment.reference)
            refunded = self._refund_after_capacity_failure(payment, adapter, status)
            raise CapacityExceededAtVerification(payment.reference, payment.tier_name, result.remaining, refunded)

        if result.error_code == NOT_FOUND:
            raise PaymentNotFound(payment.reference)

        raise RuntimeError(f"Failed to commit ticket sale: {result.error_code}: {result.error_message}")

    def _refund_after_capacity_failure(self, payment: Payment, adapter: PaymentGateway, status: GatewayStatus) -> bool:
        transaction_id = status.provider_transaction_id
        if payment.gateway is not PaymentGatewayName.STRIPE or not transaction_id:
            logger.warning(
                "Capacity exceeded on a payment that cannot be refunded automatically",
                extra={"reference": payment.reference, "gateway": payment.gateway.value},
            )
            return False
        try:
            adapter.refund(transaction_id)
        except Exception:
            logger.exception("Automatic refund failed", extra={"reference": payment.reference})
            return False
        logger.info("Payment refunded after capacity failure", extra={"reference": payment.reference})
        return True

    def _after_commit(self, payment: Payment, now: datetime) -> None:
        """QR codes and the purchase confirmation. Neither may change the payment outcome."""

        try:
            self._ticket_service.generate_qr_codes(payment.reference, now)
        except Exception:
            logger.exception("QR code generation failed", extra={"reference": payment.reference})

        if self._notifications is None:
            return
        try:
            event: Event = self._inventory.get_event(payment.event_id)
            summary = TicketSummary(
                event_title=event.title,
                event_date=event.date,
                tier_name=payment.tier_name,
                quantity=payment.quantity,
                references=tuple(t.reference for t in self._tickets.list_by_payment_reference(payment.reference)),
                amount=payment.amount,
                currency=payment.currency,
            )
            self._notifications.send_purchase_confirmation(payment.user_id, summary)
        except Exception:
            logger.exception("Purchase confirmation failed", extra={"reference": payment.reference})

    def _fail(self, reference: str) -> None:
        """Move a still-pending payment and its tickets to failed."""

        try:
            result = self._sales.fail_ticket_sale(reference=reference, at=self._clock())
        except Exception:
            logger.exception("Could not mark payment failed", extra={"reference": reference})
            return
        if result.success:
            logger.info(
                "Payment marked failed",
                extra={"reference": reference, "tickets_updated": result.tickets_updated},
            )

    # refund

    def refund(self, reference: str, requested_by: UUID) -> Payment:
        """
        Refund a successful Stripe payment and release its seats.

        Raises:
            PaymentNotFound, NotAuthorized, RefundNotSupported, GatewaySessionError
        """

        payment = self._load_payment(reference)
        event = self._inventory.get_event(payment.event_id)
        if event.created_by != requested_by:
            raise NotAuthorized("Only the event organizer can refund this payment", reference=payment.reference)

        adapter = self._gateway(payment.gateway)
        if payment.status is not PaymentStatus.SUCCESS:
            raise TicketingError(
                "Only successful payments can be refunded",
                reference=payment.reference,
                status=payment.status.value,
            )
        if not payment.gateway_transaction_id:
            raise TicketingError("Payment has no gateway transaction to refund", reference=payment.reference)

        refund_id = adapter.refund(payment.gateway_transaction_id)
        result = self._inventory.release_sale(reference=payment.reference, at=self._clock())
        if not result.success:
            logger.error(
                "Refund issued but local release failed",
                extra={"reference": payment.reference, "refund_id": refund_id, "error_code": result.error_code},
            )
            raise RuntimeError(f"Failed to release ticket sale: {result.error_code}: {result.error_message}")

        logger.info("Payment refunded", extra={"reference": payment.reference, "refund_id": refund_id})
        return self._load_payment(payment.reference)

    # reconciliation

    def stale_pending_references(
        self,
        gateway: Union[str, PaymentGatewayName],
        older_than: timedelta,
        limit: int = 100,
    ) -> List[str]:
        """References of pending payments not checked within `older_than`, oldest check first."""

        adapter = self._gateway(gateway)
        cutoff = self._clock() - older_than
        return [p.reference for p in self._payments.list_pending(adapter.name, cutoff, limit)]


__all__ = ["CheckoutHandle", "PaymentOrchestrator", "VerificationResult"]

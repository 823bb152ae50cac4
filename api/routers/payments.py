"""
Payments API Endpoints.

Starting a purchase, verifying it with the gateway, and refunding it.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import (
    CurrentUser,
    get_current_user,
    get_payment_orchestrator,
    raise_http_error,
    require_admin,
)
from api.models import (
    ErrorResponse,
    PaymentRequest,
    PaymentResponse,
    PaymentSummary,
    TicketResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from services.errors import TicketingError
from services.payment_service import PaymentOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


@router.post(
    "/events/{event_id}/pay",
    response_model=PaymentResponse,
    responses=_ERRORS,
    summary="Start Ticket Purchase",
    description="Create a pending payment with its tickets and open a checkout session with the gateway.",
)
def start_payment(
    event_id: UUID,
    request: PaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """
    Start a ticket purchase.

    **Process:**
    1. Checks the event is not sold out and the tier has enough tickets left
    2. Prices the tickets in the gateway's settlement currency
    3. Creates the payment and one pending ticket per seat
    4. Opens a Stripe or Wave checkout session

    Nothing is reserved: capacity is checked again when the payment is verified.
    If the gateway call fails, the pending records are removed again.

    **Example request:**
    ```json
    {
      "ticket_type": "VIP",
      "quantity": 2,
      "recipient_info": [{"type": "email", "value": "awa@example.com", "name": "Awa"}],
      "payment_gateway": "wave",
      "currency": "XOF"
    }
    ```
    """
    try:
        handle = orchestrator.initiate(
            event_id=event_id,
            tier_name=request.ticket_type,
            quantity=request.quantity,
            user_id=user.user_id,
            gateway=request.payment_gateway,
            currency=request.currency,
            recipients=[r.to_domain() for r in request.recipient_info],
        )
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        logger.exception("Failed to start payment", extra={"event_id": str(event_id)})
        raise HTTPException(status_code=500, detail={"message": f"Failed to start payment: {e}"})

    return PaymentResponse(
        id=handle.session_id,
        payment_url=handle.redirect_url,
        gateway=handle.gateway.value,
        reference=handle.reference,
        amount=handle.amount,
        currency=handle.currency.value,
        ticket_references=handle.ticket_references,
    )


@router.post(
    "/payment/verify",
    response_model=VerifyPaymentResponse,
    responses={**_ERRORS, 402: {"model": ErrorResponse}},
    summary="Verify Payment",
    description="Ask the gateway for the payment outcome and commit it exactly once.",
)
def verify_payment(
    request: VerifyPaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """
    Verify a payment.

    Safe to call repeatedly:
    - `status: "pending"`: Wave has not settled yet; nothing changed, poll again later
    - `status: "success"`: tickets are paid and have QR codes; later calls return the same result
    - 402: the gateway reported a failure; the payment and its tickets are failed
    - 403: the payment belongs to someone else; nothing is checked or changed
    - 409: the tier sold out before this payment was confirmed
    """
    try:
        result = orchestrator.verify(
            request.reference,
            request.gateway,
            requested_by=None if user.is_admin else user.user_id,
        )
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        logger.exception("Failed to verify payment", extra={"reference": request.reference})
        raise HTTPException(status_code=500, detail={"message": f"Failed to verify payment: {e}"})

    return VerifyPaymentResponse(
        message=result.message,
        status=result.status,
        payment=PaymentSummary.from_domain(result.payment),
        tickets=[TicketResponse.from_domain(t) for t in result.tickets],
    )


@router.post(
    "/payment/{reference}/refund",
    response_model=PaymentSummary,
    responses=_ERRORS,
    summary="Refund Payment",
    description="Refund a successful Stripe payment and release its tickets (event organizer only).",
)
def refund_payment(
    reference: str,
    admin: CurrentUser = Depends(require_admin),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    try:
        payment = orchestrator.refund(reference, admin.user_id)
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        logger.exception("Failed to refund payment", extra={"reference": reference})
        raise HTTPException(status_code=500, detail={"message": f"Failed to refund payment: {e}"})

    return PaymentSummary.from_domain(payment)

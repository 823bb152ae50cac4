"""
Tickets API Endpoints.

A buyer's tickets and ownership transfers.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import (
    CurrentUser,
    get_current_user,
    get_ticket_service,
    get_transfer_service,
    raise_http_error,
)
from api.models import (
    ErrorResponse,
    TicketListResponse,
    TicketResponse,
    TransferHistoryResponse,
    TransferRecordResponse,
    TransferRequest,
    TransferResponse,
)
from services.errors import TicketingError
from services.ticket_service import TicketService
from services.transfer_service import TransferService

logger = logging.getLogger(__name__)

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _server_error(action: str, ticket_id: UUID, e: Exception) -> HTTPException:
    logger.exception(f"Failed to {action}", extra={"ticket_id": str(ticket_id)})
    return HTTPException(status_code=500, detail={"message": f"Failed to {action}: {e}"})


@router.get(
    "/tickets",
    response_model=TicketListResponse,
    summary="My Tickets",
    description="Tickets currently owned by the caller, newest first.",
)
def list_my_tickets(
    user: CurrentUser = Depends(get_current_user),
    tickets: TicketService = Depends(get_ticket_service),
):
    try:
        owned = tickets.list_user_tickets(user.user_id)
    except Exception as e:
        logger.exception("Failed to list tickets", extra={"user_id": str(user.user_id)})
        raise HTTPException(status_code=500, detail={"message": f"Failed to list tickets: {e}"})

    return TicketListResponse(tickets=[TicketResponse.from_domain(t) for t in owned], total_count=len(owned))


@router.put(
    "/tickets/{ticket_id}/transfer",
    response_model=TransferResponse,
    responses=_ERRORS,
    summary="Transfer Ticket",
    description="Send a paid ticket to someone else by email or mobile number.",
)
def transfer_ticket(
    ticket_id: UUID,
    request: TransferRequest,
    user: CurrentUser = Depends(get_current_user),
    transfers: TransferService = Depends(get_transfer_service),
):
    """
    Transfer a ticket.

    The recipient gets the ticket right away. The sender can cancel the transfer
    for 24 hours. A recipient without an account claims the ticket after signing up.
    """
    try:
        result = transfers.transfer(ticket_id, user.user_id, request.to_domain())
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        raise _server_error("transfer ticket", ticket_id, e)

    return TransferResponse(
        message="Ticket transferred successfully",
        ticket=TicketResponse.from_domain(result.ticket),
        recipient_registered=result.recipient_is_registered,
    )


@router.post(
    "/tickets/{ticket_id}/cancel-transfer",
    response_model=TicketResponse,
    responses=_ERRORS,
    summary="Cancel Transfer",
    description="Undo a pending transfer within its 24-hour window.",
)
def cancel_transfer(
    ticket_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    transfers: TransferService = Depends(get_transfer_service),
):
    try:
        ticket = transfers.cancel_transfer(ticket_id, user.user_id)
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        raise _server_error("cancel transfer", ticket_id, e)

    return TicketResponse.from_domain(ticket)


@router.post(
    "/tickets/{ticket_id}/claim",
    response_model=TicketResponse,
    responses=_ERRORS,
    summary="Claim Transferred Ticket",
    description="Take ownership of a ticket sent to the caller's email or mobile number.",
)
def claim_ticket(
    ticket_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    transfers: TransferService = Depends(get_transfer_service),
):
    try:
        ticket = transfers.claim_transfer(ticket_id, user.user_id)
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        raise _server_error("claim ticket", ticket_id, e)

    return TicketResponse.from_domain(ticket)


@router.get(
    "/tickets/{ticket_id}/transfer-history",
    response_model=TransferHistoryResponse,
    responses=_ERRORS,
    summary="Transfer History",
)
def get_transfer_history(
    ticket_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    transfers: TransferService = Depends(get_transfer_service),
):
    try:
        history = transfers.get_transfer_history(ticket_id, user.user_id)
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        raise _server_error("load transfer history", ticket_id, e)

    return TransferHistoryResponse(
        ticket_id=ticket_id,
        history=[TransferRecordResponse.from_domain(r) for r in history],
    )

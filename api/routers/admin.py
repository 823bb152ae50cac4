"""
Admin API Endpoints.

Door scanning and ticket lookup for event organizers.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import (
    CurrentUser,
    get_scan_service,
    get_ticket_service,
    raise_http_error,
    require_admin,
)
from api.models import ErrorResponse, ScanRequest, ScanResponse, TicketListResponse, TicketResponse
from services.errors import TicketingError
from services.scan_service import ScanService
from services.ticket_service import TicketService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _scan(scans: ScanService, admin: CurrentUser, ticket_id: Optional[UUID], qr_data: Optional[str]) -> ScanResponse:
    try:
        result = scans.scan(admin.user_id, ticket_id=ticket_id, qr_data=qr_data)
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        logger.exception("Ticket scanning failed", extra={"ticket_id": str(ticket_id) if ticket_id else None})
        raise HTTPException(status_code=500, detail={"message": f"Ticket scanning failed: {e}"})

    return ScanResponse(
        message="Ticket scanned successfully",
        ticket=TicketResponse.from_domain(result.ticket),
        event_title=result.event.title,
    )


@router.put(
    "/tickets/{ticket_id}/scan",
    response_model=ScanResponse,
    responses=_ERRORS,
    summary="Scan Ticket By Id",
)
def scan_ticket_by_id(
    ticket_id: UUID,
    request: Optional[ScanRequest] = None,
    admin: CurrentUser = Depends(require_admin),
    scans: ScanService = Depends(get_scan_service),
):
    """
    Admit a ticket holder.

    Rejects tickets that are unpaid, already scanned (the response carries the
    earlier `scanned_at`), or for an event whose day has passed. Only the
    organizer of the ticket's event may scan it. An optional `qr_data` body is
    checked against the ticket.
    """
    return _scan(scans, admin, ticket_id, request.qr_data if request else None)


@router.put(
    "/tickets/scan",
    response_model=ScanResponse,
    responses=_ERRORS,
    summary="Scan Ticket By QR Code",
)
def scan_ticket(
    request: ScanRequest,
    admin: CurrentUser = Depends(require_admin),
    scans: ScanService = Depends(get_scan_service),
):
    return _scan(scans, admin, request.ticket_id, request.qr_data)


@router.get(
    "/tickets/search",
    response_model=TicketListResponse,
    responses=_ERRORS,
    summary="Search Tickets By Reference",
    description="Find tickets for the caller's events by (part of) their reference.",
)
def search_tickets(
    reference: str = Query(..., min_length=1),
    admin: CurrentUser = Depends(require_admin),
    tickets: TicketService = Depends(get_ticket_service),
):
    try:
        found = tickets.search_by_reference(reference, admin.user_id)
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        logger.exception("Ticket search failed")
        raise HTTPException(status_code=500, detail={"message": f"Ticket search failed: {e}"})

    return TicketListResponse(tickets=[TicketResponse.from_domain(t) for t in found], total_count=len(found))

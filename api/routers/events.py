"""
Events API Endpoints.

Read-only ticket availability for an event.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_inventory_service, raise_http_error
from api.models import ErrorResponse, TicketTypesResponse, TierResponse
from services.errors import TicketingError
from services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/events/{event_id}/ticket-types",
    response_model=TicketTypesResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Ticket Types",
    description="Price, capacity and remaining tickets for every tier of an event.",
)
def get_ticket_types(event_id: UUID, inventory: InventoryService = Depends(get_inventory_service)):
    try:
        summary = inventory.summarize(event_id)
    except TicketingError as e:
        raise_http_error(e)
    except Exception as e:
        logger.exception("Failed to load ticket types", extra={"event_id": str(event_id)})
        raise HTTPException(status_code=500, detail={"message": f"Failed to load ticket types: {e}"})

    return TicketTypesResponse(
        event_id=summary.event_id,
        title=summary.title,
        sold_out=summary.sold_out,
        ticket_types=[
            TierResponse(
                name=tier.name,
                price=tier.price,
                currency=tier.currency.value,
                quantity=tier.quantity,
                sold=tier.sold,
                remaining=tier.remaining,
                is_sold_out=tier.is_sold_out,
                description=tier.description,
                benefits=list(tier.benefits),
            )
            for tier in summary.tiers
        ],
    )

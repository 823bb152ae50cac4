"""
FastAPI dependency providers.

Every service is constructed once, explicitly, from Settings; nothing is a
module-level singleton that tests have to patch. Tests replace these providers
through `app.dependency_overrides`.

Authentication happens upstream. The auth layer forwards the caller's identity
in the `X-User-Id` and `X-User-Role` headers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, NoReturn, Optional
from uuid import UUID

import stripe
from fastapi import Depends, Header, HTTPException

from config import Settings, configure_logging
from domain.payment import PaymentGatewayName
from domain.user import UserRole
from repositories.client import create_supabase_client
from repositories.event_repository import EventRepository
from repositories.payment_repository import PaymentRepository
from repositories.sale_repository import SaleRepository
from repositories.ticket_repository import TicketRepository
from repositories.user_repository import UserRepository
from services.currency_service import CurrencyConverter
from services.errors import TicketingError
from services.inventory_service import InventoryService
from services.notification_service import LoggingNotificationService
from services.payment_gateway import PaymentGateway
from services.payment_service import PaymentOrchestrator
from services.qr_code_service import QRCodeService
from services.scan_service import ScanService
from services.stripe_gateway import StripeGateway
from services.ticket_service import TicketService
from services.transfer_service import TransferService
from services.wave_gateway import WaveGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CurrentUser:
    user_id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


# ============================================================================
# Service construction
# ============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return settings


@dataclass(frozen=True)
class Container:
    """Explicitly wired services for one process."""

    inventory: InventoryService
    tickets: TicketService
    transfers: TransferService
    scans: ScanService
    payments: PaymentOrchestrator


def build_gateways(settings: Settings) -> Dict[PaymentGatewayName, PaymentGateway]:
    """Gateways whose credentials are configured; the others stay disabled."""

    gateways: Dict[PaymentGatewayName, PaymentGateway] = {}
    if settings.stripe_secret_key:
        gateways[PaymentGatewayName.STRIPE] = StripeGateway(
            api_key=settings.stripe_secret_key,
            frontend_url=settings.frontend_url,
            stripe_client=stripe,
        )
    if settings.wave_api_key:
        gateways[PaymentGatewayName.WAVE] = WaveGateway(
            api_key=settings.wave_api_key,
            api_url=settings.wave_api_url,
            timeout=settings.gateway_timeout_seconds,
        )
    if not gateways:
        logger.warning("No payment gateway is configured; purchases will be rejected")
    return gateways


def build_container(settings: Settings) -> Container:
    client = create_supabase_client(settings)
    events = EventRepository(client)
    payments = PaymentRepository(client)
    tickets = TicketRepository(client)
    users = UserRepository(client)
    sales = SaleRepository(client)

    qr_codes = QRCodeService(settings.qr_secret_key)
    notifications = LoggingNotificationService(users)
    inventory = InventoryService(events, sales)
    ticket_service = TicketService(tickets, events, qr_codes)

    return Container(
        inventory=inventory,
        tickets=ticket_service,
        transfers=TransferService(tickets, users, events, notifications),
        scans=ScanService(tickets, events, qr_codes),
        payments=PaymentOrchestrator(
            payments=payments,
            tickets=tickets,
            sales=sales,
            users=users,
            inventory=inventory,
            ticket_service=ticket_service,
            gateways=build_gateways(settings),
            converter=CurrencyConverter(
                rates_url=settings.exchange_rate_api_url,
                ttl_seconds=settings.rate_cache_ttl_seconds,
                timeout=settings.gateway_timeout_seconds,
            ),
            notifications=notifications,
            frontend_url=settings.frontend_url,
        ),
    )


@lru_cache(maxsize=1)
def get_container() -> Container:
    return build_container(get_settings())


def get_inventory_service() -> InventoryService:
    return get_container().inventory


def get_ticket_service() -> TicketService:
    return get_container().tickets


def get_transfer_service() -> TransferService:
    return get_container().transfers


def get_scan_service() -> ScanService:
    return get_container().scans


def get_payment_orchestrator() -> PaymentOrchestrator:
    return get_container().payments


# ============================================================================
# Caller identity
# ============================================================================

def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail={"message": "Authentication required"})
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail={"message": "Invalid user id"})
    try:
        role = UserRole((x_user_role or UserRole.USER.value).lower())
    except ValueError:
        raise HTTPException(status_code=401, detail={"message": "Invalid user role"})
    return CurrentUser(user_id=user_id, role=role)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail={"message": "Admin access required"})
    return user


# ============================================================================
# Error translation
# ============================================================================

def raise_http_error(error: TicketingError) -> NoReturn:
    """Translate a service error into an HTTPException carrying its details."""

    raise HTTPException(
        status_code=error.status_code,
        detail={"message": error.message, **error.details},
    ) from error

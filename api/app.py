"""Application assembly: services wired together and the FastAPI app."""

import logging
from typing import Callable

from fastapi import FastAPI, Request

from api.actions import create_actions_router
from api.base import success_response
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import ActorMiddleware, RequestIDMiddleware
from clients.paypal_client import PayPalClient
from clients.postgres_client import PostgresClient
from clients.vault_client import get_database_url, get_paypal_config
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.handlers import handle_invoice_paid
from core.models import ActorContext
from core.repositories import PostgresInvoiceRepository
from core.services.invoice_service import InvoiceService
from core.services.project_sync import ProjectStatusSync
from core.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


def build_services(
    postgres: PostgresClient,
    gateway: PayPalClient,
    config: BillingConfig | None = None,
) -> dict:
    """
    Wire repository, audit, event bus and services.

    Returns:
        Dict with 'invoice', 'settlement' and 'event_bus'
    """
    config = config or BillingConfig()

    event_bus = EventBus()
    event_bus.subscribe("InvoicePaid", handle_invoice_paid(ProjectStatusSync(postgres)))

    invoice_service = InvoiceService(
        PostgresInvoiceRepository(postgres), AuditLogger(postgres), event_bus, config,
    )
    return {
        "invoice": invoice_service,
        "settlement": SettlementService(invoice_service, gateway, config),
        "event_bus": event_bus,
    }


def build_services_from_vault(config: BillingConfig | None = None) -> dict:
    """Production wiring: database and PayPal credentials from Vault."""
    config = config or BillingConfig()
    postgres = PostgresClient(get_database_url())
    gateway = PayPalClient(**get_paypal_config(), timeout=config.gateway_timeout_seconds)
    return build_services(postgres, gateway, config)


def create_app(services: dict, resolve_actor: Callable[[Request], ActorContext | None]) -> FastAPI:
    """FastAPI app with actor resolution, error handlers, and data/actions routes."""
    app = FastAPI(title="Invoicing")

    # Added last runs first: request ids exist before actor resolution
    app.add_middleware(ActorMiddleware, resolve_actor=resolve_actor)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    @app.get("/health")
    def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    return app

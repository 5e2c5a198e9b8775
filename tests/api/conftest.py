"""API test fixtures: TestClient over in-process services and a mocked gateway."""

from unittest.mock import Mock
from uuid import UUID

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from clients.paypal_client import PayPalClient
from core.models import ActorContext
from core.services.settlement_service import SettlementService

ACTOR_HEADER = "X-Actor-Id"


def resolve_actor_from_header(request) -> ActorContext | None:
    """Test resolver: the actor id travels in a header."""
    value = request.headers.get(ACTOR_HEADER)
    if not value:
        return None
    return ActorContext(actor_id=UUID(value))


@pytest.fixture
def gateway():
    return Mock(spec=PayPalClient)


@pytest.fixture
def settlement_service(invoice_service, gateway):
    return SettlementService(invoice_service, gateway)


@pytest.fixture
def services(invoice_service, settlement_service, event_bus):
    return {
        "invoice": invoice_service,
        "settlement": settlement_service,
        "event_bus": event_bus,
    }


@pytest.fixture
def app(services):
    return create_app(services, resolve_actor_from_header)


@pytest.fixture
def client(app, actor):
    """Client acting as the test designer."""
    c = TestClient(app, raise_server_exceptions=False)
    c.headers[ACTOR_HEADER] = str(actor.actor_id)
    return c


@pytest.fixture
def unauthed_client(app):
    """Client with no actor header."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def invoice_payload(client_id) -> dict:
    """JSON body for an invoice create action: 430.92 total."""
    return {
        "client_id": str(client_id),
        "title": "Brand identity",
        "tax_rate": "8",
        "line_items": [
            {"description": "Logo", "quantity": "1", "unit_price_cents": 29900, "item_type": "design"},
            {"description": "Revision", "quantity": "2", "unit_price_cents": 5000},
        ],
    }

"""Shared test fixtures for the invoicing test suite."""

import os
import pytest
from decimal import Decimal
from pathlib import Path
from unittest.mock import Mock
from uuid import UUID, uuid4

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from core.audit import AuditLogger
from core.event_bus import EventBus
from core.models import ActorContext, InvoiceCreate, LineItemCreate, LineItemType
from core.repositories import InMemoryInvoiceRepository
from core.services.invoice_service import InvoiceService


SCHEMA_PATH = Path(__file__).parent.parent / "schema.sql"


# =============================================================================
# TEST ACTOR CONSTANTS
# =============================================================================

TEST_DESIGNER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_CLIENT_ID = UUID("00000000-0000-0000-0000-000000000002")


@pytest.fixture
def actor() -> ActorContext:
    """The designer issuing invoices in tests."""
    return ActorContext(actor_id=TEST_DESIGNER_ID, display_name="Test Designer")


@pytest.fixture
def client_id() -> UUID:
    return TEST_CLIENT_ID


# =============================================================================
# SERVICE FIXTURES (in-process store)
# =============================================================================


@pytest.fixture
def repository():
    return InMemoryInvoiceRepository()


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def invoice_service(repository, audit, event_bus):
    return InvoiceService(repository, audit, event_bus)


@pytest.fixture
def logo_invoice_data(client_id) -> InvoiceCreate:
    """Logo (1 x 299.00) + Revision (2 x 50.00) at 8% tax: total 430.92."""
    return InvoiceCreate(
        client_id=client_id,
        project_id=uuid4(),
        title="Brand identity",
        tax_rate=Decimal("8"),
        line_items=[
            LineItemCreate(description="Logo", quantity=1, unit_price_cents=29900,
                           item_type=LineItemType.DESIGN),
            LineItemCreate(description="Revision", quantity=2, unit_price_cents=5000),
        ],
    )


@pytest.fixture
def draft_invoice(invoice_service, logo_invoice_data, actor):
    return invoice_service.create(logo_invoice_data, actor)


@pytest.fixture
def sent_invoice(invoice_service, draft_invoice, actor):
    return invoice_service.send(draft_invoice.id, actor)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient against TEST_DATABASE_URL, schema applied."""
    database_url = os.getenv("TEST_DATABASE_URL")
    if not database_url:
        pytest.skip("TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(database_url)
    with client.transaction() as cur:
        cur.execute(SCHEMA_PATH.read_text())
    yield client
    client.close()


@pytest.fixture
def clean_db(db):
    """Empty invoicing tables before a test."""
    db.execute("""
        TRUNCATE invoices, invoice_line_items, invoice_payments, audit_log, projects
        CASCADE
    """)
    yield db

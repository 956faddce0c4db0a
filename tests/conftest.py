"""Shared test fixtures for the billing test suite."""

from decimal import Decimal
from pathlib import Path
from unittest.mock import Mock
from uuid import UUID

import pytest
from dotenv import load_dotenv

# Load .env BEFORE anything reads env vars; .env wins over the shell
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from clients.email_client import EmailGatewayClient
from clients.stripe_client import ChargeIntent, StripeGatewayClient
from core.audit import AuditLogger
from core.billing import BillingStateMachine
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceSent
from core.handlers.invoice_sent_handler import handle_invoice_sent
from core.services.invoice_service import InvoiceService
from core.services.milestone_service import MilestoneService
from core.services.notification_service import NotificationService
from core.services.reconciliation_service import ReconciliationService
from fakes import InMemoryLedgerStore
from utils.user_context import user_context, clear_current_user_id


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    return TEST_USER_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Run the test inside the primary test user's context."""
    with user_context(test_user_id):
        yield test_user_id


# =============================================================================
# COLLABORATOR FIXTURES
# =============================================================================


@pytest.fixture
def config() -> BillingConfig:
    return BillingConfig(app_base_url="https://portal.test")


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def gateway():
    """Payment gateway double. create_charge_intent succeeds by default."""
    mock = Mock(spec=StripeGatewayClient)
    mock.create_charge_intent.return_value = ChargeIntent(id="pi_test_123", client_secret="pi_test_123_secret_abc")
    return mock


@pytest.fixture
def email():
    return Mock(spec=EmailGatewayClient)


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def notification_service(store, email, config):
    return NotificationService(store, email, config)


@pytest.fixture
def invoice_service(store, gateway, audit, event_bus, config):
    return InvoiceService(store, gateway, audit, event_bus, config)


@pytest.fixture
def milestone_service(store, invoice_service, audit, event_bus, config):
    return MilestoneService(store, invoice_service, audit, event_bus, config)


@pytest.fixture
def reconciliation_service(store, gateway, notification_service, audit, event_bus):
    return ReconciliationService(store, gateway, notification_service, audit, event_bus)


@pytest.fixture
def billing(milestone_service, invoice_service, reconciliation_service, event_bus, notification_service, store):
    """State machine wired like production, including the InvoiceSent email handler."""
    event_bus.subscribe(InvoiceSent, handle_invoice_sent(notification_service, store))
    return BillingStateMachine(milestone_service, invoice_service, reconciliation_service)


# =============================================================================
# DATA FIXTURES
# =============================================================================


@pytest.fixture
def project(store):
    """Project whose contracted total comes from its quote (20000)."""
    quote = store.add_quote(
        total=Decimal("20000"),
        down_payment_percentage=Decimal("30"),
        milestone_payment_percentage=Decimal("40"),
        final_payment_percentage=Decimal("30"),
    )
    return store.add_project(origin_quote_id=quote.id, total_budget=Decimal("18000"))

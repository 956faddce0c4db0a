"""Application assembly: service wiring and the FastAPI app."""

import logging

from fastapi import FastAPI

from api.base import success_response
from api.billing import create_billing_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from api.webhooks import create_webhook_router
from auth.config import AuthConfig
from auth.security_middleware import AuthMiddleware
from auth.session import SessionManager
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.stripe_client import StripeGatewayClient
from clients.valkey_client import ValkeyClient
from core.audit import AuditLogger
from core.billing import BillingStateMachine
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceSent
from core.handlers.invoice_sent_handler import handle_invoice_sent
from core.ledger import LedgerStore
from core.services.invoice_service import InvoiceService
from core.services.milestone_service import MilestoneService
from core.services.notification_service import NotificationService
from core.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


def build_services(
    postgres: PostgresClient,
    gateway: StripeGatewayClient,
    email: EmailGatewayClient,
    config: BillingConfig,
) -> dict:
    """Wire the billing core from its collaborators."""
    store = LedgerStore(postgres)
    audit = AuditLogger(postgres)
    event_bus = EventBus()

    notifications = NotificationService(store, email, config)
    invoices = InvoiceService(store, gateway, audit, event_bus, config)
    milestones = MilestoneService(store, invoices, audit, event_bus, config)
    reconciliation = ReconciliationService(store, gateway, notifications, audit, event_bus)

    event_bus.subscribe(InvoiceSent, handle_invoice_sent(notifications, store))

    return {
        "store": store,
        "gateway": gateway,
        "notification": notifications,
        "invoice": invoices,
        "milestone": milestones,
        "reconciliation": reconciliation,
        "billing": BillingStateMachine(milestones, invoices, reconciliation),
    }


def create_app(
    services: dict,
    session_manager: SessionManager,
    auth_config: AuthConfig | None = None,
) -> FastAPI:
    """FastAPI app with auth, request ids, error handlers and billing routes."""
    auth_config = auth_config or AuthConfig()

    app = FastAPI(title="Portal Billing")
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        AuthMiddleware,
        session_manager=session_manager,
        cookie_name=auth_config.session_cookie_name,
    )
    register_error_handlers(app)

    app.include_router(create_billing_router(services), prefix="/api")
    app.include_router(create_webhook_router(services))

    @app.get("/health")
    def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    return app


def create_app_from_vault() -> FastAPI:
    """Production entry point: secrets from Vault, settings from PORTAL_* env vars."""
    from clients.vault_client import (
        get_database_url,
        get_email_config,
        get_stripe_config,
        get_valkey_url,
    )

    config = BillingConfig.from_env()
    stripe_config = get_stripe_config()
    email_config = get_email_config()

    services = build_services(
        postgres=PostgresClient(get_database_url()),
        gateway=StripeGatewayClient(stripe_config["secret_key"], stripe_config["webhook_secret"]),
        email=EmailGatewayClient(
            email_config["gateway_url"],
            email_config["api_key"],
            email_config["hmac_secret"],
        ),
        config=config,
    )

    auth_config = AuthConfig()
    session_manager = SessionManager(ValkeyClient(get_valkey_url()), auth_config)

    logger.info("Portal billing app configured (base url %s)", config.app_base_url)
    return create_app(services, session_manager, auth_config)

"""
Stripe payment gateway client.

Wraps the Stripe Python SDK behind three operations the billing core needs:
create a charge intent, fetch a charge authoritatively, and verify a webhook
delivery. The API key is passed per request rather than set on the stripe
module, so several clients (test/live) can coexist in one process.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import stripe

logger = logging.getLogger(__name__)

API_VERSION = "2023-10-16"


class PaymentGatewayError(Exception):
    """Stripe API call failed. Safe to retry."""


class WebhookSignatureError(PaymentGatewayError):
    """Webhook payload failed signature verification."""


@dataclass
class ChargeIntent:
    """A newly created PaymentIntent awaiting customer payment."""

    id: str
    """PaymentIntent ID (pi_xxx); stored on the invoice as its transaction id."""

    client_secret: str
    """Secret used to build the customer's payment link."""


@dataclass
class Charge:
    """Authoritative PaymentIntent state, re-fetched from Stripe."""

    id: str
    status: str
    amount_minor: int
    currency: str = "usd"
    metadata: Dict[str, str] = field(default_factory=dict)
    latest_charge_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass
class WebhookEvent:
    """A verified webhook delivery."""

    id: str
    type: str
    data: Dict[str, Any]
    created: int

    @property
    def object_id(self) -> str | None:
        """Id of the object the event is about (the PaymentIntent for payment events)."""
        return self.data.get("id")


class StripeGatewayClient:
    """Payment gateway backed by Stripe PaymentIntents."""

    def __init__(self, secret_key: str, webhook_secret: str, currency: str = "usd"):
        if not secret_key:
            raise ValueError("secret_key is required")
        if not webhook_secret:
            raise ValueError("webhook_secret is required")

        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self.currency = currency

    def create_charge_intent(
        self,
        amount_minor: int,
        description: str,
        metadata: Dict[str, str],
    ) -> ChargeIntent:
        """
        Create a PaymentIntent for `amount_minor` cents.

        Raises:
            ValueError: If amount is not positive
            PaymentGatewayError: If the Stripe call fails
        """
        if amount_minor <= 0:
            raise ValueError(f"Charge amount must be positive, got {amount_minor}")

        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=self.currency,
                description=description,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self._secret_key,
                stripe_version=API_VERSION,
            )
        except stripe.StripeError as e:
            logger.error(
                f"Stripe charge intent error: {e}",
                extra={"invoice_id": metadata.get("invoice_id")},
            )
            raise PaymentGatewayError(f"Charge intent creation failed: {e}") from e

        logger.info(
            f"Created payment intent {intent.id} for {amount_minor} minor units",
            extra={"payment_intent_id": intent.id, "invoice_id": metadata.get("invoice_id")},
        )

        return ChargeIntent(id=intent.id, client_secret=intent.client_secret)

    def get_charge(self, charge_id: str) -> Charge:
        """
        Retrieve a PaymentIntent by id.

        Raises:
            PaymentGatewayError: If not found or the API call fails
        """
        try:
            intent = stripe.PaymentIntent.retrieve(
                charge_id,
                api_key=self._secret_key,
                stripe_version=API_VERSION,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent retrieval error: {e}")
            raise PaymentGatewayError(f"Payment intent {charge_id} unavailable: {e}") from e

        # StripeObject is not a dict; read fields from its plain-dict form
        data = intent.to_dict()
        latest_charge = data.get("latest_charge")
        if isinstance(latest_charge, dict):
            latest_charge = latest_charge.get("id")

        return Charge(
            id=data["id"],
            status=data["status"],
            amount_minor=data["amount"],
            currency=data.get("currency") or self.currency,
            metadata=dict(data.get("metadata") or {}),
            latest_charge_id=latest_charge,
        )

    def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify the Stripe-Signature header and parse the event.

        Raises:
            WebhookSignatureError: If the signature or payload is invalid
        """
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise WebhookSignatureError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning(f"Webhook payload could not be parsed: {e}")
            raise WebhookSignatureError("Invalid webhook payload") from e

        logger.info(
            f"Verified webhook event {event.id} type {event.type}",
            extra={"event_id": event.id, "event_type": event.type},
        )

        return WebhookEvent(
            id=event.id,
            type=event.type,
            data=event.data.object.to_dict(),
            created=event.created,
        )

"""Tests for POST /webhooks/payment."""

from clients.stripe_client import Charge, PaymentGatewayError, WebhookEvent, WebhookSignatureError
from core.models import InvoiceStatus, NotificationKind


def charge_event(charge_id="pi_test_123", event_type="payment_intent.succeeded"):
    return WebhookEvent(
        id="evt_test_1",
        type=event_type,
        data={"id": charge_id, "object": "payment_intent"},
        created=1760000000,
    )


def post_webhook(client):
    return client.post(
        "/webhooks/payment",
        content=b'{"id": "evt_test_1"}',
        headers={"stripe-signature": "t=1,v1=abc"},
    )


class TestSignature:

    def test_bad_signature_is_400(self, anon_client, gateway):
        gateway.verify_webhook.side_effect = WebhookSignatureError("no match")

        response = post_webhook(anon_client)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"
        gateway.get_charge.assert_not_called()

    def test_raw_body_and_header_are_verified(self, anon_client, gateway):
        gateway.verify_webhook.return_value = charge_event(event_type="customer.created")

        post_webhook(anon_client)

        gateway.verify_webhook.assert_called_once_with(b'{"id": "evt_test_1"}', "t=1,v1=abc")


class TestReconciliation:

    def test_paid_charge_marks_invoice_paid(self, anon_client, gateway, store, project, email):
        invoice = store.add_invoice(
            project.id,
            status=InvoiceStatus.PENDING,
            gateway_transaction_id="pi_test_123",
        )
        gateway.verify_webhook.return_value = charge_event()
        gateway.get_charge.return_value = Charge(
            id="pi_test_123",
            status="succeeded",
            amount_minor=300000,
            metadata={"invoice_id": str(invoice.id), "payment_type": "milestone"},
        )

        response = post_webhook(anon_client)

        assert response.status_code == 200
        assert response.json() == {"received": True, "event_id": "evt_test_1", "outcome": "reconciled"}
        assert store.get_invoice(invoice.id).status == InvoiceStatus.PAID
        assert len(store.notifications_of(NotificationKind.PAYMENT_CONFIRMATION)) == 1

    def test_unknown_invoice_is_acknowledged(self, anon_client, gateway):
        gateway.verify_webhook.return_value = charge_event()
        gateway.get_charge.return_value = Charge(
            id="pi_test_123",
            status="succeeded",
            amount_minor=100,
            metadata={"invoice_id": "00000000-0000-0000-0000-00000000beef"},
        )

        response = post_webhook(anon_client)

        assert response.status_code == 200
        assert response.json()["outcome"] == "not_found"

    def test_unhandled_event_type_is_acknowledged(self, anon_client, gateway):
        gateway.verify_webhook.return_value = charge_event(event_type="charge.refunded")

        response = post_webhook(anon_client)

        assert response.status_code == 200
        assert response.json()["outcome"] is None

    def test_gateway_failure_is_500_so_delivery_is_retried(self, anon_client, gateway):
        gateway.verify_webhook.return_value = charge_event()
        gateway.get_charge.side_effect = PaymentGatewayError("timeout")

        response = post_webhook(anon_client)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"

"""POST /webhooks/payment: payment gateway events.

Public route, authenticated by the gateway's signature. Any response other
than 2xx makes the gateway redeliver, so:

- bad signature: 400 (a forged or corrupted delivery; redelivery won't help
  but must not be acknowledged as processed)
- reconciliation failure: 500 so the gateway retries
- everything else, including events we ignore: 200
"""

import logging

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from clients.stripe_client import WebhookSignatureError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"


def create_webhook_router(services: dict) -> APIRouter:
    """
    Args:
        services: {"gateway": StripeGatewayClient, "reconciliation": ReconciliationService}
    """
    router = APIRouter()
    gateway = services["gateway"]
    reconciliation = services["reconciliation"]

    @router.post("/webhooks/payment")
    async def payment_webhook(request: Request):
        payload = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER)

        try:
            event = gateway.verify_webhook(payload, signature)
        except WebhookSignatureError as exc:
            logger.warning("Rejected webhook: %s", exc)
            return JSONResponse(
                status_code=400,
                content=error_response(ErrorCodes.INVALID_SIGNATURE, "Invalid webhook signature").model_dump(mode="json"),
            )

        try:
            outcome = await run_in_threadpool(reconciliation.handle_event, event)
        except Exception:
            logger.exception("Webhook %s (%s) failed, gateway will retry", event.id, event.type)
            return JSONResponse(
                status_code=500,
                content=error_response(ErrorCodes.INTERNAL_ERROR, "Webhook processing failed").model_dump(mode="json"),
            )

        return {
            "received": True,
            "event_id": event.id,
            "outcome": outcome.value if outcome else None,
        }

    return router

"""
Billing error taxonomy.

Each error maps to one HTTP status in api/errors.py. Transition and input
errors are user-correctable and never retried automatically; GatewayError is
safe to retry; MalformedEvent is logged and dropped by reconciliation.
"""


class BillingError(Exception):
    """Base class for billing core errors."""


class InvalidState(BillingError):
    """An illegal transition was attempted (e.g. completing a completed milestone)."""


class InvalidInput(BillingError):
    """Missing or non-positive amounts, malformed ids, bad percentages."""


class NotFound(BillingError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found")


class GatewayError(BillingError):
    """The payment processor failed. Nothing was persisted; retry is safe."""


class MalformedEvent(BillingError):
    """A gateway event lacks the metadata needed to reconcile it. Retrying cannot help."""

"""Billing configuration."""

import os
from decimal import Decimal

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Non-secret billing settings.

    Secrets (Stripe keys, email gateway credentials) come from Vault, see
    clients.vault_client.
    """

    # Links and email identity
    app_base_url: str = Field(
        default="http://localhost:5000",
        description="Base URL for customer payment links",
    )
    from_name: str = Field(
        default="Kolmo Construction",
        description="Sender display name on billing emails",
    )

    # Payment terms
    milestone_due_days: int = Field(default=14, ge=0, le=120)
    final_due_days: int = Field(default=7, ge=0, le=120)
    down_payment_due_days: int = Field(default=0, ge=0, le=120)

    # Percentages
    default_promotion_percentage: Decimal = Field(
        default=Decimal("10"),
        description="Billing percentage for promoted tasks that carry none",
        gt=0,
        le=100,
    )
    enforce_percentage_cap: bool = Field(
        default=True,
        description="Reject milestones/promotions pushing a project past 100% billed",
    )
    strict_schedule_percentages: bool = Field(
        default=False,
        description="Require down/milestone/final percentages to sum to 100",
    )

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """Build from PORTAL_* environment variables, defaults for anything unset."""
        overrides = {}
        env_map = {
            "PORTAL_BASE_URL": "app_base_url",
            "PORTAL_FROM_NAME": "from_name",
            "PORTAL_MILESTONE_DUE_DAYS": "milestone_due_days",
            "PORTAL_FINAL_DUE_DAYS": "final_due_days",
            "PORTAL_DOWN_PAYMENT_DUE_DAYS": "down_payment_due_days",
            "PORTAL_DEFAULT_PROMOTION_PERCENTAGE": "default_promotion_percentage",
            "PORTAL_ENFORCE_PERCENTAGE_CAP": "enforce_percentage_cap",
            "PORTAL_STRICT_SCHEDULE_PERCENTAGES": "strict_schedule_percentages",
        }
        for env_name, field_name in env_map.items():
            value = os.getenv(env_name)
            if value is not None and value != "":
                overrides[field_name] = value
        return cls(**overrides)

    def payment_link(self, client_secret: str) -> str:
        """Customer-facing payment page for a charge intent."""
        return f"{self.app_base_url.rstrip('/')}/payment/{client_secret}"

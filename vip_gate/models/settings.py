"""Deployment-wide subscription settings (singleton)."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from vip_gate.models.identity import PlanKind


class _KeepMissing(dict):
    def __missing__(self, key):
        return "{" + key + "}"


class MessageTemplates(BaseModel):
    """User-facing message templates.

    Placeholders: ``{plan}``, ``{amount}``, ``{currency}``, ``{minutes}``,
    ``{expires}``, ``{name}``.
    """

    welcome: str = "Welcome to the VIP group, {name}!\nChoose a plan:"
    payment_instructions: str = (
        "{plan} plan\nAmount: {currency} {amount}\n\n"
        "Pay with the PIX code below within {minutes} minutes, then wait for confirmation."
    )
    approved: str = "Payment approved! Your access has been granted."
    expired: str = "Your plan has expired. Purchase again to get back in."
    not_configured: str = "The system is not configured yet."
    payment_pending: str = "Your payment has not been confirmed yet."
    no_pending_payment: str = "You have no payment awaiting confirmation."
    payment_rejected: str = "Your payment was not approved."

    def render(self, name: str, /, **values) -> str:
        """Fill a template by name; unknown placeholders are left as written."""
        return getattr(self, name).format_map(_KeepMissing(values))


class Settings(BaseModel):
    """Subscription settings for the single controlled group."""

    group_id: str = Field(..., description="Controlled group/chat id")
    recurring_price: Optional[Decimal] = Field(None, description="Price of the recurring plan")
    perpetual_price: Optional[Decimal] = Field(None, description="Price of the perpetual plan")
    recurring_duration_days: int = Field(default=30, gt=0, description="Recurring grant length")
    currency: str = Field(default="BRL", description="Display currency")
    templates: MessageTemplates = Field(default_factory=MessageTemplates)
    revenue_total: Decimal = Field(default=Decimal("0.00"), description="Cumulative approved revenue")

    @field_validator("group_id", mode="before")
    @classmethod
    def _group_id_as_str(cls, value):
        return str(value) if isinstance(value, int) else value

    def price_for(self, plan_kind: PlanKind) -> Optional[Decimal]:
        """Price for a plan kind, or None if the plan is not offered."""
        if plan_kind == PlanKind.RECURRING:
            return self.recurring_price
        if plan_kind == PlanKind.PERPETUAL:
            return self.perpetual_price
        return None

    class Config:
        json_schema_extra = {
            "example": {
                "group_id": "-1001234567890",
                "recurring_price": "30.00",
                "perpetual_price": "150.00",
                "recurring_duration_days": 30,
                "currency": "BRL",
                "revenue_total": "0.00",
            }
        }

"""Control API request and response models."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from vip_gate.models.identity import PlanKind


class PurchaseRequest(BaseModel):
    """Request a payment intent for a subject."""

    subject_id: str = Field(
        ..., pattern=r"^-?\d+$", description="Purchasing subject (numeric Telegram user id)"
    )
    plan_kind: PlanKind = Field(..., description="recurring or perpetual")
    display_name: Optional[str] = Field(None, description="Name to record on first contact")

    class Config:
        json_schema_extra = {
            "example": {
                "subject_id": "42",
                "plan_kind": "recurring",
                "display_name": "alice",
            }
        }


class SweepRequest(BaseModel):
    """Run a sweep now, optionally at an explicit time."""

    now_millis: Optional[int] = Field(None, description="Sweep time (defaults to the current time)")


class SettingsResponse(BaseModel):
    """Read-only settings summary for display."""

    group_id: str
    recurring_price: Optional[Decimal]
    perpetual_price: Optional[Decimal]
    recurring_duration_days: int
    currency: str
    revenue_total: Decimal


class WebhookAck(BaseModel):
    """Acknowledgement body for provider notifications."""

    ok: bool = True
    outcome: Optional[str] = None
    ignored: Optional[str] = None


"""Payment intent models: one record per purchase attempt."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from vip_gate.models.identity import PlanKind


class IntentStatus(str, Enum):
    """Payment intent status. Monotonic: PENDING -> {APPROVED | EXPIRED}."""

    PENDING = "pending"
    APPROVED = "approved"
    EXPIRED = "expired"


TERMINAL_STATUSES = (IntentStatus.APPROVED, IntentStatus.EXPIRED)


class PaymentIntent(BaseModel):
    """Locally recorded purchase attempt."""

    intent_id: str = Field(..., description="Locally assigned intent id")
    subject_id: str = Field(..., description="Purchasing subject")
    plan_kind: PlanKind = Field(..., description="Plan being purchased")
    amount: Decimal = Field(..., description="Exact price charged")
    provider_reference: str = Field(..., description="Provider-side payment id (idempotency key)")
    status: IntentStatus = Field(default=IntentStatus.PENDING)
    created_at_millis: int = Field(..., description="Creation time (Unix millis)")
    expires_at_millis: int = Field(..., description="Payment window end (Unix millis)")
    approved_at_millis: Optional[int] = Field(None, description="When reconciliation approved it")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class IntentHandle(BaseModel):
    """What the front-end needs to present a payment to the user."""

    intent_id: str
    provider_reference: str
    plan_kind: PlanKind
    amount: Decimal
    currency: str
    expires_at_millis: int
    payment_code: str = Field(..., description="Raw copy-and-paste payment string")
    qr_code_base64: Optional[str] = Field(None, description="Scannable code as base64 PNG")

    class Config:
        json_schema_extra = {
            "example": {
                "intent_id": "int_6f1c0b1e9a7d4f0c",
                "provider_reference": "1319123456",
                "plan_kind": "recurring",
                "amount": "30.00",
                "currency": "BRL",
                "expires_at_millis": 1700001800000,
                "payment_code": "00020126580014br.gov.bcb.pix...",
                "qr_code_base64": "iVBORw0KGgo...",
            }
        }


class ReviewCase(BaseModel):
    """Amount mismatch held for manual review."""

    provider_reference: str
    subject_id: str
    expected_amount: Decimal
    reported_amount: Decimal
    created_at_millis: int

"""Payment gateway data as seen by the engine."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class GatewayStatus(str, Enum):
    """Provider payment status, normalized."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class CreatedPayment(BaseModel):
    """Result of creating a provider-side payment request."""

    provider_reference: str
    payment_code: str
    qr_code_base64: Optional[str] = None


class GatewayPayment(BaseModel):
    """Authoritative payment state fetched from the provider."""

    provider_reference: str
    status: GatewayStatus
    amount: Decimal
    metadata: dict[str, str] = Field(default_factory=dict)
    raw_status: Optional[str] = Field(None, description="Provider status string before normalization")

"""Typed results returned by the subscription engine."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from vip_gate.models.gateway import GatewayStatus
from vip_gate.models.identity import PlanKind


class ReconcileOutcome(str, Enum):
    """Outcome of reconciling one provider notification."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    NOT_FOUND = "not_found"
    NOT_YET_APPROVED = "not_yet_approved"
    AMOUNT_MISMATCH = "amount_mismatch"


class ReconcileResult(BaseModel):
    outcome: ReconcileOutcome
    provider_reference: str
    subject_id: Optional[str] = None
    plan_kind: Optional[PlanKind] = None
    amount: Optional[Decimal] = None
    gateway_status: Optional[GatewayStatus] = None
    expires_at_millis: Optional[int] = None
    admitted: bool = False


class PaymentCheckStatus(str, Enum):
    NO_PENDING = "no_pending"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentCheck(BaseModel):
    """Answer to a user-initiated "check my payment"."""

    subject_id: str
    status: PaymentCheckStatus
    reconcile: Optional[ReconcileResult] = None


class SweepFailure(BaseModel):
    subject_id: str
    stage: str = Field(..., description="expire, expel, revoke or admit")
    error: str


class SweepReport(BaseModel):
    """Summary of one expiration sweep."""

    now_millis: int
    expired_intents: list[str] = Field(default_factory=list, description="Provider references expired")
    expelled_subjects: list[str] = Field(default_factory=list)
    renewed_during_sweep: list[str] = Field(default_factory=list)
    readmitted_subjects: list[str] = Field(default_factory=list)
    failures: list[SweepFailure] = Field(default_factory=list)

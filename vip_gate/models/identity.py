"""Identity model: one record per end-user subject."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AccessState(str, Enum):
    """Membership state of a subject in the controlled group."""

    INACTIVE = "inactive"
    ACTIVE = "active"


class PlanKind(str, Enum):
    """Kind of plan a subject holds or purchases."""

    RECURRING = "recurring"  # Time-bounded, swept on expiry
    PERPETUAL = "perpetual"  # Permanent, never swept
    UNSET = "unset"  # Never purchased


PURCHASABLE_PLANS = (PlanKind.RECURRING, PlanKind.PERPETUAL)


class Identity(BaseModel):
    """Access record for a single subject."""

    subject_id: str = Field(..., description="Stable external identity (e.g., Telegram user id)")
    display_name: Optional[str] = Field(None, description="Human-readable name or username")
    access_state: AccessState = Field(default=AccessState.INACTIVE, description="Current access state")
    plan_kind: PlanKind = Field(default=PlanKind.UNSET, description="Plan currently held")
    expires_at_millis: Optional[int] = Field(
        None, description="Grant expiry (Unix millis); null for perpetual or never-purchased"
    )
    admit_pending: bool = Field(
        default=False, description="Grant committed but not yet confirmed by the access gate"
    )

    @property
    def is_active(self) -> bool:
        return self.access_state == AccessState.ACTIVE

    @property
    def is_perpetual(self) -> bool:
        return self.is_active and self.plan_kind == PlanKind.PERPETUAL

    def is_lapsed(self, now_millis: int) -> bool:
        """Whether this is an active recurring grant whose expiry has passed."""
        return (
            self.is_active
            and self.plan_kind == PlanKind.RECURRING
            and self.expires_at_millis is not None
            and self.expires_at_millis <= now_millis
        )

    class Config:
        json_schema_extra = {
            "example": {
                "subject_id": "42",
                "display_name": "alice",
                "access_state": "active",
                "plan_kind": "recurring",
                "expires_at_millis": 1731536000000,
                "admit_pending": False,
            }
        }

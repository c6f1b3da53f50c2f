"""State change logging for identities, payment intents and revenue.

Tracks transitions with before/after values for auditing.
"""

from decimal import Decimal
from typing import Any, Optional

from vip_gate.logging_config import get_logger

logger = get_logger(__name__)


def _short(reference: str) -> str:
    return reference[:20] + "..." if len(reference) > 20 else reference


def log_access_state_change(
    subject_id: str,
    old_state: Any,
    new_state: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log an identity access state change.

    Args:
        subject_id: Identity whose access changed
        old_state: Previous access state
        new_state: New access state
        reason: Reason for state change
        **extra_context: Additional context (plan_kind, expires_at_millis, etc.)
    """
    logger.info(
        "access_state_changed",
        subject_id=subject_id,
        old_state=str(old_state),
        new_state=str(new_state),
        reason=reason,
        **extra_context,
    )


def log_intent_status_change(
    provider_reference: str,
    subject_id: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log a payment intent status change."""
    logger.info(
        "intent_status_changed",
        provider_reference=_short(provider_reference),
        subject_id=subject_id,
        old_status=str(old_status),
        new_status=str(new_status),
        reason=reason,
        **extra_context,
    )


def log_revenue_increment(
    provider_reference: str,
    amount: Decimal,
    **extra_context: Any,
) -> None:
    """Log a revenue counter increment."""
    logger.info(
        "revenue_incremented",
        provider_reference=_short(provider_reference),
        amount=str(amount),
        **extra_context,
    )

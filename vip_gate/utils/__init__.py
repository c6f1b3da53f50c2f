"""Utility functions and helpers."""

from vip_gate.utils.clock import (
    days_to_millis,
    millis_to_datetime,
    millis_to_iso,
    minutes_to_millis,
    now_millis,
)
from vip_gate.utils.money import (
    InvalidAmountError,
    format_amount,
    from_minor_units,
    parse_amount,
    parse_price,
    to_minor_units,
)
from vip_gate.utils.references import generate_intent_id
from vip_gate.utils.retry import compute_backoff, retry_call
from vip_gate.utils.signature import sign_mp_manifest, verify_mp_signature

__all__ = [
    # Time
    "now_millis",
    "minutes_to_millis",
    "days_to_millis",
    "millis_to_datetime",
    "millis_to_iso",
    # Money
    "InvalidAmountError",
    "parse_amount",
    "parse_price",
    "to_minor_units",
    "from_minor_units",
    "format_amount",
    # Identifiers
    "generate_intent_id",
    # Retry
    "compute_backoff",
    "retry_call",
    # Webhook signatures
    "verify_mp_signature",
    "sign_mp_manifest",
]

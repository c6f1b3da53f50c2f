"""Local identifier generation for payment intents."""

import secrets

INTENT_ID_PREFIX = "int"


def generate_intent_id() -> str:
    """Generate a unique local intent id (also used as the provider idempotency key).

    Format: ``int_<24 hex chars>``
    """
    return f"{INTENT_ID_PREFIX}_{secrets.token_hex(12)}"

"""Mercado Pago webhook signature verification."""

import hashlib
import hmac
from typing import Optional


def _parse_x_signature(x_signature: str) -> tuple[Optional[str], Optional[str]]:
    """
    x-signature looks like: "ts=1700000000,v1=abcdef..."
    """
    ts = None
    v1 = None
    for part in x_signature.split(","):
        k, _, v = part.strip().partition("=")
        if k == "ts":
            ts = v
        elif k == "v1":
            v1 = v
    return ts, v1


def verify_mp_signature(*, secret: str, x_signature: str, x_request_id: str, data_id: str) -> bool:
    """Check the HMAC-SHA256 of ``id:{data_id};request-id:{x_request_id};ts:{ts};``."""
    ts, v1 = _parse_x_signature(x_signature)
    if not ts or not v1:
        return False

    manifest = f"id:{data_id};request-id:{x_request_id};ts:{ts};"
    digest = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, v1)


def sign_mp_manifest(*, secret: str, x_request_id: str, data_id: str, ts: str) -> str:
    """Build an x-signature header value (used by tests and local tooling)."""
    manifest = f"id:{data_id};request-id:{x_request_id};ts:{ts};"
    digest = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"ts={ts},v1={digest}"

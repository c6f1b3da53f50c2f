"""Mercado Pago notification endpoint.

Implements:
- POST /payments/webhook - reconcile a payment notification

The notification only tells us which payment changed; the engine re-fetches
its status and amount from the provider. Every domain outcome is answered
with 200 so the provider stops retrying; infrastructure faults get 503 so it
retries later.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from vip_gate.logging_config import bind_context, get_logger
from vip_gate.models.api_request import WebhookAck
from vip_gate.repositories.database import TransientStoreError
from vip_gate.services.payment_gateway import GatewayError, TransientGatewayError
from vip_gate.services.subscription_engine import (
    NotConfiguredError,
    SubscriptionEngine,
    get_subscription_engine,
)
from vip_gate.utils.signature import verify_mp_signature

logger = get_logger(__name__)
router = APIRouter(tags=["Payment Webhook"], prefix="/payments")

PAYMENT_TOPICS = ("payment",)


def get_webhook_secret() -> Optional[str]:
    """Configured x-signature secret (None disables verification)."""
    from vip_gate.config import get_config

    return get_config().gateway.webhook_secret


def _payment_id(request: Request, body: dict[str, Any]) -> Optional[str]:
    """Extract the payment id from a webhook (``type``) or IPN (``topic``) notification."""
    topic = request.query_params.get("topic") or body.get("topic")
    mp_type = body.get("type") or request.query_params.get("type") or (body.get("action") or "").split(".")[0]
    if topic not in PAYMENT_TOPICS and mp_type not in PAYMENT_TOPICS:
        return None

    data = body.get("data") or {}
    payment_id = data.get("id") or request.query_params.get("data.id") or request.query_params.get("id")
    return str(payment_id) if payment_id else None


def _maybe_verify_signature(request: Request, secret: Optional[str], data_id: str) -> None:
    """Verify x-signature when a secret is configured and the headers are present.

    Raises:
        HTTPException: 401 if the signature does not match
    """
    if not secret:
        return

    x_signature = request.headers.get("x-signature", "")
    x_request_id = request.headers.get("x-request-id", "")
    if not x_signature or not x_request_id:
        logger.warning("webhook_signature_headers_missing", provider_reference=data_id)
        return

    ok = verify_mp_signature(
        secret=secret,
        x_signature=x_signature,
        x_request_id=x_request_id,
        data_id=data_id,
    )
    if not ok:
        logger.warning("webhook_signature_invalid", provider_reference=data_id)
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_signature", "message": "Invalid signature"},
        )


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Mercado Pago payment notification",
)
async def payment_webhook(
    request: Request,
    engine: SubscriptionEngine = Depends(get_subscription_engine),
    webhook_secret: Optional[str] = Depends(get_webhook_secret),
) -> WebhookAck:
    """Reconcile the payment a notification points at.

    Raises:
        401: Invalid x-signature
        503: Provider or ledger temporarily unavailable, or settings missing
        502: Provider rejected our request
    """
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    payment_id = _payment_id(request, body)
    if payment_id is None:
        logger.info(
            "webhook_ignored",
            topic=request.query_params.get("topic") or body.get("topic"),
            type=body.get("type") or request.query_params.get("type"),
        )
        return WebhookAck(ok=True, ignored="not_a_payment_notification")

    bind_context(provider_reference=payment_id)
    _maybe_verify_signature(request, webhook_secret, payment_id)

    try:
        result = await run_in_threadpool(engine.reconcile_notification, payment_id)
    except (TransientGatewayError, TransientStoreError, NotConfiguredError) as e:
        logger.warning("webhook_retry_later", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=503,
            detail={"error": "temporarily_unavailable", "message": str(e)},
        )
    except GatewayError as e:
        logger.error("webhook_gateway_error", error=str(e))
        raise HTTPException(
            status_code=502,
            detail={"error": "gateway_error", "message": str(e)},
        )

    logger.info("webhook_processed", outcome=result.outcome.value)
    return WebhookAck(ok=True, outcome=result.outcome.value)

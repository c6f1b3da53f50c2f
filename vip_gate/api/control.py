"""Control API for operators and scripted checks.

Implements:
- GET /control/settings - Current settings and revenue
- GET /control/identities/{subject_id} - Access record of a subject
- POST /control/purchases - Create a payment intent
- POST /control/identities/{subject_id}/check-payment - Re-check latest pending payment
- POST /control/sweep - Run the expiration sweep now
- GET /control/reviews - Amount mismatches awaiting manual review
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from vip_gate.logging_config import get_logger
from vip_gate.models import (
    Identity,
    IntentHandle,
    PaymentCheck,
    PurchaseRequest,
    ReviewCase,
    SettingsResponse,
    SweepReport,
    SweepRequest,
)
from vip_gate.repositories.database import TransientStoreError
from vip_gate.services.payment_gateway import GatewayError, TransientGatewayError
from vip_gate.services.subscription_engine import (
    InvalidPlanError,
    NotConfiguredError,
    SubscriptionEngine,
    get_subscription_engine,
)

logger = get_logger(__name__)
router = APIRouter(tags=["Control API"], prefix="/control")


def _unavailable(e: Exception) -> HTTPException:
    logger.warning("control_dependency_unavailable", error=str(e), error_type=type(e).__name__)
    return HTTPException(
        status_code=503,
        detail={"error": "temporarily_unavailable", "message": str(e)},
    )


@router.get("/settings", response_model=SettingsResponse, summary="Current settings")
def get_settings(engine: SubscriptionEngine = Depends(get_subscription_engine)) -> SettingsResponse:
    settings = engine.get_settings()
    if settings is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "not_configured", "message": "Settings have not been configured"},
        )
    return SettingsResponse(
        group_id=settings.group_id,
        recurring_price=settings.recurring_price,
        perpetual_price=settings.perpetual_price,
        recurring_duration_days=settings.recurring_duration_days,
        currency=settings.currency,
        revenue_total=settings.revenue_total,
    )


@router.get("/identities/{subject_id}", response_model=Identity, summary="Get identity")
def get_identity(
    subject_id: str,
    engine: SubscriptionEngine = Depends(get_subscription_engine),
) -> Identity:
    identity = engine.get_identity(subject_id)
    if identity is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "Identity not found", "message": f"No identity for subject '{subject_id}'"},
        )
    return identity


@router.post(
    "/purchases",
    response_model=IntentHandle,
    status_code=201,
    summary="Create payment intent",
)
def create_purchase(
    request: PurchaseRequest,
    engine: SubscriptionEngine = Depends(get_subscription_engine),
) -> IntentHandle:
    """Create a payment intent for a subject, as the bot's plan buttons do.

    Raises:
        400: Plan cannot be purchased
        409: Settings missing or plan has no price
        502: Provider rejected the request
        503: Provider or ledger temporarily unavailable
    """
    logger.info(
        "create_purchase_request",
        subject_id=request.subject_id,
        plan_kind=request.plan_kind.value,
    )
    try:
        return engine.request_purchase(
            request.subject_id,
            request.plan_kind,
            display_name=request.display_name,
        )
    except InvalidPlanError as e:
        raise HTTPException(status_code=400, detail={"error": "Invalid request", "message": str(e)})
    except NotConfiguredError as e:
        raise HTTPException(status_code=409, detail={"error": "not_configured", "message": str(e)})
    except (TransientGatewayError, TransientStoreError) as e:
        raise _unavailable(e)
    except GatewayError as e:
        logger.error("create_purchase_gateway_error", error=str(e))
        raise HTTPException(status_code=502, detail={"error": "gateway_error", "message": str(e)})


@router.post(
    "/identities/{subject_id}/check-payment",
    response_model=PaymentCheck,
    summary="Re-check latest pending payment",
)
def check_payment(
    subject_id: str,
    engine: SubscriptionEngine = Depends(get_subscription_engine),
) -> PaymentCheck:
    try:
        return engine.check_pending(subject_id)
    except (TransientGatewayError, TransientStoreError, NotConfiguredError) as e:
        raise _unavailable(e)
    except GatewayError as e:
        raise HTTPException(status_code=502, detail={"error": "gateway_error", "message": str(e)})


@router.post("/sweep", response_model=SweepReport, summary="Run expiration sweep")
def run_sweep(
    request: Optional[SweepRequest] = None,
    engine: SubscriptionEngine = Depends(get_subscription_engine),
) -> SweepReport:
    """Run the sweep immediately, optionally as of an explicit time."""
    now = request.now_millis if request is not None else None
    try:
        return engine.sweep(now_millis=now)
    except TransientStoreError as e:
        raise _unavailable(e)


@router.get("/reviews", response_model=list[ReviewCase], summary="List review cases")
def list_reviews(engine: SubscriptionEngine = Depends(get_subscription_engine)) -> list[ReviewCase]:
    return engine.list_review_cases()

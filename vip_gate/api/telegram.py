"""Telegram bot webhook.

Implements:
- POST /telegram/webhook - receive a bot update
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from starlette.concurrency import run_in_threadpool

from vip_gate.logging_config import get_logger
from vip_gate.models.api_request import WebhookAck
from vip_gate.models.telegram import TelegramUpdate
from vip_gate.repositories.database import TransientStoreError
from vip_gate.services.bot_dispatcher import BotDispatcher, get_bot_dispatcher

logger = get_logger(__name__)
router = APIRouter(tags=["Telegram"], prefix="/telegram")


def get_telegram_secret() -> Optional[str]:
    """Expected X-Telegram-Bot-Api-Secret-Token value (None disables the check)."""
    from vip_gate.config import get_config

    return get_config().telegram.webhook_secret


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Telegram bot update",
)
async def telegram_webhook(
    update: TelegramUpdate,
    dispatcher: BotDispatcher = Depends(get_bot_dispatcher),
    expected_secret: Optional[str] = Depends(get_telegram_secret),
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
) -> WebhookAck:
    """Route one update to the bot dispatcher.

    Raises:
        401: Secret token header does not match
        503: Ledger temporarily unavailable (Telegram redelivers the update)
    """
    if expected_secret and x_telegram_bot_api_secret_token != expected_secret:
        logger.warning("telegram_secret_mismatch", update_id=update.update_id)
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_secret", "message": "Invalid secret token"},
        )

    try:
        action = await run_in_threadpool(dispatcher.handle, update)
    except TransientStoreError as e:
        logger.warning("telegram_update_retry_later", update_id=update.update_id, error=str(e))
        raise HTTPException(
            status_code=503,
            detail={"error": "temporarily_unavailable", "message": str(e)},
        )

    logger.debug("telegram_update_handled", update_id=update.update_id, action=action)
    if action is None:
        return WebhookAck(ok=True, ignored="unhandled_update")
    return WebhookAck(ok=True, outcome=action)

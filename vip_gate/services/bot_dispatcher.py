"""Telegram front-end - routes bot updates to the subscription engine.

Subscriber actions:
- /start - register the subject and offer the purchasable plans
- BUY_RECURRING / BUY_PERPETUAL buttons - create a payment intent
- CHECK_PAYMENT button - re-check the latest pending payment

Admin actions (subject ids listed under ``admins`` in the config):
- /setup - start the settings wizard, then answer its prompts
- /cancel - abandon the wizard
- /stats - active subscribers and revenue
"""

from typing import Iterable, Optional

from vip_gate.logging_config import bind_context, get_logger
from vip_gate.models.identity import PlanKind
from vip_gate.models.results import PaymentCheckStatus, ReconcileOutcome
from vip_gate.models.settings import MessageTemplates
from vip_gate.models.telegram import TelegramCallbackQuery, TelegramMessage, TelegramUpdate
from vip_gate.repositories.database import TransientStoreError
from vip_gate.services.access_gate import AccessGateError, Buttons
from vip_gate.services.admin_session import AdminSessionRegistry, WizardInputError
from vip_gate.services.payment_gateway import GatewayError
from vip_gate.services.subscription_engine import (
    NotConfiguredError,
    SubscriptionEngine,
    get_subscription_engine,
)
from vip_gate.utils.money import format_amount

logger = get_logger(__name__)

BUY_RECURRING = "BUY_RECURRING"
BUY_PERPETUAL = "BUY_PERPETUAL"
CHECK_PAYMENT = "CHECK_PAYMENT"

PLAN_BUTTONS = {
    PlanKind.RECURRING: ("Recurring", BUY_RECURRING),
    PlanKind.PERPETUAL: ("Perpetual", BUY_PERPETUAL),
}
CALLBACK_PLANS = {data: plan for plan, (_, data) in PLAN_BUTTONS.items()}
CHECK_BUTTONS: Buttons = [[("I have paid", CHECK_PAYMENT)]]

UNAVAILABLE_TEXT = "The payment service is unavailable right now. Please try again in a few minutes."


class BotDispatcher:
    """Translate Telegram updates into engine calls and replies."""

    def __init__(
        self,
        engine: Optional[SubscriptionEngine] = None,
        sessions: Optional[AdminSessionRegistry] = None,
        admin_ids: Optional[Iterable] = None,
    ):
        """Initialize dispatcher.

        Args:
            engine: Subscription engine (defaults to global instance)
            sessions: Admin wizard sessions (a fresh registry if not provided)
            admin_ids: Subject ids allowed to run admin commands (defaults to config)
        """
        self.engine = engine or get_subscription_engine()
        self.sessions = sessions or AdminSessionRegistry()
        if admin_ids is None:
            from vip_gate.config import get_config

            admin_ids = get_config().app.admins
        self._admin_ids = {str(a) for a in admin_ids}

    def is_admin(self, subject_id: str) -> bool:
        return subject_id in self._admin_ids

    def handle(self, update: TelegramUpdate) -> Optional[str]:
        """Process one update.

        Returns:
            Name of the action taken, or None if the update was ignored
        """
        if update.callback_query is not None:
            return self._handle_callback(update.callback_query)
        if update.message is not None and update.message.text and update.message.from_user:
            return self._handle_message(update.message)
        return None

    def _templates(self) -> MessageTemplates:
        settings = self.engine.get_settings()
        return settings.templates if settings else MessageTemplates()

    def _reply(self, subject_id: str, text: str, buttons: Optional[Buttons] = None) -> None:
        try:
            self.engine.gate.notify(subject_id, text, buttons)
        except AccessGateError as e:
            logger.warning("bot_reply_failed", subject_id=subject_id, error=str(e))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _handle_message(self, message: TelegramMessage) -> Optional[str]:
        subject_id = str(message.from_user.id)
        bind_context(subject_id=subject_id)
        text = message.text.strip()
        command = text.split()[0].split("@")[0].lower() if text.startswith("/") else None

        if command == "/start":
            return self._start(subject_id, message.from_user.display_name)

        if not self.is_admin(subject_id):
            return None

        if command == "/setup":
            session = self.sessions.start(subject_id, self.engine.get_settings())
            self._reply(subject_id, session.prompt)
            return "setup"
        if command == "/cancel":
            if self.sessions.cancel(subject_id):
                self._reply(subject_id, "Setup cancelled.")
            else:
                self._reply(subject_id, "Nothing to cancel.")
            return "cancel"
        if command == "/stats":
            return self._stats(subject_id)

        if self.sessions.is_active(subject_id):
            return self._wizard_answer(subject_id, text)
        return None

    def _start(self, subject_id: str, display_name: str) -> str:
        self.engine.ensure_identity(subject_id, display_name)
        settings = self.engine.get_settings()
        if settings is None:
            self._reply(subject_id, MessageTemplates().not_configured)
            return "start"

        buttons = [
            [PLAN_BUTTONS[plan]]
            for plan in (PlanKind.RECURRING, PlanKind.PERPETUAL)
            if settings.price_for(plan) is not None
        ]
        if not buttons:
            self._reply(subject_id, settings.templates.not_configured)
            return "start"
        self._reply(subject_id, settings.templates.render("welcome", name=display_name), buttons)
        return "start"

    def _stats(self, subject_id: str) -> str:
        settings = self.engine.get_settings()
        if settings is None:
            self._reply(subject_id, MessageTemplates().not_configured)
            return "stats"
        self._reply(
            subject_id,
            f"Active subscribers: {self.engine.count_active()}\n"
            f"Revenue: {settings.currency} {format_amount(settings.revenue_total)}\n"
            f"Pending reviews: {len(self.engine.list_review_cases())}",
        )
        return "stats"

    def _wizard_answer(self, subject_id: str, text: str) -> str:
        try:
            reply = self.sessions.answer(subject_id, text)
        except WizardInputError as e:
            session = self.sessions.get(subject_id)
            self._reply(subject_id, f"{e}\n{session.prompt}" if session else str(e))
            return "setup_invalid"

        if reply.completed is not None:
            saved = self.engine.save_settings(reply.completed)
            self._reply(
                subject_id,
                f"{reply.text}\nGroup: {saved.group_id}\n"
                f"Recurring: {saved.recurring_price} / {saved.recurring_duration_days} days\n"
                f"Perpetual: {saved.perpetual_price if saved.perpetual_price is not None else 'not offered'}",
            )
            return "setup_completed"
        self._reply(subject_id, reply.text)
        return "setup_step"

    # ------------------------------------------------------------------
    # Buttons
    # ------------------------------------------------------------------

    def _handle_callback(self, query: TelegramCallbackQuery) -> Optional[str]:
        subject_id = str(query.from_user.id)
        bind_context(subject_id=subject_id)

        if query.data in CALLBACK_PLANS:
            return self._purchase(subject_id, query.from_user.display_name, CALLBACK_PLANS[query.data])
        if query.data == CHECK_PAYMENT:
            return self._check_payment(subject_id)

        logger.debug("bot_unknown_callback", data=query.data)
        return None

    def _purchase(self, subject_id: str, display_name: str, plan_kind: PlanKind) -> str:
        templates = self._templates()
        try:
            handle = self.engine.request_purchase(subject_id, plan_kind, display_name)
        except NotConfiguredError:
            self._reply(subject_id, templates.not_configured)
            return "purchase_not_configured"
        except (GatewayError, TransientStoreError) as e:
            logger.error("bot_purchase_failed", subject_id=subject_id, error=str(e))
            self._reply(subject_id, UNAVAILABLE_TEXT)
            return "purchase_failed"

        self._reply(
            subject_id,
            templates.render(
                "payment_instructions",
                plan=plan_kind.value.capitalize(),
                amount=format_amount(handle.amount),
                currency=handle.currency,
                minutes=self.engine.engine_config.intent_ttl_minutes,
            ),
        )
        self._reply(subject_id, handle.payment_code, CHECK_BUTTONS)
        return "purchase"

    def _check_payment(self, subject_id: str) -> str:
        templates = self._templates()
        try:
            check = self.engine.check_pending(subject_id)
        except (GatewayError, TransientStoreError, NotConfiguredError) as e:
            logger.error("bot_check_payment_failed", subject_id=subject_id, error=str(e))
            self._reply(subject_id, UNAVAILABLE_TEXT)
            return "check_payment_failed"

        if check.status == PaymentCheckStatus.APPROVED:
            # a fresh approval was already announced by the engine
            if check.reconcile is None or check.reconcile.outcome != ReconcileOutcome.APPLIED:
                self._reply(subject_id, templates.approved)
        elif check.status == PaymentCheckStatus.PENDING:
            self._reply(subject_id, templates.payment_pending, CHECK_BUTTONS)
        elif check.status == PaymentCheckStatus.REJECTED:
            self._reply(subject_id, templates.payment_rejected)
        else:
            self._reply(subject_id, templates.no_pending_payment)
        return "check_payment"


# Global dispatcher instance
_dispatcher_instance: Optional[BotDispatcher] = None


def get_bot_dispatcher() -> BotDispatcher:
    """Get global bot dispatcher instance (singleton)."""
    global _dispatcher_instance
    if _dispatcher_instance is None:
        _dispatcher_instance = BotDispatcher()
    return _dispatcher_instance


def set_bot_dispatcher(dispatcher: Optional[BotDispatcher]) -> None:
    """Replace the global dispatcher instance (tests, app bootstrap)."""
    global _dispatcher_instance
    _dispatcher_instance = dispatcher

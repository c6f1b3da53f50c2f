"""Admin settings wizard - one independent conversation per admin.

Steps: group id -> recurring price -> perpetual price ("-" for none) ->
recurring duration in days. The final answer produces a Settings value;
saving it is left to the caller.
"""

import threading
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from vip_gate.logging_config import get_logger
from vip_gate.models.settings import MessageTemplates, Settings
from vip_gate.utils.money import InvalidAmountError, parse_price

logger = get_logger(__name__)

NO_PRICE = "-"


class WizardStep(str, Enum):
    GROUP_ID = "group_id"
    RECURRING_PRICE = "recurring_price"
    PERPETUAL_PRICE = "perpetual_price"
    DURATION_DAYS = "duration_days"


PROMPTS = {
    WizardStep.GROUP_ID: "Send the group id (e.g. -1001234567890).",
    WizardStep.RECURRING_PRICE: "Send the recurring plan price (e.g. 29.90).",
    WizardStep.PERPETUAL_PRICE: f"Send the perpetual plan price, or {NO_PRICE} to not offer it.",
    WizardStep.DURATION_DAYS: "Send the recurring plan duration in days.",
}


class WizardInputError(ValueError):
    """Raised when an answer cannot be used for the current step."""

    pass


@dataclass
class AdminSession:
    """Answers collected so far by one admin."""

    admin_id: str
    step: WizardStep = WizardStep.GROUP_ID
    group_id: Optional[str] = None
    recurring_price: Optional[Decimal] = None
    perpetual_price: Optional[Decimal] = None
    templates: MessageTemplates = field(default_factory=MessageTemplates)
    currency: str = "BRL"

    @property
    def prompt(self) -> str:
        return PROMPTS[self.step]


@dataclass
class WizardReply:
    """What to tell the admin after an answer."""

    text: str
    completed: Optional[Settings] = None


def _parse_price(text: str) -> Decimal:
    try:
        price = parse_price(text)
    except InvalidAmountError as e:
        raise WizardInputError(f"'{text}' is not a valid price.") from e
    if price <= 0:
        raise WizardInputError("Price must be greater than zero.")
    return price


class AdminSessionRegistry:
    """Thread-safe wizard sessions keyed by admin subject id."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, AdminSession] = {}

    def start(self, admin_id: str, current: Optional[Settings] = None) -> AdminSession:
        """Begin (or restart) the wizard for an admin.

        Templates and currency of ``current`` settings are carried over.
        """
        session = AdminSession(admin_id=admin_id)
        if current is not None:
            session.templates = current.templates
            session.currency = current.currency
        with self._lock:
            self._sessions[admin_id] = session
        logger.info("admin_wizard_started", admin_id=admin_id)
        return session

    def get(self, admin_id: str) -> Optional[AdminSession]:
        with self._lock:
            return self._sessions.get(admin_id)

    def is_active(self, admin_id: str) -> bool:
        return self.get(admin_id) is not None

    def cancel(self, admin_id: str) -> bool:
        """Discard this admin's session only. Returns False if there was none."""
        with self._lock:
            removed = self._sessions.pop(admin_id, None)
        if removed is not None:
            logger.info("admin_wizard_cancelled", admin_id=admin_id, step=removed.step.value)
        return removed is not None

    def answer(self, admin_id: str, text: str) -> WizardReply:
        """Feed the admin's next answer into their session.

        Raises:
            KeyError: If the admin has no active session
            WizardInputError: If the answer is invalid (the step is not advanced)
        """
        text = text.strip()
        with self._lock:
            session = self._sessions.get(admin_id)
            if session is None:
                raise KeyError(admin_id)

            if session.step == WizardStep.GROUP_ID:
                if not text.lstrip("-").isdigit():
                    raise WizardInputError("Group id must be a number.")
                session.group_id = text
                session.step = WizardStep.RECURRING_PRICE
            elif session.step == WizardStep.RECURRING_PRICE:
                session.recurring_price = _parse_price(text)
                session.step = WizardStep.PERPETUAL_PRICE
            elif session.step == WizardStep.PERPETUAL_PRICE:
                session.perpetual_price = None if text == NO_PRICE else _parse_price(text)
                session.step = WizardStep.DURATION_DAYS
            else:
                if not text.isdigit() or int(text) <= 0:
                    raise WizardInputError("Duration must be a positive whole number of days.")
                settings = Settings(
                    group_id=session.group_id,
                    recurring_price=session.recurring_price,
                    perpetual_price=session.perpetual_price,
                    recurring_duration_days=int(text),
                    currency=session.currency,
                    templates=session.templates,
                )
                del self._sessions[admin_id]
                logger.info("admin_wizard_completed", admin_id=admin_id, group_id=settings.group_id)
                return WizardReply(text="Settings saved.", completed=settings)

            return WizardReply(text=session.prompt)

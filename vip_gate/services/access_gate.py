"""Access gate - admits and expels subjects from the controlled Telegram group.

admit/expel are idempotent at the Telegram API; callers retry them on
transient failures. notify is best-effort.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from vip_gate.logging_config import get_logger
from vip_gate.models.app_config import TelegramConfig

logger = get_logger(__name__)

# Inline keyboard: rows of (label, callback_data)
Buttons = list[list[tuple[str, str]]]


class AccessGateError(Exception):
    """Raised when the access gate cannot complete a call."""

    pass


class TransientAccessGateError(AccessGateError):
    """Raised on timeouts, network errors, 429 and 5xx responses."""

    pass


class AccessGate(ABC):
    """Membership control for the restricted group."""

    @abstractmethod
    def admit(self, group_id: str, subject_id: str) -> None:
        """Allow the subject into the group (idempotent)."""

    @abstractmethod
    def expel(self, group_id: str, subject_id: str) -> None:
        """Remove the subject from the group (idempotent)."""

    @abstractmethod
    def notify(self, subject_id: str, text: str, buttons: Optional[Buttons] = None) -> None:
        """Send a direct message to the subject."""

    def close(self) -> None:
        """Release client resources."""


class TelegramAccessGate(AccessGate):
    """Access gate backed by the Telegram Bot API."""

    def __init__(self, config: TelegramConfig, client: Optional[httpx.Client] = None):
        self._config = config
        self._client = client or httpx.Client(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    def _call(self, method: str, payload: dict[str, Any]) -> Any:
        if not self._config.bot_token:
            raise AccessGateError("Telegram bot token is not set in configuration.")
        path = f"/bot{self._config.bot_token}/{method}"
        try:
            response = self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise TransientAccessGateError(f"Telegram timeout on {method}") from e
        except httpx.TransportError as e:
            raise TransientAccessGateError(f"Telegram unreachable on {method}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientAccessGateError(f"Telegram returned {response.status_code} on {method}")
        try:
            data = response.json()
        except ValueError as e:
            raise TransientAccessGateError(f"Telegram returned a non-JSON body on {method}") from e
        if not data.get("ok"):
            raise AccessGateError(
                f"Telegram {method} failed: {data.get('description', response.status_code)}"
            )
        return data.get("result")

    @staticmethod
    def _user_id(subject_id: str) -> int:
        try:
            return int(subject_id)
        except (TypeError, ValueError) as e:
            raise AccessGateError(f"Subject id {subject_id!r} is not a Telegram user id") from e

    def admit(self, group_id: str, subject_id: str) -> None:
        # only_if_banned keeps members that are already in the group untouched
        self._call(
            "unbanChatMember",
            {"chat_id": group_id, "user_id": self._user_id(subject_id), "only_if_banned": True},
        )
        logger.info("gate_admitted", group_id=group_id, subject_id=subject_id)

    def expel(self, group_id: str, subject_id: str) -> None:
        self._call(
            "banChatMember",
            {"chat_id": group_id, "user_id": self._user_id(subject_id)},
        )
        logger.info("gate_expelled", group_id=group_id, subject_id=subject_id)

    def notify(self, subject_id: str, text: str, buttons: Optional[Buttons] = None) -> None:
        payload: dict[str, Any] = {"chat_id": self._user_id(subject_id), "text": text}
        if buttons:
            payload["reply_markup"] = {
                "inline_keyboard": [
                    [{"text": label, "callback_data": data} for label, data in row]
                    for row in buttons
                ]
            }
        self._call("sendMessage", payload)

    def close(self) -> None:
        self._client.close()


# Global gate instance
_gate_instance: Optional[AccessGate] = None


def get_access_gate() -> AccessGate:
    """Get global access gate instance (singleton)."""
    global _gate_instance
    if _gate_instance is None:
        from vip_gate.config import get_config

        _gate_instance = TelegramAccessGate(get_config().telegram)
    return _gate_instance

"""Payment gateway adapter - creates PIX payments and fetches their status.

Responsibilities:
- Create a provider-side payment for an intent (amount, metadata, expiry)
- Fetch authoritative status/amount/metadata for a provider reference
- Classify failures as transient (retry) or permanent

The provider is treated as an untrusted, eventually consistent oracle; every
call carries a bounded timeout.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

import httpx

from vip_gate.logging_config import get_logger
from vip_gate.models.gateway import CreatedPayment, GatewayPayment, GatewayStatus
from vip_gate.models.app_config import GatewayConfig
from vip_gate.utils.clock import millis_to_iso
from vip_gate.utils.money import InvalidAmountError, format_amount, parse_amount

logger = get_logger(__name__)

# Mercado Pago payment statuses -> normalized gateway status
MP_STATUS_MAP = {
    "approved": GatewayStatus.APPROVED,
    "pending": GatewayStatus.PENDING,
    "in_process": GatewayStatus.PENDING,
    "in_mediation": GatewayStatus.PENDING,
    "authorized": GatewayStatus.PENDING,
    "rejected": GatewayStatus.REJECTED,
    "cancelled": GatewayStatus.CANCELLED,
    "refunded": GatewayStatus.CANCELLED,
    "charged_back": GatewayStatus.CANCELLED,
}


class GatewayError(Exception):
    """Base exception for payment gateway failures that retrying will not fix."""

    pass


class TransientGatewayError(GatewayError):
    """Raised on timeouts, network errors and provider 5xx/429 responses."""

    pass


class PaymentReferenceNotFoundError(GatewayError):
    """Raised when the provider does not know a reference."""

    pass


class PaymentGateway(ABC):
    """Interface of the payment provider as consumed by the engine."""

    @abstractmethod
    def create_intent(
        self,
        amount: Decimal,
        metadata: dict[str, str],
        expires_at_millis: int,
        idempotency_key: str,
        description: str = "",
    ) -> CreatedPayment:
        """Create a provider-side payment request."""

    @abstractmethod
    def get_status(self, provider_reference: str) -> GatewayPayment:
        """Fetch the authoritative state of a payment."""

    def close(self) -> None:
        """Release client resources."""


class MercadoPagoGateway(PaymentGateway):
    """Mercado Pago PIX payments over the REST API."""

    def __init__(self, config: GatewayConfig, client: Optional[httpx.Client] = None):
        """Initialize the gateway.

        Args:
            config: Gateway configuration (token, base URL, timeout)
            client: Pre-built httpx client (tests inject a MockTransport client)
        """
        self._config = config
        self._client = client or httpx.Client(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    def _headers(self, idempotency_key: Optional[str] = None) -> dict[str, str]:
        if not self._config.access_token:
            raise GatewayError("Mercado Pago access token is not set in configuration.")
        headers = {"Authorization": f"Bearer {self._config.access_token}"}
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientGatewayError(f"Mercado Pago timeout on {path}") from e
        except httpx.TransportError as e:
            raise TransientGatewayError(f"Mercado Pago unreachable on {path}: {e}") from e

        if response.status_code == 404:
            raise PaymentReferenceNotFoundError(f"Mercado Pago has no resource at {path}")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientGatewayError(
                f"Mercado Pago returned {response.status_code} on {path}"
            )
        if response.status_code >= 400:
            # keep body as text to avoid json decode surprises
            raise GatewayError(
                f"Mercado Pago returned {response.status_code} on {path}: {response.text}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise TransientGatewayError(f"Mercado Pago returned a non-JSON body on {path}") from e

    def create_intent(
        self,
        amount: Decimal,
        metadata: dict[str, str],
        expires_at_millis: int,
        idempotency_key: str,
        description: str = "",
    ) -> CreatedPayment:
        subject_id = metadata.get("subject_id", "unknown")
        body: dict[str, Any] = {
            "transaction_amount": float(format_amount(amount)),
            "payment_method_id": "pix",
            "description": description or f"VIP access ({metadata.get('plan_kind', '')})",
            "external_reference": idempotency_key,
            "date_of_expiration": millis_to_iso(expires_at_millis),
            "metadata": metadata,
            "payer": {"email": f"subject-{subject_id}@{self._config.payer_email_domain}"},
        }
        if self._config.notification_url:
            body["notification_url"] = self._config.notification_url

        data = self._request(
            "POST",
            "/v1/payments",
            json=body,
            headers=self._headers(idempotency_key),
        )

        transaction_data = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        payment_code = transaction_data.get("qr_code")
        if data.get("id") is None or not payment_code:
            raise GatewayError("Mercado Pago response is missing the payment id or PIX code")

        logger.info(
            "gateway_payment_created",
            provider_reference=str(data["id"]),
            amount=format_amount(amount),
            subject_id=subject_id,
        )
        return CreatedPayment(
            provider_reference=str(data["id"]),
            payment_code=payment_code,
            qr_code_base64=transaction_data.get("qr_code_base64"),
        )

    def get_status(self, provider_reference: str) -> GatewayPayment:
        data = self._request(
            "GET",
            f"/v1/payments/{provider_reference}",
            headers=self._headers(),
        )

        raw_status = str(data.get("status") or "")
        status = MP_STATUS_MAP.get(raw_status, GatewayStatus.PENDING)
        try:
            amount = parse_amount(data.get("transaction_amount"))
        except InvalidAmountError as e:
            raise GatewayError(
                f"Mercado Pago payment {provider_reference} has no usable amount"
            ) from e

        metadata = {str(k): str(v) for k, v in (data.get("metadata") or {}).items()}
        logger.debug(
            "gateway_status_fetched",
            provider_reference=provider_reference,
            raw_status=raw_status,
            status=status.value,
        )
        return GatewayPayment(
            provider_reference=str(provider_reference),
            status=status,
            amount=amount,
            metadata=metadata,
            raw_status=raw_status,
        )

    def close(self) -> None:
        self._client.close()


# Global gateway instance
_gateway_instance: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Get global payment gateway instance (singleton)."""
    global _gateway_instance
    if _gateway_instance is None:
        from vip_gate.config import get_config

        _gateway_instance = MercadoPagoGateway(get_config().gateway)
    return _gateway_instance

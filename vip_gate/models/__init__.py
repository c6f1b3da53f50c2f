"""Pydantic models for domain records, configuration and API payloads."""

# Domain records
from .identity import (
    AccessState,
    PlanKind,
    Identity,
    PURCHASABLE_PLANS,
)
from .intent import (
    IntentStatus,
    PaymentIntent,
    IntentHandle,
    ReviewCase,
)
from .settings import (
    MessageTemplates,
    Settings,
)

# Gateway data
from .gateway import (
    GatewayStatus,
    CreatedPayment,
    GatewayPayment,
)

# Engine results
from .results import (
    ReconcileOutcome,
    ReconcileResult,
    PaymentCheckStatus,
    PaymentCheck,
    SweepFailure,
    SweepReport,
)

# Configuration
from .app_config import (
    AppConfig,
    BootstrapSettings,
    DatabaseConfig,
    EngineConfig,
    GatewayConfig,
    TelegramConfig,
)

# API payloads
from .api_request import (
    PurchaseRequest,
    SweepRequest,
    SettingsResponse,
    WebhookAck,
)

__all__ = [
    # Domain records
    "AccessState",
    "PlanKind",
    "Identity",
    "PURCHASABLE_PLANS",
    "IntentStatus",
    "PaymentIntent",
    "IntentHandle",
    "ReviewCase",
    "MessageTemplates",
    "Settings",
    # Gateway
    "GatewayStatus",
    "CreatedPayment",
    "GatewayPayment",
    # Results
    "ReconcileOutcome",
    "ReconcileResult",
    "PaymentCheckStatus",
    "PaymentCheck",
    "SweepFailure",
    "SweepReport",
    # Configuration
    "AppConfig",
    "BootstrapSettings",
    "DatabaseConfig",
    "EngineConfig",
    "GatewayConfig",
    "TelegramConfig",
    # API payloads
    "PurchaseRequest",
    "SweepRequest",
    "SettingsResponse",
    "WebhookAck",
]

"""Deployment configuration models loaded from vip_gate.yaml."""

from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from vip_gate.models.settings import MessageTemplates


class DatabaseConfig(BaseModel):
    """Ledger store connection settings."""

    url: str = Field(default="sqlite:///./vip_gate.db", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Echo SQL statements")


class GatewayConfig(BaseModel):
    """Mercado Pago payment gateway settings."""

    base_url: str = Field(default="https://api.mercadopago.com")
    access_token: str = Field(default="", description="Mercado Pago access token")
    webhook_secret: Optional[str] = Field(None, description="Secret for x-signature verification")
    notification_url: Optional[str] = Field(None, description="Public URL of /payments/webhook")
    payer_email_domain: str = Field(
        default="example.com", description="Domain used to synthesize payer emails"
    )
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")


class TelegramConfig(BaseModel):
    """Telegram Bot API settings."""

    base_url: str = Field(default="https://api.telegram.org")
    bot_token: str = Field(default="", description="Bot token from BotFather")
    webhook_secret: Optional[str] = Field(
        None, description="Expected X-Telegram-Bot-Api-Secret-Token header"
    )
    timeout_seconds: float = Field(default=10.0, gt=0)


class EngineConfig(BaseModel):
    """Subscription engine behavior."""

    intent_ttl_minutes: int = Field(default=30, gt=0, description="Payment window length")
    sweep_interval_minutes: float = Field(default=10, gt=0, description="Sweep timer interval")
    sweep_enabled: bool = Field(default=True, description="Run the periodic sweep thread")
    retain_expired_intents: bool = Field(
        default=False, description="Keep expired intents instead of deleting them"
    )
    gate_retry_attempts: int = Field(default=3, ge=1, description="Admit/expel attempts")
    gate_retry_base_delay_seconds: float = Field(default=0.5, ge=0)
    gate_retry_max_delay_seconds: float = Field(default=5.0, ge=0)


class BootstrapSettings(BaseModel):
    """Settings seeded into the ledger when none exist yet."""

    group_id: str
    recurring_price: Optional[Decimal] = None
    perpetual_price: Optional[Decimal] = None
    recurring_duration_days: int = Field(default=30, gt=0)
    currency: str = "BRL"
    templates: MessageTemplates = Field(default_factory=MessageTemplates)

    @field_validator("group_id", mode="before")
    @classmethod
    def _group_id_as_str(cls, value):
        return str(value) if isinstance(value, int) else value


class AppConfig(BaseModel):
    """Complete vip_gate.yaml configuration."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    admins: list[Union[int, str]] = Field(default_factory=list, description="Subject ids allowed to run /setup")
    bootstrap_settings: Optional[BootstrapSettings] = None

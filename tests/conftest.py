"""Shared fixtures: in-memory ledger, fake payment gateway, recording access gate."""

import itertools
import threading
from decimal import Decimal
from typing import Optional

import pytest

from vip_gate.models.app_config import EngineConfig
from vip_gate.models.gateway import CreatedPayment, GatewayPayment, GatewayStatus
from vip_gate.models.settings import Settings
from vip_gate.repositories.database import Database
from vip_gate.repositories.ledger import Ledger
from vip_gate.services.access_gate import AccessGate, AccessGateError, TransientAccessGateError
from vip_gate.services.payment_gateway import (
    PaymentGateway,
    PaymentReferenceNotFoundError,
    TransientGatewayError,
)
from vip_gate.services.subscription_engine import SubscriptionEngine

T0 = 1_700_000_000_000
GROUP_ID = "-1001234567890"


class FakeClock:
    """Settable clock returning Unix millis."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


class FakeGateway(PaymentGateway):
    """In-memory payment provider. Payments start PENDING until approved."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1001)
        self.payments: dict[str, GatewayPayment] = {}
        self.created: list[dict] = []
        self.status_calls: list[str] = []
        self.transient_failures = 0

    def create_intent(self, amount, metadata, expires_at_millis, idempotency_key, description=""):
        with self._lock:
            reference = str(next(self._ids))
            self.payments[reference] = GatewayPayment(
                provider_reference=reference,
                status=GatewayStatus.PENDING,
                amount=amount,
                metadata=dict(metadata),
            )
            self.created.append(
                {
                    "amount": amount,
                    "metadata": dict(metadata),
                    "expires_at_millis": expires_at_millis,
                    "idempotency_key": idempotency_key,
                }
            )
        return CreatedPayment(
            provider_reference=reference,
            payment_code=f"00020126pix{reference}",
            qr_code_base64="iVBORw0KGgo=",
        )

    def get_status(self, provider_reference):
        with self._lock:
            self.status_calls.append(provider_reference)
            if self.transient_failures > 0:
                self.transient_failures -= 1
                raise TransientGatewayError("provider timeout")
            payment = self.payments.get(provider_reference)
        if payment is None:
            raise PaymentReferenceNotFoundError(provider_reference)
        return payment.model_copy()

    def approve(self, provider_reference: str, amount: Optional[Decimal] = None) -> None:
        self.set_status(provider_reference, GatewayStatus.APPROVED, amount)

    def set_status(
        self,
        provider_reference: str,
        status: GatewayStatus,
        amount: Optional[Decimal] = None,
    ) -> None:
        with self._lock:
            payment = self.payments[provider_reference]
            payment.status = status
            if amount is not None:
                payment.amount = amount


class RecordingGate(AccessGate):
    """Access gate that records calls and can be told to fail."""

    def __init__(self):
        self._lock = threading.Lock()
        self.admitted: list[tuple[str, str]] = []
        self.expelled: list[tuple[str, str]] = []
        self.messages: list[tuple[str, str, Optional[list]]] = []
        self.admit_failures = 0  # transient failures before admit succeeds
        self.expel_failures = 0
        self.notify_fails = False
        self.on_expel = None
        self.broken_subjects: set[str] = set()  # admit/expel raise a non-gate error

    def admit(self, group_id, subject_id):
        with self._lock:
            if subject_id in self.broken_subjects:
                raise RuntimeError(f"cannot address subject {subject_id}")
            if self.admit_failures > 0:
                self.admit_failures -= 1
                raise TransientAccessGateError("telegram 502")
            self.admitted.append((group_id, subject_id))

    def expel(self, group_id, subject_id):
        with self._lock:
            if subject_id in self.broken_subjects:
                raise RuntimeError(f"cannot address subject {subject_id}")
            if self.expel_failures > 0:
                self.expel_failures -= 1
                raise TransientAccessGateError("telegram 502")
            self.expelled.append((group_id, subject_id))
        if self.on_expel is not None:
            self.on_expel(subject_id)

    def notify(self, subject_id, text, buttons=None):
        if self.notify_fails:
            raise AccessGateError("bot was blocked by the user")
        with self._lock:
            self.messages.append((subject_id, text, buttons))

    def texts_for(self, subject_id: str) -> list[str]:
        return [text for sid, text, _ in self.messages if sid == subject_id]


@pytest.fixture
def database():
    """Fresh in-memory ledger database."""
    db = Database("sqlite://")
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def ledger(database):
    return Ledger(database.session_factory)


@pytest.fixture
def settings(ledger):
    """Configured settings: recurring 30.00 for 30 days, perpetual 150.00."""
    return ledger.settings.save(
        Settings(
            group_id=GROUP_ID,
            recurring_price=Decimal("30.00"),
            perpetual_price=Decimal("150.00"),
            recurring_duration_days=30,
        )
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def gate():
    return RecordingGate()


@pytest.fixture
def engine_config():
    return EngineConfig(
        intent_ttl_minutes=30,
        gate_retry_attempts=3,
        gate_retry_base_delay_seconds=0.01,
        gate_retry_max_delay_seconds=0.05,
    )


@pytest.fixture
def engine(ledger, gateway, gate, engine_config, clock):
    """Subscription engine wired to the in-memory doubles; retries do not sleep."""
    return SubscriptionEngine(
        ledger=ledger,
        gateway=gateway,
        gate=gate,
        engine_config=engine_config,
        clock=clock,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def client(database, ledger, engine):
    """TestClient wired to the in-memory engine; the lifespan is not run."""
    from fastapi.testclient import TestClient

    from vip_gate.api.telegram import get_telegram_secret
    from vip_gate.api.webhooks import get_webhook_secret
    from vip_gate.main import create_app
    from vip_gate.repositories.database import set_database
    from vip_gate.repositories.ledger import reset_ledger
    from vip_gate.services.bot_dispatcher import BotDispatcher, get_bot_dispatcher
    from vip_gate.services.subscription_engine import get_subscription_engine

    set_database(database)
    reset_ledger()

    app = create_app()
    dispatcher = BotDispatcher(engine=engine, admin_ids=[])
    app.dependency_overrides[get_subscription_engine] = lambda: engine
    app.dependency_overrides[get_bot_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_webhook_secret] = lambda: None
    app.dependency_overrides[get_telegram_secret] = lambda: None

    yield TestClient(app)

    set_database(None)
    reset_ledger()

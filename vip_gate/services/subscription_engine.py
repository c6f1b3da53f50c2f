"""Subscription lifecycle engine.

Responsibilities:
- Create payment intents for a subject and plan
- Reconcile provider notifications into access grants, exactly once
- Reject approvals whose amount differs from the recorded price
- Sweep stale payment intents and lapsed recurring grants
- Drive the access gate (admit/expel with retry, best-effort notify)

Correctness under concurrency comes from conditional updates in the ledger,
never from locks held here.
"""

import threading
from typing import Callable, Optional

from vip_gate.logging_config import get_logger
from vip_gate.models.app_config import EngineConfig
from vip_gate.models.gateway import GatewayStatus
from vip_gate.models.identity import AccessState, Identity, PlanKind, PURCHASABLE_PLANS
from vip_gate.models.intent import IntentHandle, IntentStatus, PaymentIntent, ReviewCase
from vip_gate.models.results import (
    PaymentCheck,
    PaymentCheckStatus,
    ReconcileOutcome,
    ReconcileResult,
    SweepFailure,
    SweepReport,
)
from vip_gate.models.settings import Settings
from vip_gate.repositories.ledger import Ledger, get_ledger
from vip_gate.services.access_gate import (
    AccessGate,
    Buttons,
    TransientAccessGateError,
    get_access_gate,
)
from vip_gate.services.payment_gateway import (
    PaymentGateway,
    PaymentReferenceNotFoundError,
    get_payment_gateway,
)
from vip_gate.state_logger import (
    log_access_state_change,
    log_intent_status_change,
    log_revenue_increment,
)
from vip_gate.utils.clock import days_to_millis, millis_to_iso, minutes_to_millis, now_millis
from vip_gate.utils.money import format_amount
from vip_gate.utils.references import generate_intent_id
from vip_gate.utils.retry import retry_call

logger = get_logger(__name__)


class SubscriptionError(Exception):
    """Base exception for subscription errors."""

    pass


class NotConfiguredError(SubscriptionError):
    """Raised when settings are missing or the requested plan has no price."""

    pass


class InvalidPlanError(SubscriptionError, ValueError):
    """Raised when a plan kind cannot be purchased."""

    pass


class SubscriptionEngine:
    """Reconciliation state machine between payments and group access.

    Holds no per-request state, so one instance can serve every webhook call
    and the sweep thread at once.
    """

    def __init__(
        self,
        ledger: Optional[Ledger] = None,
        gateway: Optional[PaymentGateway] = None,
        gate: Optional[AccessGate] = None,
        engine_config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], int]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize subscription engine.

        Args:
            ledger: Record stores (defaults to global instance)
            gateway: Payment gateway (defaults to global instance)
            gate: Access gate (defaults to global instance)
            engine_config: Timing and retry settings (defaults to loaded config)
            clock: Returns the current time in Unix millis
            sleep: Used between gate retries (defaults to time.sleep)
        """
        self.ledger = ledger or get_ledger()
        self.gateway = gateway or get_payment_gateway()
        self.gate = gate or get_access_gate()
        if engine_config is None:
            from vip_gate.config import get_config

            engine_config = get_config().engine
        self.engine_config = engine_config
        self._clock = clock or now_millis
        self._sleep = sleep

        logger.info("subscription_engine_initialized")

    # ------------------------------------------------------------------
    # Identities and reads
    # ------------------------------------------------------------------

    def ensure_identity(self, subject_id: str, display_name: Optional[str] = None) -> Identity:
        """Return the subject's identity, creating an inactive one on first contact."""
        return self.ledger.identities.ensure(subject_id, display_name)

    def get_identity(self, subject_id: str) -> Optional[Identity]:
        return self.ledger.identities.find(subject_id)

    def get_settings(self) -> Optional[Settings]:
        return self.ledger.settings.get()

    def save_settings(self, settings: Settings) -> Settings:
        """Replace the configurable settings. The revenue total is preserved."""
        return self.ledger.settings.save(settings)

    def list_review_cases(self) -> list[ReviewCase]:
        return self.ledger.intents.list_review_cases()

    def count_active(self) -> int:
        return self.ledger.identities.count_by_state(AccessState.ACTIVE)

    def _require_settings(self) -> Settings:
        settings = self.ledger.settings.get()
        if settings is None:
            raise NotConfiguredError("Subscription settings have not been configured")
        return settings

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    def request_purchase(
        self,
        subject_id: str,
        plan_kind: PlanKind,
        display_name: Optional[str] = None,
    ) -> IntentHandle:
        """Create a payment intent for a subject.

        Args:
            subject_id: Purchasing subject
            plan_kind: RECURRING or PERPETUAL
            display_name: Name recorded if the identity is new

        Returns:
            IntentHandle with the payment code to show the subject

        Raises:
            InvalidPlanError: If plan_kind is not purchasable
            NotConfiguredError: If settings are missing or the plan has no price
            TransientGatewayError: If the provider could not be reached
        """
        if plan_kind not in PURCHASABLE_PLANS:
            raise InvalidPlanError(f"Plan kind {plan_kind.value} cannot be purchased")

        settings = self._require_settings()
        amount = settings.price_for(plan_kind)
        if amount is None:
            raise NotConfiguredError(f"No price configured for the {plan_kind.value} plan")

        self.ensure_identity(subject_id, display_name)

        created_at = self._clock()
        expires_at = created_at + minutes_to_millis(self.engine_config.intent_ttl_minutes)
        intent_id = generate_intent_id()

        created = self.gateway.create_intent(
            amount=amount,
            metadata={
                "subject_id": subject_id,
                "plan_kind": plan_kind.value,
                "intent_id": intent_id,
            },
            expires_at_millis=expires_at,
            idempotency_key=intent_id,
        )

        intent = PaymentIntent(
            intent_id=intent_id,
            subject_id=subject_id,
            plan_kind=plan_kind,
            amount=amount,
            provider_reference=created.provider_reference,
            status=IntentStatus.PENDING,
            created_at_millis=created_at,
            expires_at_millis=expires_at,
        )
        self.ledger.intents.add(intent)

        logger.info(
            "intent_created",
            intent_id=intent_id,
            provider_reference=created.provider_reference,
            subject_id=subject_id,
            plan_kind=plan_kind.value,
            amount=format_amount(amount),
            expires_at_millis=expires_at,
        )

        return IntentHandle(
            intent_id=intent_id,
            provider_reference=created.provider_reference,
            plan_kind=plan_kind,
            amount=amount,
            currency=settings.currency,
            expires_at_millis=expires_at,
            payment_code=created.payment_code,
            qr_code_base64=created.qr_code_base64,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_notification(self, provider_reference: str) -> ReconcileResult:
        """Apply a provider notification, at most once per reference.

        The notification is only a pointer: status and amount are re-fetched
        from the gateway.

        Raises:
            NotConfiguredError: If settings are missing when a grant is due
            TransientGatewayError: If the provider could not be reached
            TransientStoreError: If the ledger is unavailable
        """
        try:
            payment = self.gateway.get_status(provider_reference)
        except PaymentReferenceNotFoundError:
            logger.warning("reconcile_unknown_reference", provider_reference=provider_reference)
            return ReconcileResult(
                outcome=ReconcileOutcome.NOT_FOUND,
                provider_reference=provider_reference,
            )

        if payment.status != GatewayStatus.APPROVED:
            logger.info(
                "reconcile_not_approved",
                provider_reference=provider_reference,
                gateway_status=payment.status.value,
            )
            return ReconcileResult(
                outcome=ReconcileOutcome.NOT_YET_APPROVED,
                provider_reference=provider_reference,
                gateway_status=payment.status,
            )

        intent = self.ledger.intents.find_by_reference(provider_reference)
        if intent is None or intent.status == IntentStatus.EXPIRED:
            logger.warning(
                "reconcile_intent_missing",
                provider_reference=provider_reference,
                intent_status=intent.status.value if intent else None,
            )
            return ReconcileResult(
                outcome=ReconcileOutcome.NOT_FOUND,
                provider_reference=provider_reference,
                gateway_status=payment.status,
            )

        result = ReconcileResult(
            outcome=ReconcileOutcome.ALREADY_APPLIED,
            provider_reference=provider_reference,
            subject_id=intent.subject_id,
            plan_kind=intent.plan_kind,
            amount=intent.amount,
            gateway_status=payment.status,
        )
        if intent.status == IntentStatus.APPROVED:
            logger.debug("reconcile_already_applied", provider_reference=provider_reference)
            return result

        if payment.amount != intent.amount:
            recorded = self.ledger.intents.record_review_case(
                ReviewCase(
                    provider_reference=provider_reference,
                    subject_id=intent.subject_id,
                    expected_amount=intent.amount,
                    reported_amount=payment.amount,
                    created_at_millis=self._clock(),
                )
            )
            logger.warning(
                "reconcile_amount_mismatch",
                provider_reference=provider_reference,
                subject_id=intent.subject_id,
                expected_amount=format_amount(intent.amount),
                reported_amount=str(payment.amount),
                review_case_recorded=recorded,
            )
            result.outcome = ReconcileOutcome.AMOUNT_MISMATCH
            return result

        settings = self._require_settings()
        self.ensure_identity(intent.subject_id)
        before = self.ledger.identities.get(intent.subject_id)

        now = self._clock()
        expires_at = None
        if intent.plan_kind == PlanKind.RECURRING:
            expires_at = now + days_to_millis(settings.recurring_duration_days)

        settlement = self.ledger.settle_approval(
            provider_reference=provider_reference,
            subject_id=intent.subject_id,
            plan_kind=intent.plan_kind,
            amount=intent.amount,
            approved_at_millis=now,
            expires_at_millis=expires_at,
        )
        if not settlement.won:
            logger.info("reconcile_lost_race", provider_reference=provider_reference)
            return result

        log_intent_status_change(
            provider_reference,
            intent.subject_id,
            IntentStatus.PENDING.value,
            IntentStatus.APPROVED.value,
            reason="payment_approved",
        )
        log_revenue_increment(provider_reference, intent.amount, subject_id=intent.subject_id)

        granted = settlement.grant.identity
        if settlement.grant.applied:
            log_access_state_change(
                intent.subject_id,
                before.access_state.value,
                granted.access_state.value,
                reason="payment_approved",
                plan_kind=granted.plan_kind.value,
                expires_at_millis=granted.expires_at_millis,
            )
        else:
            logger.info(
                "perpetual_grant_retained",
                subject_id=intent.subject_id,
                provider_reference=provider_reference,
                purchased_plan=intent.plan_kind.value,
            )

        admitted = self._admit(settings.group_id, intent.subject_id)
        self._notify(
            intent.subject_id,
            settings.templates.render(
                "approved",
                plan=intent.plan_kind.value,
                amount=format_amount(intent.amount),
                currency=settings.currency,
                expires=millis_to_iso(granted.expires_at_millis) if granted.expires_at_millis else "",
            ),
        )

        result.outcome = ReconcileOutcome.APPLIED
        result.expires_at_millis = granted.expires_at_millis
        result.admitted = admitted
        return result

    def check_pending(self, subject_id: str) -> PaymentCheck:
        """Re-check the subject's latest pending payment with the provider.

        Runs the full reconciliation, so a lost webhook is recovered here.
        """
        pending = self.ledger.intents.latest_pending_for(subject_id)
        if pending is None:
            return PaymentCheck(subject_id=subject_id, status=PaymentCheckStatus.NO_PENDING)

        result = self.reconcile_notification(pending.provider_reference)
        if result.outcome in (ReconcileOutcome.APPLIED, ReconcileOutcome.ALREADY_APPLIED):
            status = PaymentCheckStatus.APPROVED
        elif result.outcome == ReconcileOutcome.AMOUNT_MISMATCH:
            status = PaymentCheckStatus.REJECTED
        elif result.outcome == ReconcileOutcome.NOT_YET_APPROVED:
            if result.gateway_status in (GatewayStatus.REJECTED, GatewayStatus.CANCELLED):
                status = PaymentCheckStatus.REJECTED
            else:
                status = PaymentCheckStatus.PENDING
        else:
            status = PaymentCheckStatus.NO_PENDING

        logger.info(
            "payment_checked",
            subject_id=subject_id,
            provider_reference=pending.provider_reference,
            status=status.value,
        )
        return PaymentCheck(subject_id=subject_id, status=status, reconcile=result)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep(self, now_millis: Optional[int] = None) -> SweepReport:
        """Expire stale intents, expel lapsed recurring grants, retry pending admits.

        One failing record never stops the rest; failures are listed in the report.
        """
        now = now_millis if now_millis is not None else self._clock()
        report = SweepReport(now_millis=now)

        self._sweep_stale_intents(now, report)

        settings = self.ledger.settings.get()
        if settings is None:
            logger.warning("sweep_grants_skipped", reason="settings_missing")
        else:
            self._sweep_lapsed_grants(settings, now, report)
            self._sweep_pending_admits(settings, report)

        logger.info(
            "sweep_completed",
            now_millis=now,
            expired_intents=len(report.expired_intents),
            expelled=len(report.expelled_subjects),
            renewed_during_sweep=len(report.renewed_during_sweep),
            readmitted=len(report.readmitted_subjects),
            failures=len(report.failures),
        )
        return report

    def _sweep_stale_intents(self, now: int, report: SweepReport) -> None:
        for intent in self.ledger.intents.list_stale(now):
            try:
                if not self.ledger.intents.expire_if_stale(intent.provider_reference, now):
                    continue
                log_intent_status_change(
                    intent.provider_reference,
                    intent.subject_id,
                    IntentStatus.PENDING.value,
                    IntentStatus.EXPIRED.value,
                    reason="payment_window_closed",
                )
                report.expired_intents.append(intent.provider_reference)
                if not self.engine_config.retain_expired_intents:
                    self.ledger.intents.purge_expired(intent.provider_reference)
            except Exception as e:
                self._record_failure(report, intent.subject_id, "expire", e)

    def _sweep_lapsed_grants(self, settings: Settings, now: int, report: SweepReport) -> None:
        for identity in self.ledger.identities.list_lapsed(now):
            subject_id = identity.subject_id
            try:
                self._expel(settings.group_id, subject_id)
            except Exception as e:
                # still active, the next sweep tries again
                self._record_failure(report, subject_id, "expel", e)
                continue

            try:
                revoked = self.ledger.identities.revoke_if_lapsed(subject_id, now)
                current = None if revoked else self.ledger.identities.find(subject_id)
            except Exception as e:
                self._record_failure(report, subject_id, "revoke", e)
                continue

            if revoked:
                log_access_state_change(
                    subject_id,
                    AccessState.ACTIVE.value,
                    AccessState.INACTIVE.value,
                    reason="grant_expired",
                    plan_kind=identity.plan_kind.value,
                    expires_at_millis=identity.expires_at_millis,
                )
                report.expelled_subjects.append(subject_id)
                self._notify(
                    subject_id,
                    settings.templates.render("expired", currency=settings.currency),
                )
                continue

            if current is not None and current.is_active and not current.is_lapsed(now):
                # renewed between listing and revoke; undo the expel
                logger.info("grant_renewed_during_sweep", subject_id=subject_id)
                report.renewed_during_sweep.append(subject_id)
                if self._admit(settings.group_id, subject_id):
                    continue
                try:
                    self.ledger.identities.mark_admit_pending(subject_id)
                except Exception as e:
                    self._record_failure(report, subject_id, "admit", e)
                    continue
                report.failures.append(
                    SweepFailure(subject_id=subject_id, stage="admit", error="re-admit failed")
                )

    def _sweep_pending_admits(self, settings: Settings, report: SweepReport) -> None:
        for identity in self.ledger.identities.list_pending_admits():
            if self._admit(settings.group_id, identity.subject_id):
                report.readmitted_subjects.append(identity.subject_id)
            else:
                report.failures.append(
                    SweepFailure(subject_id=identity.subject_id, stage="admit", error="admit failed")
                )

    def _record_failure(
        self, report: SweepReport, subject_id: str, stage: str, error: Exception
    ) -> None:
        logger.error(
            "sweep_step_failed",
            subject_id=subject_id,
            stage=stage,
            error_type=type(error).__name__,
            error=str(error),
        )
        report.failures.append(SweepFailure(subject_id=subject_id, stage=stage, error=str(error)))

    # ------------------------------------------------------------------
    # Access gate
    # ------------------------------------------------------------------

    def _with_retry(self, func: Callable[[], None], operation: str) -> None:
        retry_call(
            func,
            attempts=self.engine_config.gate_retry_attempts,
            base_delay=self.engine_config.gate_retry_base_delay_seconds,
            max_delay=self.engine_config.gate_retry_max_delay_seconds,
            retry_on=(TransientAccessGateError,),
            operation=operation,
            sleep=self._sleep,
        )

    def _admit(self, group_id: str, subject_id: str) -> bool:
        """Admit with retry and clear admit_pending.

        Runs after the grant has committed, so it never raises: False leaves
        admit_pending set for the sweep.
        """
        try:
            self._with_retry(lambda: self.gate.admit(group_id, subject_id), "admit")
            self.ledger.identities.mark_admitted(subject_id)
        except Exception as e:
            logger.error(
                "admit_failed",
                subject_id=subject_id,
                group_id=group_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        return True

    def _expel(self, group_id: str, subject_id: str) -> None:
        self._with_retry(lambda: self.gate.expel(group_id, subject_id), "expel")

    def _notify(self, subject_id: str, text: str, buttons: Optional[Buttons] = None) -> None:
        try:
            self.gate.notify(subject_id, text, buttons)
        except Exception as e:
            logger.warning(
                "notify_failed",
                subject_id=subject_id,
                error_type=type(e).__name__,
                error=str(e),
            )


# Global engine instance
_engine_instance: Optional[SubscriptionEngine] = None
_engine_lock = threading.Lock()


def get_subscription_engine() -> SubscriptionEngine:
    """Get global subscription engine instance (singleton)."""
    global _engine_instance
    if _engine_instance is None:
        with _engine_lock:
            if _engine_instance is None:
                _engine_instance = SubscriptionEngine()
    return _engine_instance


def set_subscription_engine(engine: Optional[SubscriptionEngine]) -> None:
    """Replace the global engine instance (tests, app bootstrap)."""
    global _engine_instance
    with _engine_lock:
        _engine_instance = engine

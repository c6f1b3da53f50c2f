"""Integration tests for complete membership lifecycle scenarios."""

from decimal import Decimal

import pytest

from tests.conftest import GROUP_ID
from vip_gate.models.identity import AccessState, PlanKind
from vip_gate.models.results import ReconcileOutcome
from vip_gate.utils.clock import days_to_millis, minutes_to_millis

DAY = days_to_millis(1)


@pytest.fixture
def full_system(engine, ledger, gateway, gate, clock, settings):
    """Complete backend system."""
    return {
        "engine": engine,
        "ledger": ledger,
        "gateway": gateway,
        "gate": gate,
        "clock": clock,
    }


def buy(system, subject_id, plan_kind):
    handle = system["engine"].request_purchase(subject_id, plan_kind)
    system["gateway"].approve(handle.provider_reference)
    return system["engine"].reconcile_notification(handle.provider_reference)


class TestRecurringLifecycle:
    """Purchase, renewal, lapse and re-purchase."""

    def test_subscribe_renew_lapse_return(self, full_system):
        engine, ledger, gate, clock = (
            full_system["engine"],
            full_system["ledger"],
            full_system["gate"],
            full_system["clock"],
        )

        # Day 0: first purchase
        first = buy(full_system, "42", PlanKind.RECURRING)
        assert first.outcome == ReconcileOutcome.APPLIED
        first_expiry = first.expires_at_millis

        # Day 20: renewal restarts the period from now
        clock.advance(20 * DAY)
        renewal = buy(full_system, "42", PlanKind.RECURRING)
        assert renewal.expires_at_millis == clock.now + 30 * DAY

        # Old expiry passes without an expulsion
        clock.now = first_expiry
        report = engine.sweep()
        assert report.expelled_subjects == []
        assert ledger.identities.get("42").is_active

        # New expiry passes: expelled and told so
        clock.now = renewal.expires_at_millis
        report = engine.sweep()
        assert report.expelled_subjects == ["42"]
        identity = ledger.identities.get("42")
        assert identity.access_state == AccessState.INACTIVE
        assert gate.expelled == [(GROUP_ID, "42")]
        assert gate.texts_for("42")[-1].startswith("Your plan has expired")

        # Comes back later
        clock.advance(5 * DAY)
        back = buy(full_system, "42", PlanKind.RECURRING)
        assert back.outcome == ReconcileOutcome.APPLIED
        assert ledger.identities.get("42").is_active
        assert gate.admitted.count((GROUP_ID, "42")) == 3
        assert ledger.settings.revenue_total() == Decimal("90.00")


class TestPerpetualLifecycle:
    def test_upgrade_to_perpetual_is_never_swept(self, full_system):
        engine, ledger, gate, clock = (
            full_system["engine"],
            full_system["ledger"],
            full_system["gate"],
            full_system["clock"],
        )
        buy(full_system, "42", PlanKind.RECURRING)
        clock.advance(10 * DAY)
        buy(full_system, "42", PlanKind.PERPETUAL)

        for _ in range(12):
            clock.advance(30 * DAY)
            engine.sweep()

        identity = ledger.identities.get("42")
        assert identity.plan_kind == PlanKind.PERPETUAL
        assert identity.expires_at_millis is None
        assert gate.expelled == []
        assert ledger.settings.revenue_total() == Decimal("180.00")


class TestAbandonedPayments:
    def test_unpaid_intent_expires_and_late_approval_is_not_found(self, full_system):
        engine, ledger, gateway, clock = (
            full_system["engine"],
            full_system["ledger"],
            full_system["gateway"],
            full_system["clock"],
        )
        handle = engine.request_purchase("42", PlanKind.RECURRING)

        clock.advance(minutes_to_millis(30))
        report = engine.sweep()
        assert report.expired_intents == [handle.provider_reference]
        assert ledger.intents.find_by_reference(handle.provider_reference) is None

        gateway.approve(handle.provider_reference)
        result = engine.reconcile_notification(handle.provider_reference)

        assert result.outcome == ReconcileOutcome.NOT_FOUND
        assert not ledger.identities.get("42").is_active
        assert ledger.settings.revenue_total() == Decimal("0.00")


class TestManySubscribers:
    def test_staggered_expiries(self, full_system):
        engine, ledger, clock = full_system["engine"], full_system["ledger"], full_system["clock"]
        for subject in ("1", "2", "3"):
            buy(full_system, subject, PlanKind.RECURRING)
            clock.advance(DAY)

        clock.now = ledger.identities.get("2").expires_at_millis
        report = engine.sweep()

        assert sorted(report.expelled_subjects) == ["1", "2"]
        assert engine.count_active() == 1

"""Tests for state change logging functionality.

Identity, intent and revenue transitions are logged with before/after values.
"""

from decimal import Decimal

import pytest

from vip_gate import state_logger
from vip_gate.models.identity import AccessState
from vip_gate.models.intent import IntentStatus


class RecordingLogger:
    def __init__(self):
        self.events = []

    def info(self, event, **fields):
        self.events.append((event, fields))


@pytest.fixture
def recorded(monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(state_logger, "logger", recorder)
    return recorder.events


class TestAccessStateChanges:
    def test_grant(self, recorded):
        state_logger.log_access_state_change(
            "42",
            AccessState.INACTIVE,
            AccessState.ACTIVE,
            reason="payment_approved",
            plan_kind="recurring",
        )

        event, fields = recorded[0]
        assert event == "access_state_changed"
        assert fields["subject_id"] == "42"
        assert fields["reason"] == "payment_approved"
        assert fields["plan_kind"] == "recurring"
        assert fields["old_state"] == str(AccessState.INACTIVE)
        assert fields["new_state"] == str(AccessState.ACTIVE)

    def test_reason_is_optional(self, recorded):
        state_logger.log_access_state_change("42", "active", "inactive")

        assert recorded[0][1]["reason"] is None


class TestIntentStatusChanges:
    def test_long_references_are_shortened(self, recorded):
        reference = "9" * 32

        state_logger.log_intent_status_change(
            reference, "42", IntentStatus.PENDING, IntentStatus.APPROVED, reason="webhook"
        )

        event, fields = recorded[0]
        assert event == "intent_status_changed"
        assert fields["provider_reference"] == "9" * 20 + "..."
        assert fields["subject_id"] == "42"

    def test_short_references_kept(self, recorded):
        state_logger.log_intent_status_change("1001", "42", "pending", "expired")

        assert recorded[0][1]["provider_reference"] == "1001"


def test_revenue_increment(recorded):
    state_logger.log_revenue_increment("1001", Decimal("30.00"), revenue_total="60.00")

    event, fields = recorded[0]
    assert event == "revenue_incremented"
    assert fields["amount"] == "30.00"
    assert fields["revenue_total"] == "60.00"

"""Tests for money, time, identifier, retry and signature helpers."""

from decimal import Decimal

import pytest

from vip_gate.utils import (
    InvalidAmountError,
    compute_backoff,
    days_to_millis,
    format_amount,
    from_minor_units,
    generate_intent_id,
    millis_to_iso,
    minutes_to_millis,
    parse_amount,
    parse_price,
    retry_call,
    sign_mp_manifest,
    to_minor_units,
    verify_mp_signature,
)


class TestMoney:
    """Tests for exact amount handling."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("30", Decimal("30")),
            ("29,90", Decimal("29.90")),
            (30.1, Decimal("30.1")),
            (0, Decimal("0")),
        ],
    )
    def test_parse_amount(self, value, expected):
        assert parse_amount(value) == expected

    def test_parse_amount_keeps_sub_cent_digits(self):
        assert parse_amount(29.995) == Decimal("29.995")
        assert parse_amount(29.995) != Decimal("30.00")

    @pytest.mark.parametrize("value", ["abc", None, "-1", "NaN", "Infinity", ""])
    def test_parse_amount_rejects_invalid(self, value):
        with pytest.raises(InvalidAmountError):
            parse_amount(value)

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("30", Decimal("30.00")),
            ("19,90", Decimal("19.90")),
            (Decimal("0.005"), Decimal("0.01")),
        ],
    )
    def test_parse_price_rounds_to_cents(self, value, expected):
        assert str(parse_price(value)) == str(expected)

    def test_minor_units(self):
        assert to_minor_units(Decimal("30.00")) == 3000
        assert to_minor_units(Decimal("0.10")) == 10
        assert from_minor_units(2990) == Decimal("29.90")
        assert from_minor_units(0) == Decimal("0.00")

    def test_format_amount(self):
        assert format_amount(Decimal("30")) == "30.00"
        assert format_amount(Decimal("1.5")) == "1.50"


class TestClock:
    def test_conversions(self):
        assert minutes_to_millis(30) == 1_800_000
        assert days_to_millis(1) == 86_400_000

    def test_iso_format_has_milliseconds_and_offset(self):
        assert millis_to_iso(0) == "1970-01-01T00:00:00.000+00:00"


class TestIntentIds:
    def test_generated_ids_are_unique_and_prefixed(self):
        ids = {generate_intent_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(i.startswith("int_") and len(i) == 28 for i in ids)


class TestRetry:
    """Tests for bounded exponential backoff."""

    def test_backoff_doubles_and_caps(self):
        delays = [compute_backoff(attempt, 0.5, 3.0) for attempt in range(5)]
        assert delays == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_retries_until_success(self):
        calls = []
        sleeps = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("boom")
            return "ok"

        result = retry_call(
            flaky,
            attempts=5,
            base_delay=0.1,
            max_delay=1.0,
            retry_on=(ConnectionError,),
            operation="test",
            sleep=sleeps.append,
        )

        assert result == "ok"
        assert len(calls) == 3
        assert sleeps == [0.1, 0.2]

    def test_reraises_after_last_attempt(self):
        calls = []

        def always_fails():
            calls.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            retry_call(
                always_fails,
                attempts=3,
                base_delay=0,
                max_delay=0,
                retry_on=(ConnectionError,),
                operation="test",
                sleep=lambda s: None,
            )
        assert len(calls) == 3

    def test_does_not_retry_other_errors(self):
        calls = []

        def broken():
            calls.append(1)
            raise KeyError("permanent")

        with pytest.raises(KeyError):
            retry_call(
                broken,
                attempts=3,
                base_delay=0,
                max_delay=0,
                retry_on=(ConnectionError,),
                operation="test",
                sleep=lambda s: None,
            )
        assert len(calls) == 1


class TestSignature:
    """Tests for Mercado Pago x-signature verification."""

    def test_valid_signature(self):
        header = sign_mp_manifest(secret="s3cret", x_request_id="req-1", data_id="1001", ts="1700000000")

        assert verify_mp_signature(
            secret="s3cret", x_signature=header, x_request_id="req-1", data_id="1001"
        )

    def test_tampered_data_id(self):
        header = sign_mp_manifest(secret="s3cret", x_request_id="req-1", data_id="1001", ts="1700000000")

        assert not verify_mp_signature(
            secret="s3cret", x_signature=header, x_request_id="req-1", data_id="1002"
        )

    def test_wrong_secret(self):
        header = sign_mp_manifest(secret="s3cret", x_request_id="req-1", data_id="1001", ts="1700000000")

        assert not verify_mp_signature(
            secret="other", x_signature=header, x_request_id="req-1", data_id="1001"
        )

    def test_malformed_header(self):
        assert not verify_mp_signature(
            secret="s3cret", x_signature="garbage", x_request_id="req-1", data_id="1001"
        )

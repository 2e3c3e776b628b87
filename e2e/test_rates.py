"""Tests for network rate derivation. Pure functions, no I/O."""

from datetime import datetime, timedelta, timezone

from schemas.metric import MetricSample
from telemetry.rates import derive_network_rates, derive_rate

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_sample(rx: int | None = 1000, tx: int | None = 200, at: datetime = T0) -> MetricSample:
    return MetricSample(job_id="1", timestamp=at, network_rx_bytes=rx, network_tx_bytes=tx)


# ── derive_rate ───────────────────────────────────────────────────────────────

class TestDeriveRate:
    def test_counter_delta_over_elapsed_seconds(self):
        assert derive_rate(1000, 6000, T0, T0 + timedelta(seconds=10)) == 500.0

    def test_unchanged_counter_is_zero(self):
        assert derive_rate(1000, 1000, T0, T0 + timedelta(seconds=10)) == 0.0

    def test_counter_reset_is_zero_not_negative(self):
        assert derive_rate(6000, 1000, T0, T0 + timedelta(seconds=10)) == 0.0

    def test_equal_timestamps_is_zero(self):
        assert derive_rate(1000, 6000, T0, T0) == 0.0

    def test_earlier_timestamp_is_zero(self):
        assert derive_rate(1000, 6000, T0, T0 - timedelta(seconds=5)) == 0.0

    def test_missing_reading_is_zero(self):
        assert derive_rate(None, 6000, T0, T0 + timedelta(seconds=10)) == 0.0
        assert derive_rate(1000, None, T0, T0 + timedelta(seconds=10)) == 0.0

    def test_sub_second_interval(self):
        assert derive_rate(0, 100, T0, T0 + timedelta(milliseconds=500)) == 200.0


# ── derive_network_rates ──────────────────────────────────────────────────────

class TestDeriveNetworkRates:
    def test_first_sample_has_zero_rates(self):
        assert derive_network_rates(None, 5000, 900, T0) == (0.0, 0.0)

    def test_rx_and_tx_derived_independently(self):
        previous = make_sample(rx=1000, tx=200)
        rx, tx = derive_network_rates(previous, 6000, 200, T0 + timedelta(seconds=10))
        assert rx == 500.0
        assert tx == 0.0

    def test_previous_without_counters(self):
        previous = make_sample(rx=None, tx=None)
        assert derive_network_rates(previous, 6000, 700, T0 + timedelta(seconds=10)) == (0.0, 0.0)

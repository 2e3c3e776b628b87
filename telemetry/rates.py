"""Throughput derivation from cumulative counters.

Runners report network traffic as cumulative byte counters. A rate is only
meaningful between two samples of the same job, and only against the sample
that immediately precedes the new one in time. Picking that sample is the
ingestion service's job; this module just does the arithmetic.

No I/O. Same input always produces the same output.
"""

from datetime import datetime

from schemas.metric import MetricSample


def derive_rate(
    previous_counter: int | None,
    current_counter: int | None,
    previous_at: datetime,
    current_at: datetime,
) -> float:
    """Return the per-second rate between two readings of one counter.

    Args:
        previous_counter: Counter value on the earlier sample.
        current_counter: Counter value on the new sample.
        previous_at: Timestamp of the earlier sample.
        current_at: Timestamp of the new sample.

    Returns:
        (current - previous) / elapsed seconds. 0.0 when either reading is
        missing, when current_at is not strictly after previous_at, or when
        the counter went backwards (reset or wraparound). Never negative.
    """
    if previous_counter is None or current_counter is None:
        return 0.0

    elapsed = (current_at - previous_at).total_seconds()
    if elapsed <= 0:
        return 0.0

    delta = current_counter - previous_counter
    if delta < 0:
        return 0.0

    return delta / elapsed


def derive_network_rates(
    previous: MetricSample | None,
    rx_bytes: int | None,
    tx_bytes: int | None,
    timestamp: datetime,
) -> tuple[float, float]:
    """Return (rx_rate, tx_rate) in bytes per second for a new reading.

    Args:
        previous: The job's latest stored sample, or None for the first one.
        rx_bytes: Cumulative received bytes on the new reading.
        tx_bytes: Cumulative transmitted bytes on the new reading.
        timestamp: Timestamp of the new reading.
    """
    if previous is None:
        return 0.0, 0.0

    return (
        derive_rate(previous.network_rx_bytes, rx_bytes, previous.timestamp, timestamp),
        derive_rate(previous.network_tx_bytes, tx_bytes, previous.timestamp, timestamp),
    )

"""Tests for the delta engine."""

import pytest

from pyvmstat.delta import counter_delta, delta, rate
from pyvmstat.models import FieldPolicy, Snapshot, SourceKind

POLICIES = {
    "context_switch": FieldPolicy.COUNTER,
    "interrupt": FieldPolicy.COUNTER,
    "memory_free": FieldPolicy.GAUGE,
}


def _snapshot(taken_at: float, **values: int) -> Snapshot:
    return Snapshot(SourceKind.VMSTAT, values, taken_at=taken_at)


class TestCounterDelta:
    """Tests for counter_delta."""

    def test_increase(self):
        """Test an increasing counter yields the difference."""
        assert counter_delta(100, 250) == 150

    def test_unchanged(self):
        """Test an unchanged counter yields 0."""
        assert counter_delta(7, 7) == 0

    def test_decrease_is_reset(self):
        """Test a decreasing counter is clamped to 0."""
        assert counter_delta(1000, 10) == 0

    def test_wrap_detected_with_limit(self):
        """Test a drop from the top half into the bottom half is a wrap."""
        limit = 2**32
        assert counter_delta(limit - 10, 5, wrap_limit=limit) == 15

    def test_reset_with_limit_below_half(self):
        """Test a drop that is not from the top half is still a reset."""
        assert counter_delta(1000, 10, wrap_limit=2**32) == 0


class TestDelta:
    """Tests for delta."""

    def test_counters_differenced_gauges_copied(self):
        """Test counters are differenced while gauges keep the current value."""
        previous = _snapshot(1.0, context_switch=100, interrupt=50, memory_free=4000)
        current = _snapshot(3.0, context_switch=300, interrupt=80, memory_free=3500)

        result = delta(previous, current, POLICIES)

        assert result.values == {"context_switch": 200, "interrupt": 30, "memory_free": 3500}
        assert result.elapsed == 2.0
        assert result.kind is SourceKind.VMSTAT

    def test_reset_counter_is_zero(self):
        """Test a counter that went backwards has a delta of exactly 0."""
        previous = _snapshot(0.0, context_switch=5000, interrupt=10, memory_free=1)
        current = _snapshot(1.0, context_switch=20, interrupt=15, memory_free=1)

        result = delta(previous, current, POLICIES)

        assert result.values["context_switch"] == 0
        assert result.values["interrupt"] == 5

    def test_new_counter_is_zero(self):
        """Test a counter missing from the previous snapshot has delta 0."""
        previous = _snapshot(0.0, context_switch=1)
        current = _snapshot(1.0, context_switch=2, interrupt=999)

        result = delta(previous, current, POLICIES)

        assert result.values["interrupt"] == 0

    def test_undeclared_field_is_gauge(self):
        """Test dynamically discovered fields are copied as gauges."""
        previous = _snapshot(0.0, thermal_zone0=40000)
        current = _snapshot(1.0, thermal_zone0=39000)

        result = delta(previous, current, POLICIES)

        assert result.values["thermal_zone0"] == 39000

    def test_all_values_non_negative(self):
        """Test every delta is non-negative whatever the readings."""
        previous = _snapshot(0.0, context_switch=10, interrupt=0, memory_free=0)
        current = _snapshot(1.0, context_switch=0, interrupt=10, memory_free=5)

        result = delta(previous, current, POLICIES)

        assert all(value >= 0 for value in result.values.values())

    def test_degraded_previous_counter_is_zero(self):
        """Test a counter read after a failed read does not diff against the zero fill."""
        previous = Snapshot(
            SourceKind.VMSTAT,
            {"context_switch": 0, "interrupt": 0},
            taken_at=1.0,
            degraded=frozenset({"context_switch", "interrupt"}),
        )
        current = _snapshot(2.0, context_switch=10**9 + 200, interrupt=50)

        result = delta(previous, current, POLICIES)

        assert result.values == {"context_switch": 0, "interrupt": 0}
        assert result.degraded == frozenset()

    def test_degraded_current_counter_is_zero(self):
        """Test only the degraded fields of the current snapshot are zeroed."""
        previous = _snapshot(0.0, context_switch=100, interrupt=10)
        current = Snapshot(
            SourceKind.VMSTAT,
            {"context_switch": 0, "interrupt": 30},
            taken_at=1.0,
            degraded=frozenset({"context_switch"}),
        )

        result = delta(previous, current, POLICIES)
        rates = rate(result)

        assert result.values == {"context_switch": 0, "interrupt": 20}
        assert rates.degraded == {"context_switch"}


class TestRate:
    """Tests for rate."""

    @pytest.mark.parametrize(
        ("increase", "seconds"),
        [(0, 1.0), (100, 1.0), (100, 4.0), (12345, 0.5), (7, 3.0)],
    )
    def test_rate_is_increase_over_time(self, increase, seconds):
        """Test a counter increasing by K over T seconds has rate K/T."""
        previous = _snapshot(10.0, context_switch=1000)
        current = _snapshot(10.0 + seconds, context_switch=1000 + increase)

        result = rate(delta(previous, current, POLICIES))

        assert result.values["context_switch"] == pytest.approx(increase / seconds)

    def test_gauges_not_divided(self):
        """Test gauges pass through rate unchanged."""
        previous = _snapshot(0.0, memory_free=10)
        current = _snapshot(4.0, memory_free=2048)

        result = rate(delta(previous, current, POLICIES))

        assert result.values["memory_free"] == 2048.0

    @pytest.mark.parametrize("elapsed", [0.0, -1.0])
    def test_non_positive_elapsed_gives_zero(self, elapsed):
        """Test zero or negative elapsed time never divides."""
        previous = _snapshot(5.0, context_switch=0, memory_free=7)
        current = _snapshot(5.0 + elapsed, context_switch=500, memory_free=7)

        result = rate(delta(previous, current, POLICIES))

        assert result.values["context_switch"] == 0.0
        assert result.values["memory_free"] == 7.0

    def test_explicit_elapsed_overrides(self):
        """Test an explicit elapsed time is used instead of the snapshot one."""
        previous = _snapshot(0.0, context_switch=0)
        current = _snapshot(1.0, context_switch=100)

        result = rate(delta(previous, current, POLICIES), elapsed=4.0)

        assert result.values["context_switch"] == 25.0
        assert result.elapsed == 4.0

    def test_labels_carried(self):
        """Test labels are attached to the rate snapshot."""
        previous = _snapshot(0.0, thermal_zone0=1)
        current = _snapshot(1.0, thermal_zone0=1)

        result = rate(delta(previous, current, POLICIES), labels={"thermal_zone0": "acpitz"})

        assert result.labels == {"thermal_zone0": "acpitz"}

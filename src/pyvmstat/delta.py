"""Delta engine: turns consecutive snapshots into deltas and rates."""

from collections.abc import Mapping

from pyvmstat.models import DeltaSnapshot, FieldPolicy, RateSnapshot, Snapshot


def counter_delta(previous: int, current: int, wrap_limit: int | None = None) -> int:
    """
    Difference between two readings of a cumulative counter.

    A decrease is treated as a reset and yields 0. When wrap_limit is given,
    a decrease from the top half of the counter range into the bottom half is
    taken as a wrap instead.
    """
    if current >= previous:
        return current - previous
    if wrap_limit is not None:
        half = wrap_limit // 2
        if previous >= half and current < half:
            return wrap_limit - previous + current
    return 0


def delta(
    previous: Snapshot,
    current: Snapshot,
    policies: Mapping[str, FieldPolicy],
    wrap_limit: int | None = None,
) -> DeltaSnapshot:
    """
    Compute the per-field delta between two snapshots of one source.

    Fields without a declared policy are gauges. A counter that has no
    previous reading (a channel that just appeared) has a delta of 0, as
    does one that was degraded in either snapshot: its zero stands for an
    unknown value, not a reading.
    """
    unknown = previous.degraded | current.degraded
    values: dict[str, int] = {}
    for name, value in current.values.items():
        if policies.get(name, FieldPolicy.GAUGE) is FieldPolicy.GAUGE:
            values[name] = value
        elif name not in previous.values or name in unknown:
            values[name] = 0
        else:
            values[name] = counter_delta(previous.values[name], value, wrap_limit)

    return DeltaSnapshot(
        kind=current.kind,
        values=values,
        elapsed=current.taken_at - previous.taken_at,
        policies=dict(policies),
        degraded=current.degraded,
    )


def rate(
    snapshot: DeltaSnapshot,
    elapsed: float | None = None,
    labels: Mapping[str, str] | None = None,
) -> RateSnapshot:
    """
    Divide counter deltas by elapsed seconds. Non-positive time gives 0.

    elapsed defaults to the time between the two snapshots the delta was
    computed from.
    """
    if elapsed is None:
        elapsed = snapshot.elapsed
    values: dict[str, float] = {}
    for name, value in snapshot.values.items():
        if snapshot.policy(name) is FieldPolicy.GAUGE:
            values[name] = float(value)
        elif elapsed > 0:
            values[name] = value / elapsed
        else:
            values[name] = 0.0

    return RateSnapshot(
        kind=snapshot.kind,
        values=values,
        elapsed=elapsed,
        labels=dict(labels or {}),
        degraded=snapshot.degraded,
    )

"""Data models for pyvmstat."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from pyvmstat.errors import ConfigError

MIN_INTERVAL = 1
MAX_INTERVAL = 3600


def check_interval(name: str, value: object) -> int:
    """Validate a sampling interval: 0 (disabled) or MIN_INTERVAL..MAX_INTERVAL seconds."""
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer number of seconds, got {value!r}")
    if value != 0 and not MIN_INTERVAL <= value <= MAX_INTERVAL:
        raise ConfigError(f"{name} must be in the range {MIN_INTERVAL} to {MAX_INTERVAL}")
    return value


class SourceKind(Enum):
    """
    Families of counters that are sampled together.

    Declaration order is the order sources are processed within one wake.
    """

    VMSTAT = "vmstat"
    IOSTAT = "iostat"
    THERMAL = "therm"


class FieldPolicy(Enum):
    """How a field is turned into a per-interval value."""

    COUNTER = "counter"  # cumulative, differenced
    GAUGE = "gauge"  # instantaneous, copied


@dataclass(slots=True, frozen=True)
class SourceConfig:
    """Sampling interval of one source, in whole seconds. 0 disables it."""

    kind: SourceKind
    interval: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "interval", check_interval(self.kind.value, self.interval))

    @property
    def enabled(self) -> bool:
        return self.interval > 0


@dataclass(slots=True, frozen=True)
class Snapshot:
    """
    One timed reading of every counter of a source.

    degraded names the fields that could not be read this time and hold 0.
    """

    kind: SourceKind
    values: Mapping[str, int]
    taken_at: float  # monotonic seconds
    wall_time: float = 0.0
    degraded: frozenset[str] = frozenset()

    @classmethod
    def zeros(
        cls,
        kind: SourceKind,
        names: Iterable[str],
        taken_at: float,
        wall_time: float = 0.0,
    ) -> "Snapshot":
        """Build a degraded snapshot where every field reads 0."""
        values = dict.fromkeys(names, 0)
        return cls(kind, values, taken_at, wall_time, frozenset(values))


@dataclass(slots=True, frozen=True)
class DeltaSnapshot:
    """
    Per-field change between two snapshots of the same source.

    Counter fields hold the non-negative difference, gauge fields hold the
    current reading.
    """

    kind: SourceKind
    values: Mapping[str, int]
    elapsed: float
    policies: Mapping[str, FieldPolicy] = field(default_factory=dict)
    degraded: frozenset[str] = frozenset()

    def policy(self, name: str) -> FieldPolicy:
        return self.policies.get(name, FieldPolicy.GAUGE)


@dataclass(slots=True, frozen=True)
class RateSnapshot:
    """Counter deltas per elapsed second; gauges copied unchanged."""

    kind: SourceKind
    values: Mapping[str, float]
    elapsed: float
    labels: Mapping[str, str] = field(default_factory=dict)
    degraded: frozenset[str] = frozenset()

    def get(self, name: str, default: float = 0.0) -> float:
        return self.values.get(name, default)

    def available(self, *names: str) -> bool:
        """True if every named field was actually read this cycle."""
        return not self.degraded.intersection(names)

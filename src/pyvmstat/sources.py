"""
Counter sources.

A counter source reads one family of operating-system counters and returns
them as a Snapshot. Reads never raise: whatever cannot be read is reported
as 0. Platform variants live in pyvmstat.linux and pyvmstat.portable.
"""

import logging
import os
import stat
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping

import psutil

from pyvmstat.delta import delta, rate
from pyvmstat.models import FieldPolicy, RateSnapshot, Snapshot, SourceKind

logger = logging.getLogger(__name__)

# Errors a read may hit on a supported platform. Anything else is a bug.
READ_ERRORS = (OSError, ValueError, psutil.Error)

_GAUGE = FieldPolicy.GAUGE
_COUNTER = FieldPolicy.COUNTER

VMSTAT_POLICIES: Mapping[str, FieldPolicy] = {
    "procs_running": _GAUGE,
    "procs_blocked": _GAUGE,
    "swap_total": _GAUGE,
    "swap_free": _GAUGE,
    "swap_used": _GAUGE,
    "memory_free": _GAUGE,
    "memory_buff": _GAUGE,
    "memory_cached": _GAUGE,
    "memory_reclaimable": _GAUGE,
    "swap_in": _COUNTER,
    "swap_out": _COUNTER,
    "block_in": _COUNTER,
    "block_out": _COUNTER,
    "interrupt": _COUNTER,
    "context_switch": _COUNTER,
    "user_time": _COUNTER,
    "system_time": _COUNTER,
    "idle_time": _COUNTER,
    "wait_time": _COUNTER,
    "stolen_time": _COUNTER,
}

# Same order as the columns of a Linux block device stat file.
IOSTAT_FIELDS = (
    "read_io",
    "read_merges",
    "read_sectors",
    "read_ticks",
    "write_io",
    "write_merges",
    "write_sectors",
    "write_ticks",
    "in_flight",
    "io_ticks",
    "time_in_queue",
    "discard_io",
    "discard_merges",
    "discard_sectors",
    "discard_ticks",
)

IOSTAT_POLICIES: Mapping[str, FieldPolicy] = {
    name: _GAUGE if name == "in_flight" else _COUNTER for name in IOSTAT_FIELDS
}

# Thermal zones are added per read, under their own names, as gauges.
THERMAL_POLICIES: Mapping[str, FieldPolicy] = {
    "cpu_freq_avg_khz": _GAUGE,
    "cpu_freq_min_khz": _GAUGE,
    "cpu_freq_max_khz": _GAUGE,
    "load_avg_1": _GAUGE,
    "load_avg_5": _GAUGE,
    "load_avg_15": _GAUGE,
}


def clock_ticks() -> int:
    """Scheduler ticks per second per CPU."""
    try:
        return os.sysconf("SC_CLK_TCK")
    except (AttributeError, ValueError, OSError):
        return 100


def online_cpus() -> int:
    """Number of logical CPUs, at least 1."""
    return psutil.cpu_count(logical=True) or 1


class FailureLog:
    """
    Remembers read failures that were already logged.

    A failure is identified by where it happened and what kind of error it
    was, so a file that stays unreadable is reported once, not every tick.
    """

    def __init__(self) -> None:
        self._seen: set[tuple[str, str]] = set()

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def report(self, where: str, exc: BaseException) -> bool:
        """Log the failure if it is new. Returns True if it was logged."""
        key = (where, type(exc).__name__)
        if key in self._seen:
            return False
        self._seen.add(key)
        logger.warning("%s: read failed (%s), reporting zeros", where, exc)
        return True


class CounterSource(ABC):
    """
    Base class for all counter sources.

    Subclasses set kind and POLICIES and implement collect(). Each instance
    owns the previous snapshot it computes deltas against.
    """

    kind: SourceKind
    POLICIES: Mapping[str, FieldPolicy] = {}

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        wrap_limit: int | None = None,
    ) -> None:
        """
        Initialize the source.

        Args:
            clock: Monotonic time function used to stamp snapshots.
            wrap_limit: Counter range used to detect wraparound, None to
                treat every decrease as a reset.
        """
        self._clock = clock
        self._wrap_limit = wrap_limit
        self._previous: Snapshot | None = None
        self.failures = FailureLog()

    @property
    def fields(self) -> list[str]:
        """Fields present in every snapshot of this source."""
        return list(self.POLICIES)

    @property
    def labels(self) -> Mapping[str, str]:
        """Display names for dynamically discovered fields."""
        return {}

    @property
    def previous(self) -> Snapshot | None:
        return self._previous

    def supported(self) -> bool:
        """Whether the underlying facility exists at all on this machine."""
        return True

    @abstractmethod
    def collect(self) -> dict[str, int]:
        """
        Read the raw counters.

        May return a subset of fields; missing ones read as 0 and are marked
        degraded for this snapshot. May raise any of READ_ERRORS.
        """

    def read(self) -> Snapshot:
        """Take a snapshot. Never raises for read failures."""
        taken_at = self._clock()
        wall_time = time.time()
        try:
            collected = self.collect()
        except READ_ERRORS as exc:
            self.failures.report(self.kind.value, exc)
            return Snapshot.zeros(self.kind, self.fields, taken_at, wall_time)

        values = dict.fromkeys(self.POLICIES, 0)
        for name, value in collected.items():
            if self.POLICIES.get(name) is _COUNTER:
                values[name] = max(int(value), 0)
            else:
                # Gauges may be negative, e.g. temperatures below zero
                values[name] = int(value)
        degraded = frozenset(name for name in self.POLICIES if name not in collected)
        return Snapshot(self.kind, values, taken_at, wall_time, degraded)

    def sample(self) -> RateSnapshot | None:
        """
        Read and compute rates against the previous snapshot.

        Returns None on the first read, which only seeds the previous value.
        """
        current = self.read()
        previous, self._previous = self._previous, current
        if previous is None:
            return None
        change = delta(previous, current, self.POLICIES, self._wrap_limit)
        return rate(change, labels=self.labels)

    def reset(self) -> None:
        """Forget the previous snapshot; the next read seeds again."""
        self._previous = None


def _stat_or_none(path: str) -> os.stat_result | None:
    try:
        return os.stat(path)
    except OSError:
        return None


def find_mount_device(path: str) -> str | None:
    """
    Find the device node of the filesystem that holds path.

    Looks the path up in the mount table, matching on mount point or device
    name first, then on device numbers.
    """
    real = os.path.realpath(path)
    info = _stat_or_none(real)
    if info is None:
        return None

    # Character devices cater for UBI mounts
    if stat.S_ISBLK(info.st_mode) or stat.S_ISCHR(info.st_mode):
        dev = info.st_rdev
    else:
        dev = info.st_dev

    try:
        partitions = psutil.disk_partitions(all=True)
    except (OSError, psutil.Error) as exc:
        logger.debug("Cannot read mount table: %s", exc)
        return None

    for part in partitions:
        if real in (part.mountpoint, part.device):
            break
        if part.device.startswith("/"):
            device_info = _stat_or_none(part.device)
            if device_info is not None and device_info.st_rdev == dev:
                break
        mount_info = _stat_or_none(part.mountpoint)
        if mount_info is not None and mount_info.st_dev == dev:
            break
    else:
        return None

    if not part.device:
        return None
    if part.device.startswith("/"):
        return os.path.realpath(part.device)
    return part.device


def candidate_names(device: str) -> list[str]:
    """
    Device names to try for statistics, most specific first.

    "/dev/sda12" gives ["sda12", "sda1", "sda"]: trailing digits are dropped
    one at a time until a non-digit is reached.
    """
    name = device.removeprefix("/dev").lstrip("/")
    names = []
    while name:
        names.append(name)
        if not name[-1].isdigit():
            break
        name = name[:-1]
    return names


class BlockDeviceSource(CounterSource):
    """
    Block I/O counters of the device backing a filesystem path.

    The device is discovered once, on first use. If no device with
    statistics is found the source stays unsupported for the whole run.
    """

    kind = SourceKind.IOSTAT
    POLICIES = IOSTAT_POLICIES

    def __init__(self, path: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.path = path
        self._device: str | None = None
        self._discovered = False

    @property
    def device(self) -> str | None:
        """Name of the block device being sampled, None if there is none."""
        if not self._discovered:
            self._device = self._discover()
            self._discovered = True
        return self._device

    def supported(self) -> bool:
        return self.device is not None

    def _discover(self) -> str | None:
        mount_device = find_mount_device(self.path)
        if mount_device is None:
            logger.debug("No mounted device found for %s", self.path)
            return None
        for name in candidate_names(mount_device):
            if self.has_statistics(name):
                logger.debug("Sampling block device %s for %s", name, self.path)
                return name
        logger.debug("No statistics found for %s (%s)", mount_device, self.path)
        return None

    @abstractmethod
    def has_statistics(self, name: str) -> bool:
        """Whether I/O statistics exist for the named device."""


def frequency_summary(frequencies_khz: Iterable[int]) -> dict[str, int]:
    """Average, minimum and maximum of per-CPU frequencies, zeros if none."""
    readings = [freq for freq in frequencies_khz if freq >= 0]
    if not readings:
        return dict.fromkeys(("cpu_freq_avg_khz", "cpu_freq_min_khz", "cpu_freq_max_khz"), 0)
    return {
        "cpu_freq_avg_khz": round(sum(readings) / len(readings)),
        "cpu_freq_min_khz": min(readings),
        "cpu_freq_max_khz": max(readings),
    }


def load_average(failures: FailureLog) -> dict[str, int]:
    """System load averages in hundredths, empty if unavailable."""
    try:
        one, five, fifteen = psutil.getloadavg()
    except (OSError, AttributeError) as exc:
        failures.report("loadavg", exc)
        return {}
    return {
        "load_avg_1": round(one * 100),
        "load_avg_5": round(five * 100),
        "load_avg_15": round(fifteen * 100),
    }

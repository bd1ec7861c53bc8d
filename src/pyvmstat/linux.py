"""Counter sources reading Linux procfs and sysfs tables."""

from collections.abc import Callable
from pathlib import Path

from pyvmstat.models import SourceKind
from pyvmstat.sources import (
    IOSTAT_FIELDS,
    READ_ERRORS,
    THERMAL_POLICIES,
    VMSTAT_POLICIES,
    BlockDeviceSource,
    CounterSource,
    frequency_summary,
    load_average,
)

PROC_ROOT = Path("/proc")
SYS_ROOT = Path("/sys")

# Columns of a per-CPU row in the scheduler table, mapped onto our fields.
# irq and softirq count as system time, guest time as stolen time.
_CPU_COLUMNS = (
    "user_time",  # user
    "user_time",  # nice
    "system_time",  # system
    "idle_time",  # idle
    "wait_time",  # iowait
    "system_time",  # irq
    "system_time",  # softirq
    "stolen_time",  # steal
    "stolen_time",  # guest
    "stolen_time",  # guest_nice
)

_MEMINFO_FIELDS = {
    "MemFree": "memory_free",
    "Buffers": "memory_buff",
    "Cached": "memory_cached",
    "KReclaimable": "memory_reclaimable",
    "SwapTotal": "swap_total",
    "SwapFree": "swap_free",
    "SwapUsed": "swap_used",
}

_VMSTAT_FIELDS = {
    "pgpgin": "block_in",
    "pgpgout": "block_out",
    "pswpin": "swap_in",
    "pswpout": "swap_out",
}

# Minimum columns in a block device stat file (kernels before 4.18)
_MIN_IOSTAT_COLUMNS = 11


def parse_stat(lines: list[str]) -> dict[str, int]:
    """Parse the scheduler statistics table."""
    values = dict.fromkeys(("user_time", "system_time", "idle_time", "wait_time", "stolen_time"), 0)
    for line in lines:
        name, *columns = line.split() or [""]
        if name == "cpu":
            continue
        if name.startswith("cpu") and name[3:].isdigit():
            for target, column in zip(_CPU_COLUMNS, columns):
                values[target] += int(column)
        elif name == "intr" and columns:
            values["interrupt"] = int(columns[0])
        elif name == "ctxt" and columns:
            values["context_switch"] = int(columns[0])
        elif name == "procs_running" and columns:
            values["procs_running"] = int(columns[0])
        elif name == "procs_blocked" and columns:
            values["procs_blocked"] = int(columns[0])
        elif name == "swap" and len(columns) >= 2:
            values["swap_in"] = int(columns[0])
            values["swap_out"] = int(columns[1])
    return values


def parse_meminfo(lines: list[str]) -> dict[str, int]:
    """Parse the memory table. Values are in KiB."""
    values: dict[str, int] = {}
    for line in lines:
        key, _, rest = line.partition(":")
        target = _MEMINFO_FIELDS.get(key.strip())
        if target is None:
            continue
        columns = rest.split()
        if columns:
            values[target] = int(columns[0])

    if "swap_used" not in values and values.get("swap_total", 0) > 0:
        values["swap_used"] = max(values["swap_total"] - values.get("swap_free", 0), 0)
    return values


def parse_vmstat(lines: list[str]) -> dict[str, int]:
    """Parse the virtual memory event table."""
    values: dict[str, int] = {}
    for line in lines:
        columns = line.split()
        if len(columns) < 2:
            continue
        target = _VMSTAT_FIELDS.get(columns[0])
        if target is not None:
            values[target] = int(columns[1])
    return values


class LinuxVmstatSource(CounterSource):
    """
    Scheduler, memory and swap counters from three procfs tables.

    Rows are selected by name, so reordered or extra rows are harmless.
    A missing table only zeroes its own fields.
    """

    kind = SourceKind.VMSTAT
    POLICIES = VMSTAT_POLICIES

    _TABLES: tuple[tuple[str, Callable[[list[str]], dict[str, int]]], ...] = (
        ("stat", parse_stat),
        ("meminfo", parse_meminfo),
        # Swap rows here override the legacy row of the stat table
        ("vmstat", parse_vmstat),
    )

    def __init__(self, proc_root: Path = PROC_ROOT, **kwargs) -> None:
        super().__init__(**kwargs)
        self.proc_root = Path(proc_root)

    def supported(self) -> bool:
        return any((self.proc_root / table).exists() for table, _ in self._TABLES)

    def collect(self) -> dict[str, int]:
        values: dict[str, int] = {}
        for table, parser in self._TABLES:
            path = self.proc_root / table
            try:
                values.update(parser(path.read_text().splitlines()))
            except READ_ERRORS as exc:
                self.failures.report(str(path), exc)
        return values


class LinuxBlockDeviceSource(BlockDeviceSource):
    """Block I/O counters from the sysfs block device stat file."""

    def __init__(self, path: str, sys_root: Path = SYS_ROOT, **kwargs) -> None:
        super().__init__(path, **kwargs)
        self.sys_root = Path(sys_root)

    def _stat_path(self, name: str) -> Path:
        return self.sys_root / "block" / name / "stat"

    def has_statistics(self, name: str) -> bool:
        return self._stat_path(name).exists()

    def collect(self) -> dict[str, int]:
        if self.device is None:
            return {}
        columns = self._stat_path(self.device).read_text().split()
        if len(columns) < _MIN_IOSTAT_COLUMNS:
            raise ValueError(f"short block statistics record ({len(columns)} fields)")
        return {name: int(column) for name, column in zip(IOSTAT_FIELDS, columns)}


def _zone_number(path: Path) -> int:
    suffix = path.name.removeprefix("thermal_zone")
    return int(suffix) if suffix.isdigit() else -1


class LinuxThermalSource(CounterSource):
    """
    CPU frequency, load average and thermal zone temperatures.

    Zones are looked up on every read, so a zone that appears later simply
    shows up as a new field.
    """

    kind = SourceKind.THERMAL
    POLICIES = THERMAL_POLICIES

    def __init__(self, sys_root: Path = SYS_ROOT, **kwargs) -> None:
        super().__init__(**kwargs)
        self.sys_root = Path(sys_root)
        self._labels: dict[str, str] = {}

    @property
    def labels(self) -> dict[str, str]:
        return dict(self._labels)

    def collect(self) -> dict[str, int]:
        values = self._frequencies()
        values.update(load_average(self.failures))
        values.update(self._zones())
        return values

    def _frequencies(self) -> dict[str, int]:
        cpu_dir = self.sys_root / "devices" / "system" / "cpu"
        readings = []
        for cpu in sorted(cpu_dir.glob("cpu[0-9]*")):
            path = cpu / "cpufreq" / "scaling_cur_freq"
            try:
                readings.append(int(path.read_text().split()[0]))
            except FileNotFoundError:
                # No cpufreq driver for this CPU
                continue
            except (OSError, ValueError, IndexError) as exc:
                self.failures.report(str(path), exc)
        return frequency_summary(readings)

    def _zones(self) -> dict[str, int]:
        zone_dir = self.sys_root / "class" / "thermal"
        values: dict[str, int] = {}
        labels: dict[str, str] = {}
        for zone in sorted(zone_dir.glob("thermal_zone*"), key=_zone_number):
            try:
                label = (zone / "type").read_text().strip() or zone.name
            except OSError:
                label = zone.name
            labels[zone.name] = label
            path = zone / "temp"
            try:
                values[zone.name] = int(path.read_text().strip())
            except (OSError, ValueError) as exc:
                self.failures.report(str(path), exc)
                values[zone.name] = 0
        self._labels = labels
        return values

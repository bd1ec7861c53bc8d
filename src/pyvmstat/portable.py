"""Counter sources built on psutil, for platforms without procfs."""

import mmap

import psutil

from pyvmstat.models import SourceKind
from pyvmstat.sources import (
    READ_ERRORS,
    THERMAL_POLICIES,
    VMSTAT_POLICIES,
    BlockDeviceSource,
    CounterSource,
    clock_ticks,
    frequency_summary,
    load_average,
)

SECTOR_SIZE = 512


def _kib(value: int) -> int:
    return int(value) // 1024


class PsutilVmstatSource(CounterSource):
    """
    Scheduler, memory and swap counters from psutil.

    Fields psutil does not offer on the running platform read as 0.
    """

    kind = SourceKind.VMSTAT
    POLICIES = VMSTAT_POLICIES

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._page_size = mmap.PAGESIZE

    def collect(self) -> dict[str, int]:
        values: dict[str, int] = {}

        mem = psutil.virtual_memory()
        values["memory_free"] = _kib(mem.free)
        values["memory_buff"] = _kib(getattr(mem, "buffers", 0))
        values["memory_cached"] = _kib(getattr(mem, "cached", 0))

        swap = psutil.swap_memory()
        values["swap_total"] = _kib(swap.total)
        values["swap_free"] = _kib(swap.free)
        values["swap_used"] = _kib(swap.used)
        # sin/sout are cumulative bytes, report pages like the Linux table
        values["swap_in"] = int(swap.sin) // self._page_size
        values["swap_out"] = int(swap.sout) // self._page_size

        stats = psutil.cpu_stats()
        values["interrupt"] = stats.interrupts
        values["context_switch"] = stats.ctx_switches

        values.update(self._cpu_ticks())
        values.update(self._block_pages())
        values.update(self._process_states())
        return values

    def _cpu_ticks(self) -> dict[str, int]:
        times = psutil.cpu_times()
        ticks = clock_ticks()

        def total(*names: str) -> int:
            return round(sum(getattr(times, name, 0.0) for name in names) * ticks)

        return {
            "user_time": total("user", "nice"),
            "system_time": total("system", "irq", "softirq", "interrupt", "dpc"),
            "idle_time": total("idle"),
            "wait_time": total("iowait"),
            "stolen_time": total("steal", "guest", "guest_nice"),
        }

    def _block_pages(self) -> dict[str, int]:
        try:
            io = psutil.disk_io_counters(perdisk=False)
        except READ_ERRORS as exc:
            self.failures.report("disk_io_counters", exc)
            return {}
        if io is None:
            return {}
        return {"block_in": _kib(io.read_bytes), "block_out": _kib(io.write_bytes)}

    def _process_states(self) -> dict[str, int]:
        """Count runnable and uninterruptible processes."""
        running = 0
        blocked = 0
        for proc in psutil.process_iter(attrs=["status"]):
            try:
                status = proc.info.get("status")
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            if status == psutil.STATUS_RUNNING:
                running += 1
            elif status == psutil.STATUS_DISK_SLEEP:
                blocked += 1
        return {"procs_running": running, "procs_blocked": blocked}


class PsutilBlockDeviceSource(BlockDeviceSource):
    """Block I/O counters from psutil's per-disk counters."""

    def _counters(self) -> dict:
        try:
            return psutil.disk_io_counters(perdisk=True) or {}
        except READ_ERRORS as exc:
            self.failures.report("disk_io_counters", exc)
            return {}

    def has_statistics(self, name: str) -> bool:
        return name in self._counters()

    def collect(self) -> dict[str, int]:
        if self.device is None:
            return {}
        io = self._counters().get(self.device)
        if io is None:
            raise ValueError(f"no I/O statistics for {self.device}")
        return {
            "read_io": io.read_count,
            "read_merges": getattr(io, "read_merged_count", 0),
            "read_sectors": io.read_bytes // SECTOR_SIZE,
            "read_ticks": io.read_time,
            "write_io": io.write_count,
            "write_merges": getattr(io, "write_merged_count", 0),
            "write_sectors": io.write_bytes // SECTOR_SIZE,
            "write_ticks": io.write_time,
            "io_ticks": getattr(io, "busy_time", 0),
        }


class PsutilThermalSource(CounterSource):
    """CPU frequency, load average and temperature sensors from psutil."""

    kind = SourceKind.THERMAL
    POLICIES = THERMAL_POLICIES

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._labels: dict[str, str] = {}

    @property
    def labels(self) -> dict[str, str]:
        return dict(self._labels)

    def collect(self) -> dict[str, int]:
        values = self._frequencies()
        values.update(load_average(self.failures))
        values.update(self._temperatures())
        return values

    def _frequencies(self) -> dict[str, int]:
        cpu_freq = getattr(psutil, "cpu_freq", None)
        readings = []
        if cpu_freq is not None:
            try:
                # psutil reports MHz
                readings = [round(freq.current * 1000) for freq in cpu_freq(percpu=True) or []]
            except (*READ_ERRORS, NotImplementedError) as exc:
                self.failures.report("cpu_freq", exc)
        return frequency_summary(readings)

    def _temperatures(self) -> dict[str, int]:
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            return {}
        try:
            readings = sensors()
        except READ_ERRORS as exc:
            self.failures.report("sensors_temperatures", exc)
            return {}

        values: dict[str, int] = {}
        labels: dict[str, str] = {}
        for chip, entries in readings.items():
            for index, entry in enumerate(entries):
                name = f"{chip}{index}"
                labels[name] = entry.label or chip
                values[name] = round(entry.current * 1000)
        self._labels = labels
        return values

"""Tests for the psutil-based counter sources, with psutil patched out."""

from collections import namedtuple
from types import SimpleNamespace

import psutil
import pytest

from pyvmstat import portable, sources
from pyvmstat.portable import PsutilBlockDeviceSource, PsutilThermalSource, PsutilVmstatSource
from pyvmstat.sources import VMSTAT_POLICIES

VirtualMemory = namedtuple("VirtualMemory", ["total", "available", "free", "buffers", "cached"])
SwapMemory = namedtuple("SwapMemory", ["total", "used", "free", "percent", "sin", "sout"])
CpuStats = namedtuple("CpuStats", ["ctx_switches", "interrupts", "soft_interrupts", "syscalls"])
CpuTimes = namedtuple("CpuTimes", ["user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal"])
DiskIO = namedtuple(
    "DiskIO",
    ["read_count", "write_count", "read_bytes", "write_bytes", "read_time", "write_time", "busy_time"],
)
CpuFreq = namedtuple("CpuFreq", ["current", "min", "max"])
Temperature = namedtuple("Temperature", ["label", "current", "high", "critical"])


def _process(status):
    return SimpleNamespace(info={"status": status})


@pytest.fixture
def fake_psutil(monkeypatch):
    monkeypatch.setattr(portable, "clock_ticks", lambda: 100)
    monkeypatch.setattr(portable.mmap, "PAGESIZE", 4096)
    monkeypatch.setattr(
        psutil, "virtual_memory", lambda: VirtualMemory(8 << 30, 4 << 30, 2 << 30, 1 << 20, 3 << 20)
    )
    monkeypatch.setattr(
        psutil, "swap_memory", lambda: SwapMemory(1 << 30, 1 << 28, 3 << 28, 25.0, 8192, 40960)
    )
    monkeypatch.setattr(psutil, "cpu_stats", lambda: CpuStats(5000, 700, 0, 0))
    monkeypatch.setattr(
        psutil, "cpu_times", lambda: CpuTimes(10.0, 1.0, 5.0, 100.0, 2.0, 0.5, 0.5, 0.25)
    )
    monkeypatch.setattr(
        psutil,
        "disk_io_counters",
        lambda perdisk=False: DiskIO(10, 20, 4096, 8192, 5, 6, 7),
    )
    monkeypatch.setattr(
        psutil,
        "process_iter",
        lambda attrs=None: iter(
            [
                _process(psutil.STATUS_RUNNING),
                _process(psutil.STATUS_SLEEPING),
                _process(psutil.STATUS_RUNNING),
                _process(psutil.STATUS_DISK_SLEEP),
                _process(None),
            ]
        ),
    )


class TestPsutilVmstatSource:
    """Tests for PsutilVmstatSource."""

    def test_reads_all_fields(self, fake_psutil):
        """Test psutil readings are converted to the vmstat fields."""
        values = PsutilVmstatSource().read().values

        assert set(values) == set(VMSTAT_POLICIES)
        assert values["memory_free"] == (2 << 30) // 1024
        assert values["memory_buff"] == 1024
        assert values["memory_cached"] == 3 * 1024
        assert values["swap_total"] == (1 << 30) // 1024
        assert values["swap_used"] == (1 << 28) // 1024
        assert values["swap_in"] == 2
        assert values["swap_out"] == 10
        assert values["context_switch"] == 5000
        assert values["interrupt"] == 700
        assert values["block_in"] == 4
        assert values["block_out"] == 8

    def test_cpu_times_in_ticks(self, fake_psutil):
        """Test CPU seconds become scheduler ticks."""
        values = PsutilVmstatSource().read().values

        assert values["user_time"] == 1100
        assert values["system_time"] == 600
        assert values["idle_time"] == 10000
        assert values["wait_time"] == 200
        assert values["stolen_time"] == 25

    def test_process_states(self, fake_psutil):
        """Test running and uninterruptible processes are counted."""
        values = PsutilVmstatSource().read().values

        assert values["procs_running"] == 2
        assert values["procs_blocked"] == 1

    def test_missing_disk_counters(self, fake_psutil, monkeypatch):
        """Test a machine without disks reads block counters as 0."""
        monkeypatch.setattr(psutil, "disk_io_counters", lambda perdisk=False: None)

        values = PsutilVmstatSource().read().values

        assert values["block_in"] == 0
        assert values["context_switch"] == 5000

    def test_access_denied(self, fake_psutil, monkeypatch):
        """Test a psutil error degrades the whole read to zeros."""

        def denied():
            raise psutil.AccessDenied()

        monkeypatch.setattr(psutil, "cpu_stats", denied)

        values = PsutilVmstatSource().read().values

        assert set(values.values()) == {0}


class TestPsutilBlockDeviceSource:
    """Tests for PsutilBlockDeviceSource."""

    def test_reads_device_counters(self, monkeypatch):
        """Test per-disk counters are mapped onto iostat fields."""
        monkeypatch.setattr(sources, "find_mount_device", lambda path: "/dev/sdb1")
        monkeypatch.setattr(
            psutil,
            "disk_io_counters",
            lambda perdisk=False: {"sdb": DiskIO(10, 20, 5120, 10240, 1, 2, 3)},
        )

        source = PsutilBlockDeviceSource("/tmp")
        values = source.read().values

        assert source.device == "sdb"
        assert values["read_io"] == 10
        assert values["write_io"] == 20
        assert values["read_sectors"] == 10
        assert values["write_sectors"] == 20
        assert values["io_ticks"] == 3
        assert values["discard_io"] == 0

    def test_device_disappears(self, monkeypatch):
        """Test a device missing from the counters later reads as zeros."""
        counters = {"sda": DiskIO(1, 1, 512, 512, 1, 1, 1)}
        monkeypatch.setattr(sources, "find_mount_device", lambda path: "/dev/sda1")
        monkeypatch.setattr(psutil, "disk_io_counters", lambda perdisk=False: counters)

        source = PsutilBlockDeviceSource("/tmp")
        assert source.supported()
        counters.clear()

        assert set(source.read().values.values()) == {0}

    def test_unsupported_without_counters(self, monkeypatch):
        """Test no per-disk counters at all leaves the source unsupported."""
        monkeypatch.setattr(sources, "find_mount_device", lambda path: "/dev/sda1")
        monkeypatch.setattr(psutil, "disk_io_counters", lambda perdisk=False: {})

        assert not PsutilBlockDeviceSource("/tmp").supported()


class TestPsutilThermalSource:
    """Tests for PsutilThermalSource."""

    def test_reads_frequency_load_and_sensors(self, monkeypatch):
        """Test frequency, load average and temperatures are read."""
        monkeypatch.setattr(psutil, "getloadavg", lambda: (2.0, 1.0, 0.5))
        monkeypatch.setattr(
            psutil,
            "cpu_freq",
            lambda percpu=False: [CpuFreq(1200.0, 800.0, 3000.0), CpuFreq(2400.0, 800.0, 3000.0)],
            raising=False,
        )
        monkeypatch.setattr(
            psutil,
            "sensors_temperatures",
            lambda: {"coretemp": [Temperature("Package id 0", 55.5, 80.0, 100.0), Temperature("", 50.0, 80.0, 100.0)]},
            raising=False,
        )

        source = PsutilThermalSource()
        values = source.read().values

        assert values["cpu_freq_avg_khz"] == 1800000
        assert values["cpu_freq_min_khz"] == 1200000
        assert values["cpu_freq_max_khz"] == 2400000
        assert values["load_avg_1"] == 200
        assert values["coretemp0"] == 55500
        assert values["coretemp1"] == 50000
        assert source.labels == {"coretemp0": "Package id 0", "coretemp1": "coretemp"}

    def test_platform_without_sensors(self, monkeypatch):
        """Test platforms lacking sensor support still report load average."""
        monkeypatch.setattr(psutil, "getloadavg", lambda: (0.5, 0.5, 0.5))
        monkeypatch.setattr(psutil, "cpu_freq", lambda percpu=False: [], raising=False)
        monkeypatch.delattr(psutil, "sensors_temperatures", raising=False)

        values = PsutilThermalSource().read().values

        assert values["cpu_freq_avg_khz"] == 0
        assert values["load_avg_5"] == 50

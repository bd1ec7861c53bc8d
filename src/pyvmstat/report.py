"""Report emitter: formats rate snapshots into fixed-width text lines."""

import logging
from collections.abc import Callable

from pyvmstat.models import RateSnapshot, SourceKind
from pyvmstat.sources import THERMAL_POLICIES, clock_ticks, online_cpus

logger = logging.getLogger("pyvmstat.report")

HEADER_EVERY = 25

VMSTAT_HEADER = (
    f"{'r':>2} {'b':>2} {'swpd':>9} {'free':>9} {'buff':>9} {'cache':>9} "
    f"{'si':>4} {'so':>4} {'bi':>6} {'bo':>6} {'in':>4} {'cs':>4} "
    f"{'us':>2} {'sy':>2} {'id':>2} {'wa':>2} {'st':>2}"
)

IOSTAT_HEADER = "Inflght   Rd K/s   Wr K/s Dscd K/s     Rd/s     Wr/s   Dscd/s"

THERMAL_HEADER = "AvGHz MnGhz MxGHz  LdA1  LdA5 LdA15"


def time_base() -> int:
    """Scheduler ticks per second across all online CPUs."""
    return clock_ticks() * online_cpus()


def _log_line(line: str) -> None:
    logger.info(line)


class ReportEmitter:
    """
    Writes one line per report, with a column header every few reports.

    Header throttling is counted per source kind.
    """

    def __init__(
        self,
        write: Callable[[str], None] | None = None,
        header_every: int = HEADER_EVERY,
        ticks_per_second: Callable[[], int] = time_base,
    ) -> None:
        """
        Initialize the emitter.

        Args:
            write: Called once per output line. Defaults to the report logger.
            header_every: Repeat the header before every Nth report of a kind.
            ticks_per_second: Time base for CPU percentages, queried per
                report since CPUs can come and go.
        """
        self._write = write or _log_line
        self._header_every = max(1, header_every)
        self._ticks_per_second = ticks_per_second
        self._counts: dict[SourceKind, int] = dict.fromkeys(SourceKind, 0)

    def reports(self, kind: SourceKind) -> int:
        """Number of reports emitted so far for kind."""
        return self._counts[kind]

    def emit(self, rates: RateSnapshot) -> list[str]:
        """Format and write the report for rates. Returns the lines written."""
        header, line = self.format(rates)
        lines = []
        if self._counts[rates.kind] % self._header_every == 0:
            lines.append(f"{rates.kind.value}: {header}")
        lines.append(f"{rates.kind.value}: {line}")
        self._counts[rates.kind] += 1

        for text in lines:
            self._write(text)
        return lines

    def format(self, rates: RateSnapshot) -> tuple[str, str]:
        """Header and data line for rates, without the kind prefix."""
        if rates.kind is SourceKind.VMSTAT:
            return VMSTAT_HEADER, self.format_vmstat(rates)
        if rates.kind is SourceKind.IOSTAT:
            return IOSTAT_HEADER, format_iostat(rates)
        return format_thermal_header(rates), format_thermal(rates)

    def format_vmstat(self, rates: RateSnapshot) -> str:
        base = self._ticks_per_second()

        def percent(name: str) -> float:
            return 100.0 * rates.get(name) / base if base > 0 else 0.0

        return (
            f"{rates.get('procs_running'):2.0f} {rates.get('procs_blocked'):2.0f} "
            f"{rates.get('swap_used'):9.0f} {rates.get('memory_free'):9.0f} "
            f"{rates.get('memory_buff'):9.0f} "
            f"{rates.get('memory_cached') + rates.get('memory_reclaimable'):9.0f} "
            f"{rates.get('swap_in'):4.0f} {rates.get('swap_out'):4.0f} "
            f"{rates.get('block_in'):6.0f} {rates.get('block_out'):6.0f} "
            f"{rates.get('interrupt'):4.0f} {rates.get('context_switch'):4.0f} "
            f"{percent('user_time'):2.0f} {percent('system_time'):2.0f} "
            f"{percent('idle_time'):2.0f} {percent('wait_time'):2.0f} "
            f"{percent('stolen_time'):2.0f}"
        )


def format_iostat(rates: RateSnapshot) -> str:
    # Sectors are 512 bytes, halve for KiB
    return (
        f"{rates.get('in_flight'):7.0f} "
        f"{rates.get('read_sectors') / 2:8.0f} "
        f"{rates.get('write_sectors') / 2:8.0f} "
        f"{rates.get('discard_sectors') / 2:8.0f} "
        f"{rates.get('read_io'):8.0f} "
        f"{rates.get('write_io'):8.0f} "
        f"{rates.get('discard_io'):8.0f}"
    )


def thermal_zones(rates: RateSnapshot) -> list[str]:
    """Zone fields of a thermal report, in reading order."""
    return [name for name in rates.values if name not in THERMAL_POLICIES]


def format_thermal_header(rates: RateSnapshot) -> str:
    labels = "".join(f" {rates.labels.get(zone, zone):>6.6}" for zone in thermal_zones(rates))
    return THERMAL_HEADER + labels


def format_thermal(rates: RateSnapshot) -> str:
    if rates.get("cpu_freq_avg_khz") > 0:
        speed = " ".join(
            f"{rates.get(name) / 1e6:5.2f}"
            for name in ("cpu_freq_avg_khz", "cpu_freq_min_khz", "cpu_freq_max_khz")
        )
    else:
        speed = " n/a   n/a   n/a "
    loads = ("load_avg_1", "load_avg_5", "load_avg_15")
    if rates.available(*loads):
        load = " ".join(f"{rates.get(name) / 100:5.2f}" for name in loads)
    else:
        load = "  n/a   n/a   n/a"
    temps = "".join(f" {rates.get(zone) / 1000:6.2f}" for zone in thermal_zones(rates))
    return f"{speed} {load}{temps}"

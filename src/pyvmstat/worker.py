"""Sampling loop and the background worker that runs it."""

import logging
import multiprocessing
import sys
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Protocol

from pyvmstat.config import SamplerConfig
from pyvmstat.errors import ConfigError, WorkerStartError
from pyvmstat.models import SourceConfig, SourceKind
from pyvmstat.report import ReportEmitter
from pyvmstat.scheduler import IntervalScheduler
from pyvmstat.sources import CounterSource

logger = logging.getLogger(__name__)

# Longest a worker sleeps before checking that its parent still exists
PARENT_POLL_INTERVAL = 1.0


class StopEvent(Protocol):
    def is_set(self) -> bool: ...

    def wait(self, timeout: float | None = None) -> bool: ...


class Clock(Protocol):
    """Time source of the sampling loop."""

    def now(self) -> float:
        """Monotonic seconds."""
        ...

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds. Returns True if stop was requested meanwhile."""
        ...

    def stopped(self) -> bool: ...


class EventClock:
    """
    Monotonic clock whose sleeps end as soon as the stop event is set.

    With parent_alive given, the clock also reads as stopped once that
    returns False. Long sleeps are cut into slices of at most poll seconds
    so a parent that died without setting the event is noticed.
    """

    def __init__(
        self,
        stop_event: StopEvent,
        parent_alive: Callable[[], bool] | None = None,
        poll: float = PARENT_POLL_INTERVAL,
    ) -> None:
        self._stop_event = stop_event
        self._parent_alive = parent_alive
        self._poll = poll

    def now(self) -> float:
        return time.monotonic()

    def wait(self, seconds: float) -> bool:
        if self._parent_alive is None:
            return self._stop_event.wait(timeout=seconds)

        deadline = time.monotonic() + seconds
        while True:
            if self.stopped():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            if self._stop_event.wait(timeout=min(remaining, self._poll)):
                return True

    def stopped(self) -> bool:
        if self._stop_event.is_set():
            return True
        return self._parent_alive is not None and not self._parent_alive()


def build_sources(
    config: SamplerConfig,
    clock: Callable[[], float] = time.monotonic,
    platform: str = sys.platform,
) -> dict[SourceKind, CounterSource]:
    """Create the counter source of every enabled kind for this platform."""
    if platform.startswith("linux"):
        from pyvmstat.linux import LinuxBlockDeviceSource, LinuxThermalSource, LinuxVmstatSource

        factories = {
            SourceKind.VMSTAT: lambda: LinuxVmstatSource(clock=clock),
            SourceKind.IOSTAT: lambda: LinuxBlockDeviceSource(config.iostat_path, clock=clock),
            SourceKind.THERMAL: lambda: LinuxThermalSource(clock=clock),
        }
    else:
        from pyvmstat.portable import (
            PsutilBlockDeviceSource,
            PsutilThermalSource,
            PsutilVmstatSource,
        )

        factories = {
            SourceKind.VMSTAT: lambda: PsutilVmstatSource(clock=clock),
            SourceKind.IOSTAT: lambda: PsutilBlockDeviceSource(config.iostat_path, clock=clock),
            SourceKind.THERMAL: lambda: PsutilThermalSource(clock=clock),
        }

    return {source.kind: factories[source.kind]() for source in config.sources() if source.enabled}


class SamplingLoop:
    """
    Wakes when the earliest source is due, samples every due source in
    kind order and emits a report for each one that has a rate.

    Sleeps are measured against an absolute deadline so time spent
    sampling does not accumulate as drift.
    """

    def __init__(
        self,
        schedule: Iterable[SourceConfig],
        sources: Mapping[SourceKind, CounterSource],
        clock: Clock,
        emitter: ReportEmitter | None = None,
    ) -> None:
        self.scheduler = IntervalScheduler(schedule)
        self.sources = dict(sources)
        self.clock = clock
        self.emitter = emitter or ReportEmitter()
        self._deadline: float | None = None

    def prepare(self) -> None:
        """Disable, for the whole run, every source this system cannot provide."""
        for kind in self.scheduler.active:
            source = self.sources.get(kind)
            if source is None or not source.supported():
                logger.warning("%s statistics are not available, disabling them", kind.value)
                self.scheduler.disable(kind)

    def run(self) -> None:
        """Sample until stop is requested or no source is left."""
        self.prepare()
        while self.scheduler and not self.clock.stopped():
            if not self.run_once():
                break
        logger.debug("Sampling loop finished")

    def run_once(self) -> bool:
        """
        Sleep until the next wake and process the due sources.

        Returns False, without sampling, if stop was requested.
        """
        if self._deadline is None:
            self._deadline = self.clock.now()

        sleep_for = self.scheduler.next_sleep()
        self._deadline += sleep_for
        remaining = self._deadline - self.clock.now()
        if remaining > 0 and self.clock.wait(remaining):
            return False
        if self.clock.stopped():
            return False

        for kind in self.scheduler.advance(sleep_for):
            self._process(kind)
        return True

    def _process(self, kind: SourceKind) -> None:
        try:
            rates = self.sources[kind].sample()
            if rates is not None:
                self.emitter.emit(rates)
        except Exception:
            # Never let one bad cycle end the sampler
            logger.exception("Unexpected error while sampling %s", kind.value)


def run_sampler(config: SamplerConfig, stop_event: StopEvent) -> None:
    """Entry point of the worker: sample until stop_event is set or the parent exits."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    # None when running in the foreground, not as a child process
    parent = multiprocessing.parent_process()
    clock = EventClock(stop_event, parent.is_alive if parent is not None else None)
    loop = SamplingLoop(config.sources(), build_sources(config, clock.now), clock)
    loop.run()
    if parent is not None and not parent.is_alive():
        logger.info("Parent process %d exited, sampler stopped", parent.pid)


class SamplerWorker:
    """
    Runs the sampling loop in a separate daemon process.

    The process gets a copy of the configuration and a stop event, nothing
    else is shared with the caller.
    """

    def __init__(self, config: SamplerConfig) -> None:
        self._config = config
        self._stop_event = multiprocessing.Event()
        self._process: multiprocessing.Process | None = None

    @property
    def config(self) -> SamplerConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        """Check if the sampler process is alive."""
        return self._process is not None and self._process.is_alive()

    def start(self) -> "SamplerWorker":
        """
        Start the sampler process.

        Does nothing if it is already running or if no source is enabled.

        Raises:
            WorkerStartError: The process could not be created.
        """
        if self.is_running:
            return self
        if not self._config.enabled:
            logger.debug("No statistics source enabled, sampler not started")
            return self

        self._stop_event.clear()
        process = multiprocessing.Process(
            target=run_sampler,
            args=(self._config, self._stop_event),
            name="pyvmstat [periodic]",
            daemon=True,
        )
        try:
            process.start()
        except OSError as exc:
            raise WorkerStartError(f"cannot start sampler process: {exc}") from exc

        self._process = process
        logger.debug("Sampler process %d started", process.pid)
        return self

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampler process, killing it if it does not exit in time.

        Args:
            timeout: How long to wait for the process to exit (seconds).
        """
        self._stop_event.set()
        process, self._process = self._process, None
        if process is None:
            return

        process.join(timeout=timeout)
        if process.is_alive():
            logger.warning("Sampler process %d did not stop, killing it", process.pid)
            process.kill()
            process.join()
        logger.debug("Sampler process %d stopped", process.pid)


def start(config: SamplerConfig) -> SamplerWorker:
    """Create and start a sampler worker for config."""
    return SamplerWorker(config).start()


def main() -> None:
    """Run the sampler in the foreground, configured from the environment."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        config = SamplerConfig.from_env()
    except ConfigError as exc:
        logger.error("%s", exc)
        raise SystemExit(2) from exc

    if not config.enabled:
        logger.error("No sampling interval set, use PYVMSTAT_VMSTAT, PYVMSTAT_THERMALSTAT or PYVMSTAT_IOSTAT")
        raise SystemExit(2)

    try:
        run_sampler(config, threading.Event())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

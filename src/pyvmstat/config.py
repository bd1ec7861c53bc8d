"""Sampler configuration."""

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field

from pyvmstat.errors import ConfigError
from pyvmstat.models import SourceConfig, SourceKind, check_interval

ENV_PREFIX = "PYVMSTAT_"


@dataclass(slots=True, frozen=True)
class SamplerConfig:
    """
    Immutable sampler configuration, copied into the worker at start.

    Args:
        vmstat: Scheduler/memory sampling interval in seconds, 0 disables.
        thermalstat: CPU frequency/thermal sampling interval, 0 disables.
        iostat: Block I/O sampling interval, 0 disables.
        iostat_path: Filesystem path whose backing block device is sampled.
    """

    vmstat: int = 0
    thermalstat: int = 0
    iostat: int = 0
    iostat_path: str = field(default_factory=tempfile.gettempdir)

    def __post_init__(self) -> None:
        for name in ("vmstat", "thermalstat", "iostat"):
            object.__setattr__(self, name, check_interval(name, getattr(self, name)))
        if not self.iostat_path:
            raise ConfigError("iostat_path must not be empty")

    @property
    def enabled(self) -> bool:
        """True if at least one source has a non-zero interval."""
        return any(source.enabled for source in self.sources())

    def sources(self) -> list[SourceConfig]:
        """Per-source configuration in processing order, disabled ones included."""
        return [
            SourceConfig(SourceKind.VMSTAT, self.vmstat),
            SourceConfig(SourceKind.IOSTAT, self.iostat),
            SourceConfig(SourceKind.THERMAL, self.thermalstat),
        ]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SamplerConfig":
        """Load the configuration from PYVMSTAT_* environment variables."""
        if environ is None:
            environ = os.environ

        values: dict[str, object] = {}
        for name in ("vmstat", "thermalstat", "iostat"):
            raw = environ.get(ENV_PREFIX + name.upper(), "").strip()
            if not raw:
                continue
            try:
                values[name] = int(raw)
            except ValueError as exc:
                raise ConfigError(f"{ENV_PREFIX}{name.upper()} must be an integer, got {raw!r}") from exc

        path = environ.get(ENV_PREFIX + "IOSTAT_PATH", "").strip()
        if path:
            values["iostat_path"] = path
        return cls(**values)

"""Exceptions raised by pyvmstat."""


class SamplerError(Exception):
    """Base class for all sampler errors."""


class ConfigError(SamplerError, ValueError):
    """An interval or path in the sampler configuration is invalid."""


class WorkerStartError(SamplerError):
    """The background sampling process could not be created."""

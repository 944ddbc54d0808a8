"""Exception types for the distributed diffusion core.

All three kinds are fatal at this layer: a malformed configuration, ranks that
disagree about geometry, or a corrupted message all abort the run.
"""


class DiffusionError(Exception):
    """Base class for all errors raised by the Diffusion package."""


class ConfigError(DiffusionError, ValueError):
    """Grid or run configuration violates a tiling/evenness invariant."""


class TopologyError(DiffusionError):
    """A halo cell has no owner, or a received position matches no local cell."""


class CommunicationError(DiffusionError):
    """A message is malformed, missing, or references an unknown handle."""

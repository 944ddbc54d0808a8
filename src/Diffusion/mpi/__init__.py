"""Cross-rank communication.

This package provides:
- Transport: point-to-point messaging (MPITransport, ThreadTransport)
- LocalTransportGroup: in-process rank group for threads backend and tests
- HaloExchangeProtocol: correspondence setup and per-step halo sync
- wire: length-prefixed record codec
"""

from .transport import Transport, MPITransport, ThreadTransport, LocalTransportGroup
from .exchange import HaloExchangeProtocol
from . import wire

__all__ = [
    "Transport",
    "MPITransport",
    "ThreadTransport",
    "LocalTransportGroup",
    "HaloExchangeProtocol",
    "wire",
]

"""Distributed red/black diffusion package.

A 2D scalar field on a toroidal grid, split across cooperating ranks by
explicit domain decomposition and kept consistent by halo exchange.

Pipeline (identical on every rank)
----------------------------------
- GridSpec / CellId: partition the global grid (decomposition)
- CellClassifier / OwnerResolver / create_partition: Local and Halo cells (classification)
- HaloExchangeProtocol: one-time correspondence setup, per-step sync (mpi.exchange)
- UpdateEngine: source term, then red sweep, then black sweep (engine)

Transports
----------
- MPITransport: mpi4py, one process per rank
- LocalTransportGroup: one thread per rank inside this process
"""

from .errors import DiffusionError, ConfigError, TopologyError, CommunicationError
from .datastructures import (
    SimulationParams,
    GlobalMetrics,
    LocalMetrics,
    CellRole,
    Color,
    CellTable,
    ExchangeCorrespondence,
    ExchangeTable,
)
from .decomposition import GridSpec, CellId
from .classification import CellClassifier, OwnerResolver, create_partition
from .kernels import NumPyKernel, NumbaKernel, create_kernel
from .engine import UpdateEngine, step
from .mpi import (
    Transport,
    MPITransport,
    ThreadTransport,
    LocalTransportGroup,
    HaloExchangeProtocol,
)
from .problems import step_profile, gaussian_profile, uniform_profile, setup_problem
from .simulation import DiffusionSimulation
from .runner import run_simulation, run_threads

__all__ = [
    # Errors
    "DiffusionError",
    "ConfigError",
    "TopologyError",
    "CommunicationError",
    # Data structures
    "SimulationParams",
    "GlobalMetrics",
    "LocalMetrics",
    "CellRole",
    "Color",
    "CellTable",
    "ExchangeCorrespondence",
    "ExchangeTable",
    # Geometry
    "GridSpec",
    "CellId",
    "CellClassifier",
    "OwnerResolver",
    "create_partition",
    # Update
    "NumPyKernel",
    "NumbaKernel",
    "create_kernel",
    "UpdateEngine",
    "step",
    # Communication
    "Transport",
    "MPITransport",
    "ThreadTransport",
    "LocalTransportGroup",
    "HaloExchangeProtocol",
    # Problem setup
    "step_profile",
    "gaussian_profile",
    "uniform_profile",
    "setup_problem",
    # Driver
    "DiffusionSimulation",
    "run_simulation",
    "run_threads",
]

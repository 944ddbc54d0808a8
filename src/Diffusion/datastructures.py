"""Data structures for run configuration, cell storage and results.

Architecture: Params vs Metrics × Global vs Local, plus the per-rank cell
arena and the cross-rank exchange table.

                 Params (input/config)         Metrics (output/results)
                 ─────────────────────         ────────────────────────
Global           SimulationParams              GlobalMetrics
(same across     size_x, size_y, n_ranks,      wall_time, mlups,
ranks / agg)     diffusion_constant...         initial/final totals...

Local                                          LocalMetrics
(per-rank)                                     compute_times[],
                                               halo_times[], totals[]
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import Dict, Iterator, List, Optional

import numpy as np

from .errors import ConfigError


# ============================================================================
# Global (identical across ranks, or aggregated on rank 0)
# ============================================================================


KERNELS = ("numpy", "numba")
BACKENDS = ("mpi", "threads")
INITIAL_PROFILES = ("step", "gaussian", "uniform")


@dataclass
class SimulationParams:
    """Run configuration - built from the Hydra config, identical across ranks.

    The process grid is ``ranks_x x ranks_y`` with ``ranks_x = n_ranks // ranks_y``.
    """

    # Grid
    size_x: int = 60
    size_y: int = 60
    n_ranks: int = 1
    ranks_y: int = 1
    cell_length: float = 1.0

    # Model
    diffusion_constant: float = 0.1
    timestep: float = 1.0
    n_steps: int = 100
    initial: str = "step"  # "step" | "gaussian" | "uniform"
    step_threshold: float = 10.0
    source_rate: float = 0.0

    # Execution
    kernel: str = "numpy"  # "numpy" | "numba"
    backend: str = "mpi"  # "mpi" | "threads"
    log_every: int = 0  # 0 disables per-step total logging

    ranks_x: int = field(init=False)

    def __post_init__(self):
        if self.n_ranks <= 0 or self.ranks_y <= 0:
            raise ConfigError(
                f"n_ranks and ranks_y must be positive, got {self.n_ranks}, {self.ranks_y}"
            )
        if self.n_ranks % self.ranks_y != 0:
            raise ConfigError(
                f"n_ranks={self.n_ranks} is not divisible by ranks_y={self.ranks_y}"
            )
        if self.kernel not in KERNELS:
            raise ConfigError(f"Unknown kernel: {self.kernel}. Use one of {KERNELS}")
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown backend: {self.backend}. Use one of {BACKENDS}")
        if self.initial not in INITIAL_PROFILES:
            raise ConfigError(
                f"Unknown initial profile: {self.initial}. Use one of {INITIAL_PROFILES}"
            )
        if self.n_steps < 0:
            raise ConfigError(f"n_steps must be non-negative, got {self.n_steps}")
        self.ranks_x = self.n_ranks // self.ranks_y

    @classmethod
    def from_config(cls, cfg) -> "SimulationParams":
        """Build from a DictConfig or plain mapping, ignoring unknown keys."""
        names = {f.name for f in fields(cls) if f.init}
        return cls(**{k: cfg[k] for k in cfg if k in names and cfg[k] is not None})

    def to_dict(self) -> dict:
        return dict(self.__dict__)


@dataclass
class GlobalMetrics:
    """Aggregated results, computed on rank 0."""

    steps: int = 0
    wall_time: Optional[float] = None
    initial_total: Optional[float] = None
    final_total: Optional[float] = None

    # Timing breakdown (sum across all steps, rank 0)
    total_compute_time: Optional[float] = None
    total_halo_time: Optional[float] = None

    # Exchange volume (summed over ranks)
    n_halo_cells: Optional[int] = None
    n_exchange_cells: Optional[int] = None

    mlups: Optional[float] = None  # Million Lattice Updates per Second

    def to_dict(self) -> dict:
        """Results without unset entries."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


# ============================================================================
# Local (per-rank)
# ============================================================================


@dataclass
class LocalMetrics:
    """Per-rank timeseries, one entry per step."""

    compute_times: List[float] = field(default_factory=list)
    halo_times: List[float] = field(default_factory=list)
    local_totals: List[float] = field(default_factory=list)

    # Rank 0 only
    global_totals: List[float] = field(default_factory=list)

    def clear(self):
        """Clear all timeseries data."""
        self.compute_times.clear()
        self.halo_times.clear()
        self.local_totals.clear()
        self.global_totals.clear()


# ============================================================================
# Cell arena
# ============================================================================


class CellRole(IntEnum):
    """Role of a cell on one rank. Exchange is recorded in the ExchangeTable."""

    NONE = 0
    LOCAL = 1
    HALO = 2


class Color(IntEnum):
    """Update group of a Local cell."""

    RED = 0
    BLACK = 1


@dataclass
class CellTable:
    """Struct-of-arrays storage for the Local and Halo cells of one rank.

    A cell's handle is its row index; handles are stable for the whole run.
    Halo rows have ``color == -1`` and ``neighbors == -1``.
    """

    rank: int
    x: np.ndarray
    y: np.ndarray
    position: np.ndarray
    role: np.ndarray
    owner: np.ndarray
    color: np.ndarray
    neighbors: np.ndarray
    concentration: np.ndarray
    source_rate: np.ndarray

    def __post_init__(self):
        self.local_handles = np.flatnonzero(self.role == CellRole.LOCAL)
        self.halo_handles = np.flatnonzero(self.role == CellRole.HALO)
        self._color_handles = {
            color: np.flatnonzero(self.color == color) for color in Color
        }
        self._index = {
            (int(x), int(y)): handle
            for handle, (x, y) in enumerate(zip(self.x, self.y))
        }

    def __len__(self) -> int:
        return len(self.role)

    @property
    def n_local(self) -> int:
        return len(self.local_handles)

    @property
    def n_halo(self) -> int:
        return len(self.halo_handles)

    def handles_of_color(self, color: Color) -> np.ndarray:
        return self._color_handles[color]

    def handle_of(self, x: int, y: int) -> int:
        """Handle of the cell at global coordinates (KeyError if not stored)."""
        return self._index[(x, y)]

    def local_total(self) -> float:
        """Sum of concentration over Local cells."""
        return float(np.sum(self.concentration[self.local_handles]))

    def halo_owners(self) -> Dict[int, np.ndarray]:
        """Halo handles grouped by owning rank."""
        owners = self.owner[self.halo_handles]
        return {
            int(r): self.halo_handles[owners == r] for r in np.unique(owners)
        }


# ============================================================================
# Cross-rank correspondence
# ============================================================================


@dataclass(frozen=True)
class ExchangeCorrespondence:
    """Stable link between a cell on this rank and its counterpart on another.

    On an Exchange cell, ``remote_handle`` is the Halo handle on
    ``remote_rank``; on a Halo cell it is the supplying Exchange handle.
    """

    local_handle: int
    remote_rank: int
    remote_handle: int


@dataclass
class ExchangeTable:
    """All correspondences of one rank, as aligned handle arrays per peer.

    ``exchange_local[p][i]`` is sent to rank ``p`` where it lands on
    ``exchange_remote[p][i]``; ``halo_local[p][i]`` is supplied by
    ``halo_remote[p][i]`` on rank ``p``.
    """

    rank: int
    exchange_local: Dict[int, np.ndarray] = field(default_factory=dict)
    exchange_remote: Dict[int, np.ndarray] = field(default_factory=dict)
    halo_local: Dict[int, np.ndarray] = field(default_factory=dict)
    halo_remote: Dict[int, np.ndarray] = field(default_factory=dict)

    @property
    def send_peers(self) -> List[int]:
        return sorted(p for p, h in self.exchange_local.items() if len(h))

    @property
    def recv_peers(self) -> List[int]:
        return sorted(p for p, h in self.halo_local.items() if len(h))

    @property
    def is_empty(self) -> bool:
        return not self.send_peers and not self.recv_peers

    @property
    def n_exchange_links(self) -> int:
        return sum(len(h) for h in self.exchange_local.values())

    @property
    def n_halo_links(self) -> int:
        return sum(len(h) for h in self.halo_local.values())

    def exchange_correspondences(self) -> Iterator[ExchangeCorrespondence]:
        for peer in self.send_peers:
            for local, remote in zip(self.exchange_local[peer], self.exchange_remote[peer]):
                yield ExchangeCorrespondence(int(local), peer, int(remote))

    def halo_correspondences(self) -> Iterator[ExchangeCorrespondence]:
        for peer in self.recv_peers:
            for local, remote in zip(self.halo_local[peer], self.halo_remote[peer]):
                yield ExchangeCorrespondence(int(local), peer, int(remote))

    def exchange_handles(self) -> np.ndarray:
        """Distinct Local handles that are Exchange cells toward any peer."""
        if not self.exchange_local:
            return np.empty(0, dtype=np.int64)
        return np.unique(np.concatenate(list(self.exchange_local.values())))

"""Distributed diffusion simulation driver.

Wires the pieces together in a fixed order, identical on every rank:

    partition -> classify -> correspondence (once) -> {synchronize -> update}*
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import asdict
from typing import Optional

import numpy as np
import pandas as pd

from .classification import create_partition
from .datastructures import GlobalMetrics, LocalMetrics, SimulationParams
from .decomposition import GridSpec
from .engine import UpdateEngine
from .errors import ConfigError
from .kernels import create_kernel
from .mpi.exchange import HaloExchangeProtocol
from .mpi.transport import Transport
from .problems import setup_problem

log = logging.getLogger(__name__)


class DiffusionSimulation:
    """Red/black diffusion on a toroidal grid split across the ranks of a transport.

    Parameters
    ----------
    params : SimulationParams
        Run configuration, identical on every rank.
    transport : Transport
        Messaging for this rank; its group size must equal ``params.n_ranks``.

    Example
    -------
    >>> sim = DiffusionSimulation(SimulationParams(n_ranks=4), MPITransport())
    >>> sim.setup()
    >>> sim.run(100)
    >>> sim.save_hdf5("results.h5")
    """

    def __init__(self, params: SimulationParams, transport: Transport):
        if transport.size != params.n_ranks:
            raise ConfigError(
                f"Configured for {params.n_ranks} ranks, transport group has {transport.size}"
            )
        self.params = params
        self.transport = transport
        self.rank = transport.rank
        self.size = transport.size

        self.spec = GridSpec.from_rank(
            params.size_x,
            params.size_y,
            params.ranks_x,
            params.ranks_y,
            self.rank,
            params.cell_length,
        )

        self.kernel = create_kernel(params.kernel, params.diffusion_constant)
        self.engine = UpdateEngine(params.diffusion_constant, params.timestep, self.kernel)
        self.protocol = HaloExchangeProtocol(transport)

        self.metrics = GlobalMetrics()
        self.timeseries = LocalMetrics()

        # Set by setup()
        self.cells = None
        self.exchange = None

    def _is_root(self) -> bool:
        """Only rank 0 aggregates metrics."""
        return self.rank == 0

    def setup(self):
        """Partition, classify and run the correspondence handshake (all ranks)."""
        initial, source = setup_problem(self.params)
        self.cells = create_partition(self.spec, initial, source)
        self.exchange = self.protocol.setup_exchange(self.cells)

        n_halo = self.transport.allreduce_sum(self.cells.n_halo)
        n_exchange = self.transport.allreduce_sum(len(self.exchange.exchange_handles()))
        initial_total = self.global_total()
        if self._is_root():
            self.metrics.n_halo_cells = int(n_halo)
            self.metrics.n_exchange_cells = int(n_exchange)
            self.metrics.initial_total = initial_total
            log.info(
                f"Grid {self.params.size_x}x{self.params.size_y} on "
                f"{self.params.ranks_x}x{self.params.ranks_y} ranks: "
                f"{int(n_halo)} halo / {int(n_exchange)} exchange cells, "
                f"initial total {initial_total:.6g}"
            )

    def warmup(self):
        """Warmup kernel (trigger Numba JIT if used)."""
        self.kernel.warmup()

    def step(self):
        """Synchronize halos, then update Local cells; records timings."""
        if self.cells is None:
            raise RuntimeError("Simulation not set up. Call setup() first.")

        t0 = self.transport.wtime()
        self.protocol.synchronize(self.cells, self.exchange)
        t1 = self.transport.wtime()
        self.engine.update(self.cells)
        t2 = self.transport.wtime()

        self.timeseries.halo_times.append(t1 - t0)
        self.timeseries.compute_times.append(t2 - t1)
        self.timeseries.local_totals.append(self.cells.local_total())

    def run(self, n_steps: Optional[int] = None) -> GlobalMetrics:
        """Advance ``n_steps`` steps (default: ``params.n_steps``) on every rank."""
        if self.cells is None:
            self.setup()
        n_steps = self.params.n_steps if n_steps is None else n_steps
        log_every = self.params.log_every

        self.transport.barrier()
        t_start = self.transport.wtime()
        for i in range(n_steps):
            self.step()
            if log_every and (i + 1) % log_every == 0:
                log.info(f"{self.rank}: Total: {self.timeseries.local_totals[-1]}")
                total = self.global_total()
                if self._is_root():
                    self.timeseries.global_totals.append(total)
        wall_time = self.transport.wtime() - t_start

        self._finalize(wall_time, n_steps)
        return self.metrics

    def _finalize(self, wall_time: float, n_steps: int):
        """Aggregate totals and timings on rank 0 (collective)."""
        final_total = self.global_total()
        if self._is_root():
            self.metrics.steps += n_steps
            self.metrics.wall_time = (self.metrics.wall_time or 0.0) + wall_time
            self.metrics.final_total = final_total
            self.metrics.total_compute_time = sum(self.timeseries.compute_times)
            self.metrics.total_halo_time = sum(self.timeseries.halo_times)
            if self.metrics.wall_time > 0:
                n_cells = self.params.size_x * self.params.size_y
                self.metrics.mlups = n_cells * self.metrics.steps / (self.metrics.wall_time * 1e6)
            log.info(
                f"Done: {self.metrics.steps} steps, total={final_total:.6g}, "
                f"time={self.metrics.wall_time:.3f}s"
            )

    # =========================================================================
    # Diagnostics (read-only on the field)
    # =========================================================================

    def local_total(self) -> float:
        return self.cells.local_total()

    def global_total(self) -> float:
        """Sum over all ranks' Local cells (collective)."""
        return self.transport.allreduce_sum(self.local_total())

    def gather_field(self) -> Optional[np.ndarray]:
        """Global concentration array of shape (size_x, size_y) on rank 0 (collective)."""
        local = self.cells.local_handles
        pieces = self.transport.gather(
            (self.cells.x[local], self.cells.y[local], self.cells.concentration[local].copy())
        )
        if pieces is None:
            return None
        field = np.full((self.params.size_x, self.params.size_y), np.nan)
        for x, y, values in pieces:
            field[x, y] = values
        return field

    def save_hdf5(self, path: str) -> None:
        """Save config, results, and timeseries to HDF5 (rank 0 only)."""
        if not self._is_root():
            return

        row = {**self.params.to_dict(), **asdict(self.metrics)}
        df_results = pd.DataFrame([row])

        # Convert string columns to avoid PyTables pickle warning
        for col in df_results.select_dtypes(include=["object"]).columns:
            df_results[col] = df_results[col].astype(str)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", pd.errors.PerformanceWarning)
            df_results.to_hdf(path, key="results", mode="w", format="table")

            ts_data = {k: v for k, v in asdict(self.timeseries).items() if v}
            if ts_data:
                max_len = max(len(v) for v in ts_data.values())
                # Pad shorter lists with NaN
                for k, v in ts_data.items():
                    if len(v) < max_len:
                        ts_data[k] = v + [float("nan")] * (max_len - len(v))
                pd.DataFrame(ts_data).to_hdf(path, key="timeseries", mode="a", format="table")

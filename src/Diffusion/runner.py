"""Run a diffusion simulation via mpiexec subprocess or in-process threads."""

import json
import logging
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path

from .datastructures import SimulationParams
from .mpi.transport import LocalTransportGroup

log = logging.getLogger(__name__)


def _run_rank(transport, params: SimulationParams, output: str = None):
    from .simulation import DiffusionSimulation

    sim = DiffusionSimulation(params, transport)
    sim.warmup()
    sim.setup()
    sim.run()
    if output:
        sim.save_hdf5(output)
    return {**params.to_dict(), **sim.metrics.to_dict()} if transport.rank == 0 else None


def run_mpi_rank(transport, params: SimulationParams, output: str = None):
    """Run one MPI rank; any failure aborts the whole job.

    Peers may be blocked in a receive from the failed rank, so the error is
    logged and the communicator aborted instead of propagated.
    """
    try:
        return _run_rank(transport, params, output)
    except Exception:
        log.exception(f"Rank {transport.rank} failed, aborting")
        transport.abort(1)


def run_threads(params: SimulationParams, output: str = None, timeout: float = None) -> dict:
    """Run all ranks as threads of this process. Returns rank 0's results."""
    group = LocalTransportGroup(params.n_ranks, timeout=timeout)
    return group.run(_run_rank, params, output)[0]


def run_simulation(n_ranks: int = 1, output: str = None, **kwargs) -> dict:
    """Run the simulation on n_ranks MPI processes.

    Parameters
    ----------
    n_ranks : int
        Number of MPI ranks
    output : str, optional
        Path to save HDF5 results (uses temp file if not provided)
    **kwargs
        SimulationParams fields: size_x, size_y, ranks_y, diffusion_constant,
        n_steps, kernel, ...

    Returns
    -------
    dict
        Results with config and metrics (or 'error' key on failure)
    """
    import pandas as pd

    if shutil.which("mpiexec") is None:
        return {"error": "mpiexec not found on PATH"}

    # Use temp file if no output path specified
    use_temp = output is None
    if use_temp:
        tmp = tempfile.NamedTemporaryFile(suffix=".h5", delete=False)
        output = tmp.name
        tmp.close()

    config = {"n_ranks": n_ranks, "output": output, **kwargs}
    cmd = [
        "mpiexec", "-n", str(n_ranks),
        sys.executable, "-m", "Diffusion.helpers.runner_helper", json.dumps(config),
    ]

    proc = subprocess.run(cmd, capture_output=True, text=True)

    if proc.returncode != 0:
        return {"error": proc.stderr}

    # Load results from HDF5
    if not Path(output).exists():
        return {"error": "No output file created", "stderr": proc.stderr}

    result = pd.read_hdf(output, key="results").iloc[0].to_dict()

    # Clean up temp file if we created one
    if use_temp:
        Path(output).unlink(missing_ok=True)

    return result

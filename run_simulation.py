"""
Unified simulation runner - runs in-process or under mpiexec based on backend.

Usage:
    python run_simulation.py n_ranks=4 backend=threads
    python run_simulation.py n_ranks=4 ranks_y=2 n_steps=500
"""

import logging
import os
import subprocess
import sys

import hydra
from omegaconf import DictConfig, OmegaConf

log = logging.getLogger(__name__)

# Forwarded to the mpiexec subprocess as key=value
_FORWARDED_KEYS = [
    "size_x", "size_y", "n_ranks", "ranks_y", "cell_length", "diffusion_constant",
    "timestep", "n_steps", "initial", "step_threshold", "source_rate", "kernel",
    "backend", "log_every", "output",
]


def _log_results(results: dict):
    log.info(
        f"Done: {results['steps']} steps, total {results['initial_total']:.6g} -> "
        f"{results['final_total']:.6g}, time={results['wall_time']:.3f}s"
        + (f", {results['mlups']:.1f} Mlup/s" if results.get("mlups") else "")
    )


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Entry point - threads in-process, or spawn MPI for n_ranks > 1."""
    from Diffusion import SimulationParams

    params = SimulationParams.from_config(cfg)
    log.info(
        f"{params.size_x}x{params.size_y} grid, n_ranks={params.n_ranks} "
        f"({params.ranks_x}x{params.ranks_y}), backend={params.backend}"
    )

    if params.backend == "threads" or params.n_ranks == 1:
        _run_threads(cfg, params)
    else:
        _spawn_mpi(cfg, params.n_ranks)


def _run_threads(cfg: DictConfig, params):
    """Run every rank as a thread of this process."""
    from Diffusion import run_threads

    results = run_threads(params, output=cfg.get("output"))
    _log_results(results)


def _spawn_mpi(cfg: DictConfig, n_ranks: int):
    """Spawn MPI subprocess."""
    env = os.environ.copy()
    env["MPI_SUBPROCESS"] = "1"

    cmd = ["mpiexec", "-n", str(n_ranks), sys.executable, os.path.abspath(__file__)]
    for key in _FORWARDED_KEYS:
        val = cfg.get(key)
        if val is not None:
            cmd.append(f"{key}={val}")

    result = subprocess.run(cmd, capture_output=True, text=True, env=env)
    for line in (result.stdout or "").strip().split("\n"):
        if line:
            log.info(line)
    for line in (result.stderr or "").strip().split("\n"):
        if line:
            log.warning(line) if "error" in line.lower() else log.info(line)
    if result.returncode != 0:
        log.error(f"mpiexec exited with code {result.returncode}")
        sys.exit(result.returncode)


def _run_mpi_simulation(cfg: DictConfig, comm):
    """Run one rank (called within mpiexec subprocess)."""
    from Diffusion import MPITransport, SimulationParams
    from Diffusion.runner import run_mpi_rank

    params = SimulationParams.from_config(cfg)
    transport = MPITransport(comm)
    results = run_mpi_rank(transport, params, cfg.get("output"))
    if transport.rank == 0:
        _log_results(results)


if __name__ == "__main__":
    if os.environ.get("MPI_SUBPROCESS"):
        from mpi4py import MPI

        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

        # Parse key=value args
        cfg_dict = {}
        for arg in sys.argv[1:]:
            if "=" in arg and not arg.startswith("-"):
                key, val = arg.split("=", 1)
                if val.lower() in ("true", "false"):
                    cfg_dict[key] = val.lower() == "true"
                    continue
                try:
                    cfg_dict[key] = float(val) if ("." in val or "e" in val.lower()) else int(val)
                except ValueError:
                    cfg_dict[key] = val

        _run_mpi_simulation(OmegaConf.create(cfg_dict), MPI.COMM_WORLD)
    else:
        main()

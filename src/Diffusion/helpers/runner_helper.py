"""MPI worker - invoked via: mpiexec -n X python -m Diffusion.helpers.runner_helper '{config}'"""

import json
import logging
import sys

from mpi4py import MPI

from Diffusion import MPITransport, SimulationParams
from Diffusion.runner import run_mpi_rank

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

config = json.loads(sys.argv[1])
output_path = config.pop("output", None)
transport = MPITransport(MPI.COMM_WORLD)

# Invalid config fails identically on every rank
params = SimulationParams(**config)
run_mpi_rank(transport, params, output_path)

if transport.rank == 0:
    # Just print the path - runner.py will load the HDF5
    print(f"RESULT:{output_path}")

"""Red/black diffusion kernels.

Simple kernel implementations - ordering and timing are handled by the engine.

A sweep updates every cell of one color in place:

    c += 0.5 * D * (c_neighbor - c)    for each of the four neighbors in turn

All neighbors of a cell have the other color, so within one sweep no cell
reads a value written by the same sweep.
"""

import numpy as np
from numba import njit


@njit
def _sweep_numba(
    concentration: np.ndarray, targets: np.ndarray, neighbors: np.ndarray, coefficient: float
):
    """Numba JIT implementation of one color sweep."""
    for i in range(targets.shape[0]):
        cell = targets[i]
        c = concentration[cell]
        for k in range(neighbors.shape[1]):
            c += coefficient * (concentration[neighbors[cell, k]] - c)
        concentration[cell] = c


class NumPyKernel:
    """NumPy-based sweep, vectorized across the cells of one color."""

    def __init__(self, diffusion_constant: float):
        self.coefficient = 0.5 * diffusion_constant

    def sweep(self, concentration: np.ndarray, targets: np.ndarray, neighbors: np.ndarray):
        """Update ``concentration[targets]`` in place from their neighbors."""
        c = concentration[targets]
        for k in range(neighbors.shape[1]):
            c += self.coefficient * (concentration[neighbors[targets, k]] - c)
        concentration[targets] = c

    def warmup(self):
        """No-op for NumPy kernel."""
        pass


class NumbaKernel:
    """Numba JIT-compiled sweep."""

    def __init__(self, diffusion_constant: float):
        self.coefficient = 0.5 * diffusion_constant

    def sweep(self, concentration: np.ndarray, targets: np.ndarray, neighbors: np.ndarray):
        """Update ``concentration[targets]`` in place from their neighbors."""
        _sweep_numba(concentration, targets, neighbors, self.coefficient)

    def warmup(self):
        """Trigger JIT compilation with a small ring of cells."""
        concentration = np.random.rand(4)
        targets = np.array([0, 2], dtype=np.int64)
        neighbors = np.array(
            [[1, 3, 1, 3], [0, 2, 0, 2], [1, 3, 1, 3], [0, 2, 0, 2]], dtype=np.int64
        )
        _sweep_numba(concentration, targets, neighbors, self.coefficient)


def create_kernel(kernel: str, diffusion_constant: float):
    """Factory: 'numpy' for vectorized sweeps, 'numba' for the JIT loop."""
    if kernel == "numpy":
        return NumPyKernel(diffusion_constant)
    elif kernel == "numba":
        return NumbaKernel(diffusion_constant)
    else:
        raise ValueError(f"Unknown kernel: {kernel}")

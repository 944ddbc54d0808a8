"""Initial concentration profiles and source terms.

Every profile maps an ``(n, 2)`` array of cell positions to ``n`` values, so it
can be evaluated on any rank's cells independently.
"""

from functools import partial

import numpy as np


def step_profile(positions: np.ndarray, threshold: float = 10.0) -> np.ndarray:
    """1.0 left of ``threshold`` (in x), 0.0 elsewhere."""
    return np.where(positions[:, 0] < threshold, 1.0, 0.0)


def gaussian_profile(
    positions: np.ndarray, center: tuple = (0.0, 0.0), width: float = 5.0
) -> np.ndarray:
    """Gaussian bump of unit height."""
    dx = positions[:, 0] - center[0]
    dy = positions[:, 1] - center[1]
    return np.exp(-(dx**2 + dy**2) / (2.0 * width**2))


def uniform_profile(positions: np.ndarray, value: float = 1.0) -> np.ndarray:
    return np.full(len(positions), value, dtype=np.float64)


def constant_source(positions: np.ndarray, rate: float = 0.0) -> np.ndarray:
    return np.full(len(positions), rate, dtype=np.float64)


def setup_problem(params):
    """Initial-profile and source callables for a SimulationParams."""
    if params.initial == "step":
        initial = partial(step_profile, threshold=params.step_threshold)
    elif params.initial == "gaussian":
        center = (
            0.5 * params.size_x * params.cell_length,
            0.5 * params.size_y * params.cell_length,
        )
        initial = partial(gaussian_profile, center=center, width=0.1 * params.size_x * params.cell_length)
    elif params.initial == "uniform":
        initial = uniform_profile
    else:
        raise ValueError(f"Unknown initial profile: {params.initial}")

    source = partial(constant_source, rate=params.source_rate)
    return initial, source

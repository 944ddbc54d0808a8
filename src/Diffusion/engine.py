"""Explicit source + red/black diffusion update of the Local cells of one rank."""

from __future__ import annotations

from .datastructures import CellTable, Color, ExchangeTable
from .kernels import NumPyKernel


class UpdateEngine:
    """Advances the Local cells of a CellTable by one step.

    Order per step: source term on every Local cell, then the red sweep, then
    the black sweep (which sees the freshly updated red values). Halo values
    are read, never written.

    Parameters
    ----------
    diffusion_constant : float
        Coupling strength D; each neighbor contributes ``0.5 * D * difference``.
    timestep : float
        Multiplies the source rate.
    kernel : NumPyKernel or NumbaKernel, optional
        Sweep implementation (default: NumPyKernel).
    """

    def __init__(self, diffusion_constant: float, timestep: float = 1.0, kernel=None):
        self.diffusion_constant = diffusion_constant
        self.timestep = timestep
        self.kernel = kernel if kernel is not None else NumPyKernel(diffusion_constant)

    def apply_source(self, cells: CellTable):
        local = cells.local_handles
        cells.concentration[local] += cells.source_rate[local] * self.timestep

    def diffuse(self, cells: CellTable):
        for color in (Color.RED, Color.BLACK):
            self.kernel.sweep(
                cells.concentration, cells.handles_of_color(color), cells.neighbors
            )

    def update(self, cells: CellTable):
        """Source, then red, then black."""
        self.apply_source(cells)
        self.diffuse(cells)


def step(cells: CellTable, table: ExchangeTable, protocol, engine: UpdateEngine) -> CellTable:
    """One simulation step: synchronize halos, then update Local cells.

    Must be called by every rank in lockstep.
    """
    protocol.synchronize(cells, table)
    engine.update(cells)
    return cells

"""Cell classification, halo ownership and construction of the cell arena.

Halo rule
---------
A cell that is not Local to a rank is Halo iff at least one of its four
diagonal (wrapped) neighbors is Local to that rank. This can include a cell
that only a single Local cell reads.

Coloring
--------
Diagonal offsets keep ``x + y`` parity fixed, so the two update groups are
split by the parity of the row-major index ``y * size_x + x``. With an even
``size_x`` this is ``x % 2`` and every diagonal neighbor has the opposite
color, also across the wrap-around.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np

from .datastructures import CellRole, CellTable, Color
from .decomposition import CellId, GridSpec
from .errors import TopologyError

log = logging.getLogger(__name__)

# (dx, dy) of the coupled cells
DIAGONAL_OFFSETS = ((-1, -1), (1, -1), (-1, 1), (1, 1))


class CellClassifier:
    """Local / Halo classification and stencil geometry for one rank."""

    def __init__(self, spec: GridSpec):
        self.spec = spec

    def neighbors(self, cell: CellId) -> list[CellId]:
        """The four diagonal neighbors, wrapped onto the torus."""
        return [cell.offset(dx, dy) for dx, dy in DIAGONAL_OFFSETS]

    def is_local(self, cell: CellId) -> bool:
        return cell.with_spec(self.spec).is_local()

    def is_halo(self, cell: CellId) -> bool:
        cell = cell.with_spec(self.spec)
        if cell.is_local():
            return False
        return any(neighbor.is_local() for neighbor in self.neighbors(cell))

    def classify(self, cell: CellId) -> CellRole:
        if self.is_local(cell):
            return CellRole.LOCAL
        if self.is_halo(cell):
            return CellRole.HALO
        return CellRole.NONE

    def color(self, cell: CellId) -> Color:
        return Color((cell.y * self.spec.size_x + cell.x) % 2)


class OwnerResolver:
    """Find which rank owns a cell by testing every other rank's partition."""

    def __init__(self, spec: GridSpec):
        self.spec = spec
        self._other_specs = [spec.for_rank(r) for r in spec.other_ranks()]

    def owner_rank(self, cell: CellId) -> int:
        """Owner of a Halo cell.

        Raises
        ------
        TopologyError
            If no other rank claims the cell.
        """
        for other in self._other_specs:
            if cell.with_spec(other).is_local():
                return other.rank
        raise TopologyError(
            f"Rank {self.spec.rank}: no rank owns halo cell ({cell.x}, {cell.y})"
        )


def _uniform_zero(positions: np.ndarray) -> np.ndarray:
    return np.zeros(len(positions))


def create_partition(
    spec: GridSpec,
    initial: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    source: Optional[Callable[[np.ndarray], np.ndarray]] = None,
) -> CellTable:
    """Classify this rank's cells and build the cell arena.

    Parameters
    ----------
    spec : GridSpec
        Geometry as seen from this rank.
    initial : callable, optional
        Maps an ``(n, 2)`` array of positions to initial concentrations.
        Defaults to zero everywhere.
    source : callable, optional
        Maps positions to constant source rates. Defaults to zero.

    Returns
    -------
    CellTable
        Local and Halo cells. Local cells come first, in x-major order.
    """
    initial = initial or _uniform_zero
    source = source or _uniform_zero

    classifier = CellClassifier(spec)
    resolver = OwnerResolver(spec)

    local_cells = list(spec.iter_local_cells())
    halo_cells = [cell for cell in spec.iter_cells() if classifier.is_halo(cell)]
    cells = local_cells + halo_cells
    handles = {(cell.x, cell.y): handle for handle, cell in enumerate(cells)}

    n = len(cells)
    n_local = len(local_cells)
    role = np.full(n, CellRole.HALO, dtype=np.int8)
    role[:n_local] = CellRole.LOCAL
    owner = np.full(n, spec.rank, dtype=np.int32)
    color = np.full(n, -1, dtype=np.int8)
    neighbors = np.full((n, len(DIAGONAL_OFFSETS)), -1, dtype=np.int64)

    for handle, cell in enumerate(local_cells):
        color[handle] = classifier.color(cell)
        for k, neighbor in enumerate(classifier.neighbors(cell)):
            try:
                neighbors[handle, k] = handles[(neighbor.x, neighbor.y)]
            except KeyError:
                raise TopologyError(
                    f"Rank {spec.rank}: neighbor ({neighbor.x}, {neighbor.y}) of "
                    f"local cell ({cell.x}, {cell.y}) is neither local nor halo"
                ) from None

    for handle, cell in enumerate(halo_cells, start=n_local):
        owner[handle] = resolver.owner_rank(cell)

    x = np.array([cell.x for cell in cells], dtype=np.int64)
    y = np.array([cell.y for cell in cells], dtype=np.int64)
    position = np.array([cell.position for cell in cells], dtype=np.float64).reshape(n, 2)

    table = CellTable(
        rank=spec.rank,
        x=x,
        y=y,
        position=position,
        role=role,
        owner=owner,
        color=color,
        neighbors=neighbors,
        concentration=np.asarray(initial(position), dtype=np.float64).copy(),
        source_rate=np.asarray(source(position), dtype=np.float64).copy(),
    )
    log.debug(
        f"Rank {spec.rank}: {table.n_local} local, {table.n_halo} halo cells"
    )
    return table

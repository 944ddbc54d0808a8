"""Domain decomposition of a toroidal 2D grid.

Pure geometric decomposition with no MPI dependencies. The global grid of
``size_x x size_y`` cells is tiled by a ``num_ranks_x x num_ranks_y``
process grid; every rank owns one equally sized sub-rectangle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from .errors import ConfigError


@dataclass(frozen=True)
class GridSpec:
    """Global grid geometry as seen from one rank.

    Parameters
    ----------
    size_x, size_y : int
        Global grid size in cells. Both must be even.
    num_ranks_x, num_ranks_y : int
        Shape of the process grid. Must tile the global grid exactly.
    rank_x, rank_y : int
        Coordinates of this rank in the process grid.
    cell_length : float
        Physical edge length of one cell (positions are ``index * cell_length``).

    Raises
    ------
    ConfigError
        If the process grid does not tile the global grid, a size is odd,
        or the rank coordinates fall outside the process grid.

    Examples
    --------
    >>> spec = GridSpec(60, 60, 4, 1, 2, 0)
    >>> spec.local_size_x, spec.rank
    (15, 2)
    """

    size_x: int
    size_y: int
    num_ranks_x: int = 1
    num_ranks_y: int = 1
    rank_x: int = 0
    rank_y: int = 0
    cell_length: float = 1.0

    local_size_x: int = field(init=False, repr=False, compare=False)
    local_size_y: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.size_x <= 0 or self.size_y <= 0:
            raise ConfigError(
                f"Grid size must be positive, got {self.size_x}x{self.size_y}"
            )
        if self.num_ranks_x <= 0 or self.num_ranks_y <= 0:
            raise ConfigError(
                f"Process grid must be positive, got "
                f"{self.num_ranks_x}x{self.num_ranks_y}"
            )
        if self.size_x % self.num_ranks_x != 0:
            raise ConfigError(
                f"size_x={self.size_x} is not divisible by num_ranks_x={self.num_ranks_x}"
            )
        if self.size_y % self.num_ranks_y != 0:
            raise ConfigError(
                f"size_y={self.size_y} is not divisible by num_ranks_y={self.num_ranks_y}"
            )
        if self.size_x % 2 != 0 or self.size_y % 2 != 0:
            raise ConfigError(
                f"Grid sizes must be even for the red/black coloring, "
                f"got {self.size_x}x{self.size_y}"
            )
        if not (0 <= self.rank_x < self.num_ranks_x and 0 <= self.rank_y < self.num_ranks_y):
            raise ConfigError(
                f"Rank coordinates ({self.rank_x}, {self.rank_y}) outside process grid "
                f"{self.num_ranks_x}x{self.num_ranks_y}"
            )
        # Frozen dataclass: derived fields go through object.__setattr__
        object.__setattr__(self, "local_size_x", self.size_x // self.num_ranks_x)
        object.__setattr__(self, "local_size_y", self.size_y // self.num_ranks_y)

    @classmethod
    def from_rank(
        cls,
        size_x: int,
        size_y: int,
        num_ranks_x: int,
        num_ranks_y: int,
        rank: int,
        cell_length: float = 1.0,
    ) -> "GridSpec":
        """Build the GridSpec for a flat (row-major) rank id."""
        n_ranks = num_ranks_x * num_ranks_y
        if not 0 <= rank < n_ranks:
            raise ConfigError(f"Rank {rank} outside process group of size {n_ranks}")
        rank_y, rank_x = divmod(rank, num_ranks_x)
        return cls(size_x, size_y, num_ranks_x, num_ranks_y, rank_x, rank_y, cell_length)

    # =========================================================================
    # Process grid
    # =========================================================================

    @property
    def num_ranks(self) -> int:
        return self.num_ranks_x * self.num_ranks_y

    @property
    def rank(self) -> int:
        """Flat rank id of this GridSpec (row-major over the process grid)."""
        return self.rank_y * self.num_ranks_x + self.rank_x

    def for_rank(self, rank: int) -> "GridSpec":
        """Same global grid and process grid, seen from another rank."""
        return GridSpec.from_rank(
            self.size_x,
            self.size_y,
            self.num_ranks_x,
            self.num_ranks_y,
            rank,
            self.cell_length,
        )

    def other_ranks(self) -> Iterator[int]:
        """All ranks of the process grid except this one, in ascending order."""
        return (r for r in range(self.num_ranks) if r != self.rank)

    # =========================================================================
    # Cell iteration
    # =========================================================================

    def cell(self, x: int, y: int) -> "CellId":
        """Cell at global coordinates, wrapped onto the torus."""
        return CellId(x % self.size_x, y % self.size_y, self)

    def iter_cells(self) -> Iterator["CellId"]:
        """All global cells, x-major. Lazy; call again to restart."""
        for x in range(self.size_x):
            for y in range(self.size_y):
                yield CellId(x, y, self)

    def iter_local_cells(self) -> Iterator["CellId"]:
        """Cells owned by this rank."""
        return (cell for cell in self.iter_cells() if cell.is_local())

    def iter_local_and_halo_cells(self) -> Iterator["CellId"]:
        """Cells owned by this rank plus the halo cells its stencil reads."""
        from .classification import CellClassifier

        classifier = CellClassifier(self)
        return (
            cell
            for cell in self.iter_cells()
            if cell.is_local() or classifier.is_halo(cell)
        )

    @property
    def n_local_cells(self) -> int:
        return self.local_size_x * self.local_size_y

    @property
    def global_start(self) -> tuple[int, int]:
        """First owned global index (x, y)."""
        return (self.local_size_x * self.rank_x, self.local_size_y * self.rank_y)

    @property
    def global_end(self) -> tuple[int, int]:
        """One past the last owned global index (x, y)."""
        x0, y0 = self.global_start
        return (x0 + self.local_size_x, y0 + self.local_size_y)


@dataclass(frozen=True)
class CellId:
    """Global cell coordinates, interpreted under one rank's GridSpec.

    The same ``(x, y)`` can be Local under one GridSpec and Halo under another,
    so the GridSpec is part of the identity.
    """

    x: int
    y: int
    spec: GridSpec

    def with_spec(self, spec: GridSpec) -> "CellId":
        """Same coordinates seen from another rank."""
        return CellId(self.x, self.y, spec)

    def offset(self, dx: int, dy: int) -> "CellId":
        """Neighboring cell, wrapped onto the torus."""
        return self.spec.cell(self.x + dx, self.y + dy)

    @property
    def local_x(self) -> int:
        return self.x - self.spec.local_size_x * self.spec.rank_x

    @property
    def local_y(self) -> int:
        return self.y - self.spec.local_size_y * self.spec.rank_y

    def is_local(self) -> bool:
        """True if this cell is owned (and updated) by the GridSpec's rank."""
        return (
            0 <= self.local_x < self.spec.local_size_x
            and 0 <= self.local_y < self.spec.local_size_y
        )

    @property
    def position(self) -> tuple[float, float]:
        """Physical position, a deterministic function of the indices."""
        length = self.spec.cell_length
        return (float(self.x) * length, float(self.y) * length)

"""Tests for grid partitioning."""

import numpy as np
import pytest
from Diffusion import CellId, ConfigError, GridSpec


TILINGS = [(4, 4, 2, 1), (8, 6, 2, 3), (12, 8, 4, 2), (6, 6, 1, 1), (4, 4, 4, 4), (10, 4, 5, 2)]


class TestGridSpecValidation:
    """Construction enforces exact tiling and even sizes."""

    @pytest.mark.parametrize(
        "args",
        [
            (10, 10, 3, 1, 0, 0),  # size_x not divisible
            (12, 10, 2, 3, 0, 0),  # size_y not divisible
            (5, 4, 1, 1, 0, 0),    # odd size_x
        ],
    )
    def test_invalid_tiling_raises(self, args):
        with pytest.raises(ConfigError):
            GridSpec(*args)

    def test_odd_size_y_raises(self):
        with pytest.raises(ConfigError):
            GridSpec(4, 9, 1, 3, 0, 0)

    @pytest.mark.parametrize("rank_x,rank_y", [(2, 0), (0, 1), (-1, 0)])
    def test_rank_outside_process_grid_raises(self, rank_x, rank_y):
        with pytest.raises(ConfigError):
            GridSpec(8, 8, 2, 1, rank_x, rank_y)

    def test_non_positive_process_grid_raises(self):
        with pytest.raises(ConfigError):
            GridSpec(8, 8, 0, 1, 0, 0)

    def test_config_error_is_value_error(self):
        """ConfigError can be caught as a ValueError by callers."""
        with pytest.raises(ValueError):
            GridSpec(3, 4)

    def test_derived_local_sizes(self):
        spec = GridSpec(60, 40, 4, 2, 3, 1)
        assert spec.local_size_x == 15
        assert spec.local_size_y == 20
        assert spec.global_start == (45, 20)
        assert spec.global_end == (60, 40)
        assert spec.n_local_cells == 300


class TestRankNumbering:
    """Flat ranks are row-major over the process grid."""

    def test_from_rank_roundtrip(self):
        for rank in range(6):
            spec = GridSpec.from_rank(12, 12, 3, 2, rank)
            assert spec.rank == rank
            assert spec.num_ranks == 6

    def test_from_rank_coordinates(self):
        spec = GridSpec.from_rank(12, 12, 3, 2, 4)
        assert (spec.rank_x, spec.rank_y) == (1, 1)

    def test_from_rank_out_of_range(self):
        with pytest.raises(ConfigError):
            GridSpec.from_rank(12, 12, 3, 2, 6)

    def test_for_rank_keeps_geometry(self):
        spec = GridSpec(12, 8, 2, 2, 0, 0, cell_length=0.5)
        other = spec.for_rank(3)
        assert (other.rank_x, other.rank_y) == (1, 1)
        assert other.size_x == 12 and other.size_y == 8
        assert other.cell_length == 0.5

    def test_other_ranks(self):
        spec = GridSpec.from_rank(8, 8, 2, 2, 2)
        assert list(spec.other_ranks()) == [0, 1, 3]


class TestCoverage:
    """Local cells of all ranks tile the global grid."""

    @pytest.mark.parametrize("size_x,size_y,ranks_x,ranks_y", TILINGS)
    def test_full_coverage_no_overlaps(self, size_x, size_y, ranks_x, ranks_y):
        """Each cell owned by exactly one rank."""
        owners = np.zeros((size_x, size_y), dtype=int)
        for rank in range(ranks_x * ranks_y):
            spec = GridSpec.from_rank(size_x, size_y, ranks_x, ranks_y, rank)
            for cell in spec.iter_local_cells():
                owners[cell.x, cell.y] += 1
        assert np.all(owners == 1)

    def test_local_cell_count(self):
        spec = GridSpec.from_rank(12, 8, 4, 2, 5)
        assert len(list(spec.iter_local_cells())) == spec.n_local_cells == 12

    def test_iteration_is_restartable(self):
        spec = GridSpec(6, 4)
        first = list(spec.iter_cells())
        second = list(spec.iter_cells())
        assert first == second
        assert len(first) == 24

    def test_iteration_order_is_x_major(self):
        cells = list(GridSpec(4, 2).iter_cells())
        assert [(c.x, c.y) for c in cells[:3]] == [(0, 0), (0, 1), (1, 0)]

    def test_local_and_halo_includes_local(self):
        spec = GridSpec.from_rank(8, 8, 2, 1, 1)
        local = set((c.x, c.y) for c in spec.iter_local_cells())
        both = set((c.x, c.y) for c in spec.iter_local_and_halo_cells())
        assert local < both


class TestCellId:
    """Cell identity, wrap-around and positions."""

    def test_wrap(self):
        spec = GridSpec(6, 4)
        cell = spec.cell(-1, 4)
        assert (cell.x, cell.y) == (5, 0)

    def test_offset_wraps(self):
        spec = GridSpec(6, 4)
        cell = spec.cell(5, 3).offset(1, 1)
        assert (cell.x, cell.y) == (0, 0)

    def test_local_coordinates(self):
        spec = GridSpec(8, 8, 2, 2, 1, 1)
        cell = CellId(5, 6, spec)
        assert (cell.local_x, cell.local_y) == (1, 2)
        assert cell.is_local()
        assert not CellId(3, 6, spec).is_local()

    def test_identity_depends_on_grid_spec(self):
        """Same coordinates under different rank specs are different ids."""
        spec0 = GridSpec.from_rank(4, 4, 2, 1, 0)
        spec1 = spec0.for_rank(1)
        assert CellId(1, 0, spec0) != CellId(1, 0, spec1)
        assert CellId(1, 0, spec0) == CellId(1, 0, GridSpec.from_rank(4, 4, 2, 1, 0))

    def test_classification_changes_with_grid_spec(self):
        spec0 = GridSpec.from_rank(4, 4, 2, 1, 0)
        cell = CellId(1, 0, spec0)
        assert cell.is_local()
        assert not cell.with_spec(spec0.for_rank(1)).is_local()

    def test_position_uses_cell_length(self):
        spec = GridSpec(4, 4, cell_length=2.5)
        assert spec.cell(3, 1).position == (7.5, 2.5)

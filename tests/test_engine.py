"""Tests for the update engine and the per-step driver."""

import numpy as np
import pytest
from Diffusion import (
    CellRole,
    Color,
    GridSpec,
    HaloExchangeProtocol,
    NumbaKernel,
    UpdateEngine,
    create_partition,
    step,
)


def ramp(positions):
    return positions[:, 0] + 10.0 * positions[:, 1]


@pytest.mark.parametrize("n_ranks,ranks_y", [(1, 1), (2, 1), (4, 2)])
def test_zero_diffusion_without_source_changes_nothing(run_ranks, n_ranks, ranks_y):
    ranks_x = n_ranks // ranks_y

    def target(transport):
        spec = GridSpec.from_rank(8, 8, ranks_x, ranks_y, transport.rank)
        cells = create_partition(spec, ramp)
        protocol = HaloExchangeProtocol(transport)
        table = protocol.setup_exchange(cells)
        before = cells.concentration.copy()
        engine = UpdateEngine(0.0)
        for _ in range(3):
            step(cells, table, protocol, engine)
        return before, cells.concentration.copy()

    for before, after in run_ranks(n_ranks, target):
        np.testing.assert_array_equal(after, before)


def test_source_only_touches_local_cells():
    spec = GridSpec(8, 4, 2, 1, 0, 0)
    cells = create_partition(spec, source=lambda p: np.full(len(p), 0.5))
    engine = UpdateEngine(0.0, timestep=2.0)
    engine.update(cells)

    np.testing.assert_allclose(cells.concentration[cells.local_handles], 1.0)
    np.testing.assert_array_equal(cells.concentration[cells.halo_handles], 0.0)


def test_update_never_writes_halo_cells():
    spec = GridSpec(8, 8, 2, 2, 1, 1)
    rng = np.random.default_rng(0)
    cells = create_partition(spec, initial=lambda p: rng.random(len(p)))
    halo_before = cells.concentration[cells.halo_handles].copy()

    UpdateEngine(0.7).update(cells)

    np.testing.assert_array_equal(cells.concentration[cells.halo_handles], halo_before)
    assert np.all(cells.role[cells.halo_handles] == CellRole.HALO)


def test_source_then_red_then_black():
    cells = create_partition(GridSpec(4, 4), initial=ramp, source=lambda p: np.full(len(p), 0.25))
    expected = cells.concentration.copy()
    expected += 0.25
    for color in (Color.RED, Color.BLACK):
        for handle in cells.handles_of_color(color):
            for neighbor in cells.neighbors[handle]:
                expected[handle] += 0.5 * 0.4 * (expected[neighbor] - expected[handle])

    UpdateEngine(0.4).update(cells)

    np.testing.assert_allclose(cells.concentration, expected, atol=1e-12)


def test_engine_with_numba_kernel_matches_default():
    spec = GridSpec(6, 6)
    a = create_partition(spec, ramp)
    b = create_partition(spec, ramp)
    for _ in range(4):
        UpdateEngine(0.3).update(a)
        UpdateEngine(0.3, kernel=NumbaKernel(0.3)).update(b)
    np.testing.assert_allclose(a.concentration, b.concentration, atol=1e-12)


def test_step_refreshes_halos_before_update(run_ranks):
    """After step(), every halo value came from its owner before the owner updated."""

    def target(transport):
        spec = GridSpec.from_rank(8, 4, 2, 1, transport.rank)
        cells = create_partition(spec, ramp)
        protocol = HaloExchangeProtocol(transport)
        table = protocol.setup_exchange(cells)
        owned = {
            (int(x), int(y)): float(c)
            for x, y, c in zip(
                cells.x[cells.local_handles],
                cells.y[cells.local_handles],
                cells.concentration[cells.local_handles],
            )
        }
        cells.concentration[cells.halo_handles] = -1.0
        step(cells, table, protocol, UpdateEngine(0.5))
        halos = {
            (int(x), int(y)): float(c)
            for x, y, c in zip(
                cells.x[cells.halo_handles],
                cells.y[cells.halo_handles],
                cells.concentration[cells.halo_handles],
            )
        }
        return owned, halos

    results = run_ranks(2, target)
    initial = {**results[0][0], **results[1][0]}
    for _, halos in results:
        for key, value in halos.items():
            assert value == initial[key]

"""Shared fixtures: run code on an in-process group of ranks."""

import pytest

from Diffusion import GridSpec, HaloExchangeProtocol, LocalTransportGroup, create_partition


@pytest.fixture
def run_ranks():
    """Run ``target(transport, *args)`` on ``size`` thread ranks, return per-rank results."""

    def _run(size, target, *args, timeout=10.0, **kwargs):
        return LocalTransportGroup(size, timeout=timeout).run(target, *args, **kwargs)

    return _run


@pytest.fixture
def setup_ranks(run_ranks):
    """Partition + correspondence setup on every rank; returns [(cells, table), ...]."""

    def _setup(size_x, size_y, ranks_x, ranks_y, initial=None, source=None):
        def target(transport):
            spec = GridSpec.from_rank(size_x, size_y, ranks_x, ranks_y, transport.rank)
            cells = create_partition(spec, initial, source)
            table = HaloExchangeProtocol(transport).setup_exchange(cells)
            return cells, table

        return run_ranks(ranks_x * ranks_y, target)

    return _setup

"""Tests for the in-process thread transport."""

import pytest
from Diffusion import CommunicationError, LocalTransportGroup


class TestPointToPoint:
    """Send/receive between thread ranks."""

    def test_ring_exchange(self, run_ranks):
        """Each rank sends its id to the next rank and receives from the previous."""

        def ring(transport):
            right = (transport.rank + 1) % transport.size
            left = (transport.rank - 1) % transport.size
            transport.send(right, 1, bytes([transport.rank]))
            received = transport.recv(left, 1)
            transport.flush()
            return received[0]

        assert run_ranks(4, ring) == [3, 0, 1, 2]

    def test_pair_order_preserved(self, run_ranks):
        def target(transport):
            if transport.rank == 0:
                for i in range(5):
                    transport.send(1, 7, bytes([i]))
                return None
            return [transport.recv(0, 7)[0] for _ in range(5)]

        assert run_ranks(2, target)[1] == [0, 1, 2, 3, 4]

    def test_matched_by_tag(self, run_ranks):
        """A receive for tag B skips (and keeps) an earlier message with tag A."""

        def target(transport):
            if transport.rank == 0:
                transport.send(1, 10, b"first")
                transport.send(1, 20, b"second")
                return None
            return transport.recv(0, 20), transport.recv(0, 10)

        assert run_ranks(2, target)[1] == (b"second", b"first")

    def test_matched_by_sender(self, run_ranks):
        """Messages from different senders are received by source, not arrival."""

        def target(transport):
            if transport.rank == 0:
                return [transport.recv(source, 5) for source in (2, 1)]
            transport.send(0, 5, f"from {transport.rank}".encode())
            return None

        assert run_ranks(3, target)[0] == [b"from 2", b"from 1"]

    def test_send_to_self_raises(self, run_ranks):
        def target(transport):
            transport.send(transport.rank, 1, b"")

        with pytest.raises(CommunicationError):
            run_ranks(1, target)

    def test_other_ranks(self):
        transport = LocalTransportGroup(3).transport(1)
        assert transport.other_ranks() == [0, 2]


class TestCollectives:
    """allreduce, gather and barrier across thread ranks."""

    def test_allreduce_sum(self, run_ranks):
        assert run_ranks(4, lambda t: t.allreduce_sum(t.rank + 1.0)) == [10.0] * 4

    def test_repeated_allreduce(self, run_ranks):
        def target(transport):
            return [transport.allreduce_sum(float(i * transport.rank)) for i in range(3)]

        assert run_ranks(3, target)[2] == [0.0, 3.0, 6.0]

    def test_gather_on_root(self, run_ranks):
        results = run_ranks(3, lambda t: t.gather(t.rank * 10))
        assert results == [[0, 10, 20], None, None]


class TestFailure:
    """Failures propagate instead of hanging."""

    def test_rank_error_reraised_and_peers_cancelled(self, run_ranks):
        def target(transport):
            if transport.rank == 1:
                raise RuntimeError("rank 1 broke")
            # Would block forever without cancellation
            return transport.recv(1, 3)

        with pytest.raises(RuntimeError, match="rank 1 broke"):
            run_ranks(3, target, timeout=None)

    def test_receive_timeout(self, run_ranks):
        def target(transport):
            if transport.rank == 0:
                transport.recv(1, 3)

        with pytest.raises(CommunicationError, match="no message from rank 1"):
            run_ranks(2, target, timeout=0.2)

    def test_invalid_group_size(self):
        with pytest.raises(ValueError):
            LocalTransportGroup(0)

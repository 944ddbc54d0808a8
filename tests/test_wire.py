"""Tests for the length-prefixed record codec."""

import numpy as np
import pytest
from Diffusion import CommunicationError
from Diffusion.mpi import wire


class TestRecordLayout:
    """Fixed record sizes on the wire."""

    def test_record_sizes(self):
        assert wire.POSITION_RECORD.itemsize == 24
        assert wire.CONCENTRATION_RECORD.itemsize == 16
        assert wire.LINK_RECORD.itemsize == 16

    def test_payload_size_is_prefix_plus_records(self):
        records = wire.concentration_records(np.array([1.5, 2.5]), np.array([7, 9]))
        payload = wire.encode(records, wire.CONCENTRATION_RECORD)
        assert len(payload) == 8 + 2 * 16
        assert int(np.frombuffer(payload[:8], dtype="<u8")[0]) == 2


class TestDecode:
    """Decoding validates sizes."""

    def test_positions_decode(self):
        positions = np.array([[0.0, 3.0], [2.0, 1.0]])
        records = wire.position_records(positions, np.array([4, 11]))
        decoded = wire.decode(wire.encode(records, wire.POSITION_RECORD), wire.POSITION_RECORD)
        assert decoded["x"].tolist() == [0.0, 2.0]
        assert decoded["y"].tolist() == [3.0, 1.0]
        assert decoded["remote_handle"].tolist() == [4, 11]

    def test_empty_message(self):
        records = wire.position_records(np.empty((0, 2)), np.empty(0, dtype=np.int64))
        payload = wire.encode(records, wire.POSITION_RECORD)
        assert len(payload) == 8
        assert len(wire.decode(payload, wire.POSITION_RECORD)) == 0

    def test_decoded_array_is_writable(self):
        records = wire.link_records(np.array([1]), np.array([2]))
        decoded = wire.decode(wire.encode(records, wire.LINK_RECORD), wire.LINK_RECORD)
        decoded["local_handle"][0] = 5
        assert decoded["local_handle"][0] == 5

    def test_truncated_prefix_raises(self):
        with pytest.raises(CommunicationError):
            wire.decode(b"\x01\x00", wire.CONCENTRATION_RECORD)

    def test_wrong_record_count_raises(self):
        records = wire.concentration_records(np.array([1.0, 2.0]), np.array([0, 1]))
        payload = wire.encode(records, wire.CONCENTRATION_RECORD)
        with pytest.raises(CommunicationError, match="announces 2 records"):
            wire.decode(payload[:-16], wire.CONCENTRATION_RECORD)

    def test_wrong_record_type_raises(self):
        """A position message decoded as concentrations does not fit."""
        records = wire.position_records(np.array([[1.0, 1.0]]), np.array([3]))
        payload = wire.encode(records, wire.POSITION_RECORD)
        with pytest.raises(CommunicationError):
            wire.decode(payload, wire.CONCENTRATION_RECORD)

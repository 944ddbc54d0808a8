"""Wire format for halo exchange messages.

Every message is a little-endian ``uint64`` record count followed by that many
packed fixed-size records. Record layouts are numpy structured dtypes, so a
message decodes into a record array without per-record Python work.
"""

from __future__ import annotations

import numpy as np

from ..errors import CommunicationError

# Message tags (one per message kind)
TAG_POSITIONS = 101
TAG_LINKS = 102
TAG_CONCENTRATIONS = 103

LENGTH_PREFIX = np.dtype("<u8")

# Correspondence setup: position of a halo cell and its handle on the sender
POSITION_RECORD = np.dtype([("x", "<f8"), ("y", "<f8"), ("remote_handle", "<u8")])

# Correspondence acknowledgement: halo handle on the receiver, exchange handle on the sender
LINK_RECORD = np.dtype([("local_handle", "<u8"), ("remote_handle", "<u8")])

# Per-step synchronization: value for the receiver's halo handle
CONCENTRATION_RECORD = np.dtype([("value", "<f8"), ("remote_handle", "<u8")])


def encode(records: np.ndarray, dtype: np.dtype) -> bytes:
    """Pack a record array into a length-prefixed payload."""
    records = np.ascontiguousarray(records, dtype=dtype)
    prefix = np.array([len(records)], dtype=LENGTH_PREFIX)
    return prefix.tobytes() + records.tobytes()


def decode(payload: bytes, dtype: np.dtype) -> np.ndarray:
    """Unpack a length-prefixed payload into a record array.

    Raises
    ------
    CommunicationError
        If the payload is truncated or its size disagrees with the prefix.
    """
    if len(payload) < LENGTH_PREFIX.itemsize:
        raise CommunicationError(
            f"Message of {len(payload)} bytes is shorter than its length prefix"
        )
    count = int(np.frombuffer(payload, dtype=LENGTH_PREFIX, count=1)[0])
    body = len(payload) - LENGTH_PREFIX.itemsize
    if body != count * dtype.itemsize:
        raise CommunicationError(
            f"Message announces {count} records of {dtype.itemsize} bytes "
            f"but carries {body} bytes"
        )
    if count == 0:
        return np.empty(0, dtype=dtype)
    return np.frombuffer(payload, dtype=dtype, offset=LENGTH_PREFIX.itemsize).copy()


def position_records(positions: np.ndarray, handles: np.ndarray) -> np.ndarray:
    records = np.empty(len(handles), dtype=POSITION_RECORD)
    records["x"] = positions[:, 0]
    records["y"] = positions[:, 1]
    records["remote_handle"] = handles
    return records


def link_records(local_handles: np.ndarray, remote_handles: np.ndarray) -> np.ndarray:
    records = np.empty(len(local_handles), dtype=LINK_RECORD)
    records["local_handle"] = local_handles
    records["remote_handle"] = remote_handles
    return records


def concentration_records(values: np.ndarray, remote_handles: np.ndarray) -> np.ndarray:
    records = np.empty(len(remote_handles), dtype=CONCENTRATION_RECORD)
    records["value"] = values
    records["remote_handle"] = remote_handles
    return records

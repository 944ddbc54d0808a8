"""Halo exchange protocol: one-time correspondence setup, per-step sync.

Both phases follow the same schedule on every rank: issue all sends, then
receive from each expected peer by explicit source, then complete the sends.
Sends are non-blocking in every Transport, so the schedule cannot deadlock.
"""

from __future__ import annotations

import logging
from typing import Dict

import numpy as np

from ..datastructures import CellRole, CellTable, ExchangeTable
from ..errors import CommunicationError, TopologyError
from . import wire
from .transport import Transport

log = logging.getLogger(__name__)


class HaloExchangeProtocol:
    """Exchange of halo values between ranks.

    Parameters
    ----------
    transport : Transport
        Point-to-point messaging for this rank. Must belong to a group whose
        size matches the process grid the cells were partitioned for.

    Example
    -------
    >>> protocol = HaloExchangeProtocol(MPITransport())
    >>> table = protocol.setup_exchange(cells)   # once, all ranks
    >>> protocol.synchronize(cells, table)       # every step, all ranks
    """

    def __init__(self, transport: Transport):
        self.transport = transport
        self.rank = transport.rank

    # =========================================================================
    # Phase (a): correspondence setup
    # =========================================================================

    def setup_exchange(self, cells: CellTable) -> ExchangeTable:
        """Match this rank's halo cells with the owners' exchange cells.

        Raises
        ------
        TopologyError
            If a received position matches no local cell, or a halo cell is
            not acknowledged exactly once by its owner.
        CommunicationError
            If a message is malformed.
        """
        transport = self.transport
        if cells.rank != self.rank:
            raise TopologyError(
                f"Cells were partitioned for rank {cells.rank}, transport is rank {self.rank}"
            )
        halo_by_owner = cells.halo_owners()
        unknown = set(halo_by_owner) - set(transport.other_ranks())
        if unknown:
            raise TopologyError(
                f"Rank {self.rank}: halo owners {sorted(unknown)} are not in a "
                f"group of size {transport.size}"
            )

        # 1-2. Send every other rank the positions of the halo cells it owns
        for peer in transport.other_ranks():
            handles = halo_by_owner.get(peer, np.empty(0, dtype=np.int64))
            records = wire.position_records(cells.position[handles], handles)
            transport.send(peer, wire.TAG_POSITIONS, wire.encode(records, wire.POSITION_RECORD))

        # 3-4. Receive one group from every other rank, match positions exactly
        local_by_position = {
            (float(px), float(py)): int(handle)
            for handle, (px, py) in zip(cells.local_handles, cells.position[cells.local_handles])
        }
        table = ExchangeTable(rank=self.rank)
        for peer in transport.other_ranks():
            records = wire.decode(
                transport.recv(peer, wire.TAG_POSITIONS), wire.POSITION_RECORD
            )
            local = np.empty(len(records), dtype=np.int64)
            for i, record in enumerate(records):
                key = (float(record["x"]), float(record["y"]))
                try:
                    local[i] = local_by_position[key]
                except KeyError:
                    raise TopologyError(
                        f"Rank {self.rank}: rank {peer} requested position {key}, "
                        f"which is not a local cell"
                    ) from None
            table.exchange_local[peer] = local
            table.exchange_remote[peer] = records["remote_handle"].astype(np.int64)
        transport.flush()

        # 5. Acknowledge, so each halo cell learns its supplying exchange cell
        for peer in transport.other_ranks():
            records = wire.link_records(
                table.exchange_remote.get(peer, np.empty(0, dtype=np.int64)),
                table.exchange_local.get(peer, np.empty(0, dtype=np.int64)),
            )
            transport.send(peer, wire.TAG_LINKS, wire.encode(records, wire.LINK_RECORD))

        for peer in transport.other_ranks():
            records = wire.decode(transport.recv(peer, wire.TAG_LINKS), wire.LINK_RECORD)
            halo_local = records["local_handle"].astype(np.int64)
            expected = halo_by_owner.get(peer, np.empty(0, dtype=np.int64))
            if not np.array_equal(np.sort(halo_local), np.sort(expected)):
                raise TopologyError(
                    f"Rank {self.rank}: rank {peer} acknowledged {len(halo_local)} "
                    f"halo cells, expected {len(expected)}"
                )
            table.halo_local[peer] = halo_local
            table.halo_remote[peer] = records["remote_handle"].astype(np.int64)
        transport.flush()

        log.debug(
            f"Rank {self.rank}: {table.n_exchange_links} exchange links to "
            f"{table.send_peers}, {table.n_halo_links} halo links from {table.recv_peers}"
        )
        return table

    # =========================================================================
    # Phase (b): per-step synchronization
    # =========================================================================

    def synchronize(self, cells: CellTable, table: ExchangeTable):
        """Overwrite halo concentrations with the owners' current values.

        Every expected message is received and validated before any halo
        value is written.

        Raises
        ------
        CommunicationError
            If a sender's record count or handle set does not match the halo
            cells this rank expects from it.
        """
        transport = self.transport

        for peer in table.send_peers:
            records = wire.concentration_records(
                cells.concentration[table.exchange_local[peer]],
                table.exchange_remote[peer],
            )
            transport.send(
                peer, wire.TAG_CONCENTRATIONS, wire.encode(records, wire.CONCENTRATION_RECORD)
            )

        received: Dict[int, np.ndarray] = {}
        for peer in table.recv_peers:
            received[peer] = wire.decode(
                transport.recv(peer, wire.TAG_CONCENTRATIONS), wire.CONCENTRATION_RECORD
            )
        transport.flush()

        updates = [self._validate(cells, table, peer, records) for peer, records in received.items()]
        for handles, values in updates:
            cells.concentration[handles] = values

    def _validate(self, cells: CellTable, table: ExchangeTable, peer: int, records: np.ndarray):
        """Check one sender's records against the halo cells it supplies."""
        expected = table.halo_local[peer]
        if len(records) != len(expected):
            raise CommunicationError(
                f"Rank {self.rank}: rank {peer} sent {len(records)} values, "
                f"expected {len(expected)}"
            )
        handles = records["remote_handle"].astype(np.int64)
        if len(handles) and (handles.min() < 0 or handles.max() >= len(cells)):
            raise CommunicationError(
                f"Rank {self.rank}: rank {peer} sent a handle outside the cell table"
            )
        if not np.array_equal(np.sort(handles), np.sort(expected)):
            bad = np.setdiff1d(handles, expected)
            raise CommunicationError(
                f"Rank {self.rank}: rank {peer} sent values for unknown halo handles "
                f"{bad[:5].tolist()}"
            )
        if np.any(cells.role[handles] != CellRole.HALO):
            raise CommunicationError(
                f"Rank {self.rank}: rank {peer} targeted non-halo cells"
            )
        return handles, records["value"]

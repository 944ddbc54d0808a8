"""Point-to-point transports for the halo exchange protocol.

The protocol never talks to MPI directly; it is handed a Transport at
construction. Two implementations:

- MPITransport: mpi4py communicator, non-blocking sends (Isend) so the
  send-all-then-receive-all schedule cannot deadlock.
- ThreadTransport: one thread per rank inside a single process, connected by
  unbounded queues. Created by LocalTransportGroup, which also runs the ranks.

Receives are always addressed to an explicit source rank and tag.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from typing import Any, Callable, List, Optional

import numpy as np

from ..errors import CommunicationError

log = logging.getLogger(__name__)


class Transport(ABC):
    """Abstract point-to-point messaging between the ranks of one group."""

    rank: int
    size: int

    @abstractmethod
    def send(self, dest: int, tag: int, payload: bytes):
        """Queue a message for ``dest``. Must not wait for the receiver."""
        pass

    @abstractmethod
    def recv(self, source: int, tag: int) -> bytes:
        """Block until the next message from ``source`` with ``tag`` arrives."""
        pass

    def flush(self):
        """Complete all outstanding sends."""
        pass

    @abstractmethod
    def allreduce_sum(self, value: float) -> float:
        pass

    @abstractmethod
    def gather(self, obj: Any, root: int = 0) -> Optional[list]:
        pass

    @abstractmethod
    def barrier(self):
        pass

    def wtime(self) -> float:
        return time.perf_counter()

    def other_ranks(self) -> List[int]:
        return [r for r in range(self.size) if r != self.rank]


class MPITransport(Transport):
    """Transport over an mpi4py communicator.

    Parameters
    ----------
    comm : MPI.Comm, optional
        Communicator to use (default: MPI.COMM_WORLD).
    """

    def __init__(self, comm=None):
        from mpi4py import MPI

        self._MPI = MPI
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()
        self._pending = []  # (request, buffer) kept alive until flush

    def send(self, dest: int, tag: int, payload: bytes):
        buf = np.frombuffer(payload, dtype=np.uint8)
        req = self.comm.Isend([buf, self._MPI.BYTE], dest=dest, tag=tag)
        self._pending.append((req, buf))

    def recv(self, source: int, tag: int) -> bytes:
        status = self._MPI.Status()
        self.comm.Probe(source=source, tag=tag, status=status)
        buf = np.empty(status.Get_count(self._MPI.BYTE), dtype=np.uint8)
        self.comm.Recv([buf, self._MPI.BYTE], source=source, tag=tag)
        return buf.tobytes()

    def flush(self):
        if self._pending:
            self._MPI.Request.Waitall([req for req, _ in self._pending])
            self._pending.clear()

    def allreduce_sum(self, value: float) -> float:
        return self.comm.allreduce(value, op=self._MPI.SUM)

    def gather(self, obj: Any, root: int = 0) -> Optional[list]:
        return self.comm.gather(obj, root=root)

    def barrier(self):
        self.comm.Barrier()

    def wtime(self) -> float:
        return self._MPI.Wtime()

    def abort(self, code: int = 1):
        """Terminate every rank of the communicator."""
        self.comm.Abort(code)


class LocalTransportGroup:
    """A group of in-process ranks connected by queues.

    Parameters
    ----------
    size : int
        Number of ranks.
    timeout : float, optional
        Seconds a receive or collective may block before raising
        CommunicationError. None blocks until a peer fails.

    Example
    -------
    >>> group = LocalTransportGroup(4)
    >>> totals = group.run(lambda transport: transport.allreduce_sum(1.0))
    >>> totals
    [4.0, 4.0, 4.0, 4.0]
    """

    _POLL_INTERVAL = 0.05

    def __init__(self, size: int, timeout: Optional[float] = None):
        if size <= 0:
            raise ValueError(f"Group size must be positive, got {size}")
        self.size = size
        self.timeout = timeout
        self._queues = {
            (src, dest): queue.Queue()
            for src in range(size)
            for dest in range(size)
            if src != dest
        }
        self._barrier = threading.Barrier(size)
        self._slots: List[Any] = [None] * size
        self._failed = threading.Event()
        self._lock = threading.Lock()
        self._first_error: Optional[BaseException] = None

    def transport(self, rank: int) -> "ThreadTransport":
        if not 0 <= rank < self.size:
            raise ValueError(f"Rank {rank} outside group of size {self.size}")
        return ThreadTransport(self, rank)

    def run(self, target: Callable[..., Any], *args, **kwargs) -> list:
        """Run ``target(transport, *args, **kwargs)`` on every rank, one thread each.

        Returns the per-rank return values. If any rank raises, its peers are
        cancelled and the first failure is re-raised here.
        """
        results: List[Any] = [None] * self.size

        def worker(rank: int):
            try:
                results[rank] = target(self.transport(rank), *args, **kwargs)
            except BaseException as exc:
                self._fail(exc)

        threads = [
            threading.Thread(target=worker, args=(rank,), name=f"rank-{rank}")
            for rank in range(self.size)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if self._first_error is not None:
            raise self._first_error
        return results

    def _fail(self, exc: BaseException):
        with self._lock:
            if self._first_error is None:
                self._first_error = exc
                log.error(f"{threading.current_thread().name} failed: {exc}")
        self._failed.set()
        self._barrier.abort()

    def _wait_barrier(self):
        try:
            self._barrier.wait(timeout=self.timeout)
        except threading.BrokenBarrierError:
            raise CommunicationError(
                "Collective aborted: a peer rank failed or timed out"
            ) from None


class ThreadTransport(Transport):
    """One rank of a LocalTransportGroup."""

    def __init__(self, group: LocalTransportGroup, rank: int):
        self.group = group
        self.rank = rank
        self.size = group.size
        # Messages that arrived ahead of the tag being waited for, per source
        self._stash = defaultdict(deque)

    def send(self, dest: int, tag: int, payload: bytes):
        if dest == self.rank or not 0 <= dest < self.size:
            raise CommunicationError(f"Rank {self.rank}: invalid destination {dest}")
        self.group._queues[(self.rank, dest)].put((tag, bytes(payload)))

    def recv(self, source: int, tag: int) -> bytes:
        if source == self.rank or not 0 <= source < self.size:
            raise CommunicationError(f"Rank {self.rank}: invalid source {source}")

        stash = self._stash[source]
        for i, (stashed_tag, payload) in enumerate(stash):
            if stashed_tag == tag:
                del stash[i]
                return payload

        inbox = self.group._queues[(source, self.rank)]
        deadline = None if self.group.timeout is None else time.monotonic() + self.group.timeout
        while True:
            if self.group._failed.is_set():
                raise CommunicationError(
                    f"Rank {self.rank}: receive from rank {source} cancelled, a peer failed"
                )
            try:
                msg_tag, payload = inbox.get(timeout=self.group._POLL_INTERVAL)
            except queue.Empty:
                if deadline is not None and time.monotonic() > deadline:
                    raise CommunicationError(
                        f"Rank {self.rank}: no message from rank {source} (tag {tag}) "
                        f"within {self.group.timeout}s"
                    ) from None
                continue
            if msg_tag == tag:
                return payload
            stash.append((msg_tag, payload))

    def allreduce_sum(self, value: float) -> float:
        group = self.group
        group._slots[self.rank] = value
        group._wait_barrier()
        total = sum(group._slots)
        group._wait_barrier()
        return total

    def gather(self, obj: Any, root: int = 0) -> Optional[list]:
        group = self.group
        group._slots[self.rank] = obj
        group._wait_barrier()
        gathered = list(group._slots) if self.rank == root else None
        group._wait_barrier()
        return gathered

    def barrier(self):
        self.group._wait_barrier()


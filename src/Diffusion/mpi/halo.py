"""Non-blocking halo exchange between row-adjacent workers.

One ``HaloExchange`` is one round of the protocol and moves through

    IDLE --stage()--> STAGED --post()--> POSTED --wait()--> MERGED

stage   copy row 1 / row ``local_row_count`` of the source slab into host
        staging rows on the transfer stream (only for sides that have a
        neighbor)
post    drain the transfer stream, then ``Irecv`` + ``Isend`` per neighbor
        (at most four requests, all tagged ``HALO_TAG``)
wait    complete every request and copy the received rows into halo rows 0
        and ``local_row_count + 1`` of the target slab

Within a timestep the driver computes the edge rows of ``next`` on the
transfer stream, stages them, then launches the interior rows on the compute
stream before ``post``. Staging and the interior kernel touch disjoint rows,
and the merge only writes halo rows, which no kernel writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np
from mpi4py import MPI

from ..datastructures import Partition
from ..errors import TransportError
from .buffers import SlabBuffers

log = logging.getLogger(__name__)

HALO_TAG = 11


class ExchangePhase(Enum):
    IDLE = 0
    STAGED = 1
    POSTED = 2
    MERGED = 3


@dataclass
class _Side:
    """One edge of the slab and the neighbor on the other side of it."""

    name: str
    neighbor: int
    send_row: int
    halo_row: int
    send_buf: np.ndarray
    recv_buf: np.ndarray


def _sides(partition: Partition, buffers: SlabBuffers) -> list[_Side]:
    """Edges that have a neighbor. Missing neighbors are never messaged."""
    rows = partition.local_row_count
    sides = []
    if partition.top is not None:
        sides.append(
            _Side("top", partition.top, 1, 0, buffers.send_top, buffers.recv_top)
        )
    if partition.bottom is not None:
        sides.append(
            _Side(
                "bottom", partition.bottom, rows, rows + 1,
                buffers.send_bottom, buffers.recv_bottom,
            )
        )
    return sides


class HaloExchange:
    """One round of the halo protocol for one worker.

    Parameters
    ----------
    comm : MPI.Comm
        Communicator shared with the neighbors.
    partition : Partition
        This worker's slab geometry.
    buffers : SlabBuffers
        Slab pair and staging rows to exchange through.
    """

    def __init__(self, comm: MPI.Comm, partition: Partition, buffers: SlabBuffers):
        self.comm = comm
        self.partition = partition
        self.buffers = buffers
        self.sides = _sides(partition, buffers)
        self.phase = ExchangePhase.IDLE
        self.elapsed = 0.0
        self._requests = []

    def _advance(self, expected: ExchangePhase, new: ExchangePhase):
        if self.phase is not expected:
            raise RuntimeError(
                f"Halo exchange in phase {self.phase.name}, expected {expected.name}"
            )
        self.phase = new

    def stage(self, source: str = "next") -> "HaloExchange":
        """Queue device-to-host copies of the rows the neighbors need."""
        self._advance(ExchangePhase.IDLE, ExchangePhase.STAGED)
        t0 = MPI.Wtime()
        for side in self.sides:
            self.buffers.stage_row(source, side.send_row, side.send_buf)
        self.elapsed += MPI.Wtime() - t0
        return self

    def post(self) -> "HaloExchange":
        """Issue the non-blocking receives and sends."""
        self._advance(ExchangePhase.STAGED, ExchangePhase.POSTED)
        t0 = MPI.Wtime()
        self.buffers.synchronize_transfer()
        for side in self.sides:
            try:
                self._requests.append(
                    self.comm.Irecv(side.recv_buf, source=side.neighbor, tag=HALO_TAG)
                )
                self._requests.append(
                    self.comm.Isend(side.send_buf, dest=side.neighbor, tag=HALO_TAG)
                )
            except MPI.Exception as exc:
                raise TransportError(
                    f"posting {side.name} halo with rank {side.neighbor} failed: "
                    f"{exc.Get_error_string()}"
                ) from exc
        self.elapsed += MPI.Wtime() - t0
        return self

    def wait(self, target: str = "next") -> int:
        """Complete all requests and merge received rows into ``target``.

        Returns
        -------
        int
            Number of neighbor rows exchanged.
        """
        self._advance(ExchangePhase.POSTED, ExchangePhase.MERGED)
        t0 = MPI.Wtime()
        try:
            for request in self._requests:
                request.Wait()
        except MPI.Exception as exc:
            raise TransportError(
                f"halo exchange on rank {self.partition.rank} failed: "
                f"{exc.Get_error_string()}"
            ) from exc
        self._requests.clear()

        for side in self.sides:
            self.buffers.merge_row(side.recv_buf, target, side.halo_row)
        self.elapsed += MPI.Wtime() - t0
        return len(self.sides)

    @property
    def n_requests(self) -> int:
        return len(self._requests)


class HaloExchanger:
    """Creates exchange rounds for one worker's slab."""

    def __init__(self, comm: MPI.Comm, partition: Partition, buffers: SlabBuffers):
        self.comm = comm
        self.partition = partition
        self.buffers = buffers

    def begin(self, source: str = "next") -> HaloExchange:
        """Start a round: stage the outgoing rows of ``source``, not yet sent."""
        return HaloExchange(self.comm, self.partition, self.buffers).stage(source)

    def prime(self) -> int:
        """Blocking round into ``current`` so iteration 0 reads valid halos."""
        exchange = self.begin(source="current").post()
        count = exchange.wait(target="current")
        self.buffers.synchronize()
        log.debug(f"Rank {self.partition.rank}: primed {count} halo rows")
        return count

    def get_halo_size_bytes(self) -> int:
        """Bytes moved per round (send + recv per neighbor)."""
        row_bytes = self.partition.local_col_count * np.dtype(self.buffers.dtype).itemsize
        return 2 * row_bytes * self.partition.n_neighbors

"""Shared fixtures: CUDA simulator and an in-process multi-rank communicator."""

import os

# Must be set before numba is imported anywhere
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

import queue
import threading

import numpy as np
import pytest
from mpi4py import MPI


class ThreadRequest:
    """Completed-on-Wait request, like the object Isend/Irecv return."""

    def __init__(self, complete=None):
        self._complete = complete

    def Wait(self):
        if self._complete is not None:
            self._complete()
            self._complete = None


class ThreadWorld:
    """Mailboxes and a barrier shared by the ranks of one thread group."""

    def __init__(self, size: int, timeout: float = 30.0):
        self.size = size
        self.timeout = timeout
        self.barrier = threading.Barrier(size)
        self.sent = []  # (source, dest, tag) per Isend
        self._boxes = {}
        self._lock = threading.Lock()
        self._slots = [None] * size

    def mailbox(self, source: int, dest: int, tag: int) -> queue.Queue:
        with self._lock:
            return self._boxes.setdefault((source, dest, tag), queue.Queue())

    def exchange(self, rank: int, value) -> list:
        """All-to-all of one object per rank."""
        self._slots[rank] = value
        self.barrier.wait(self.timeout)
        values = list(self._slots)
        self.barrier.wait(self.timeout)
        return values

    def comms(self) -> list:
        return [ThreadComm(self, rank) for rank in range(self.size)]


class ThreadComm:
    """The subset of ``MPI.Comm`` the solver uses, backed by thread queues."""

    def __init__(self, world: ThreadWorld, rank: int):
        self.world = world
        self.rank = rank
        self.aborted = None

    def Get_rank(self):
        return self.rank

    def Get_size(self):
        return self.world.size

    def Isend(self, buf, dest, tag=0):
        self.world.sent.append((self.rank, dest, tag))
        self.world.mailbox(self.rank, dest, tag).put(np.array(buf, copy=True))
        return ThreadRequest()

    def Irecv(self, buf, source, tag=0):
        box = self.world.mailbox(source, self.rank, tag)

        def complete():
            buf[...] = box.get(timeout=self.world.timeout)

        return ThreadRequest(complete)

    def Barrier(self):
        self.world.barrier.wait(self.world.timeout)

    def Allreduce(self, sendbuf, recvbuf, op=MPI.SUM):
        values = self.world.exchange(self.rank, np.array(sendbuf, copy=True))
        if op == MPI.MIN:
            recvbuf[...] = np.min(values, axis=0)
        elif op == MPI.MAX:
            recvbuf[...] = np.max(values, axis=0)
        else:
            recvbuf[...] = np.sum(values, axis=0)

    def gather(self, value, root=0):
        values = self.world.exchange(self.rank, value)
        return values if self.rank == root else None

    def Abort(self, errorcode=1):
        self.aborted = errorcode


def run_threads(size: int, target, timeout: float = 60.0, world: ThreadWorld = None) -> list:
    """Run ``target(comm)`` on ``size`` thread ranks and return their results.

    Pass ``world`` to inspect its traffic afterwards. The first exception
    raised on any rank is re-raised here.
    """
    world = ThreadWorld(size) if world is None else world
    results = [None] * size
    errors = []

    def worker(comm):
        try:
            results[comm.rank] = target(comm)
        except BaseException as exc:  # pytest outcomes included; re-raised in the caller
            errors.append(exc)
            world.barrier.abort()

    threads = [threading.Thread(target=worker, args=(comm,)) for comm in world.comms()]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout)

    if errors:
        raise errors[0]
    return results


@pytest.fixture
def run_ranks():
    """``run_ranks(size, target)`` runs target(comm) on every thread rank."""
    return run_threads

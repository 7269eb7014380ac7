"""
Cross-replica price aggregation and tick barrier.

Every tick each replica calls, in this order:

1. MarketSync.aggregate(local_prices) - all-reduce (sum) of the per-instrument
   last prices, divided by the replica count. Every replica gets the same
   vector.
2. MarketSync.synchronize() - barrier; advances the round counter.

The transport underneath only needs an all-reduce-sum and a barrier. Each
collective call is tagged with (round, phase, length) so that replicas which
drift apart fail with DesynchronizationError instead of silently mixing data
from different ticks.
"""

import logging
import multiprocessing
import threading
from abc import ABC, abstractmethod
from typing import Any, Sequence

import numpy as np

PHASE_AGGREGATE = 0
PHASE_BARRIER = 1

_TAG_WIDTH = 3  # (round, phase, length)

logger = logging.getLogger(__name__)


class DesynchronizationError(RuntimeError):
    """Replicas disagreed on round, phase or vector length, or a peer vanished."""


class Transport(ABC):
    """
    Collective operations between replicas.

    Attributes:
        rank: Index of the calling replica (0..size-1)
        size: Number of replicas in the group
    """

    rank: int
    size: int

    @abstractmethod
    def allreduce_sum(self, values: np.ndarray, round_id: int) -> np.ndarray:
        """Element-wise sum of `values` over all replicas, returned to every replica."""

    @abstractmethod
    def barrier(self, round_id: int) -> None:
        """Block until every replica reaches the barrier for `round_id`."""

    def abort(self) -> None:
        """Release peers blocked in a collective (they fail with DesynchronizationError)."""
        return None


class LocalTransport(Transport):
    """Group of one replica: collectives are trivial."""

    def __init__(self) -> None:
        self.rank = 0
        self.size = 1

    def allreduce_sum(self, values: np.ndarray, round_id: int) -> np.ndarray:
        return np.array(values, dtype=np.float64, copy=True)

    def barrier(self, round_id: int) -> None:
        return None


class SharedMemoryTransport(Transport):
    """
    Replicas meeting on a shared slot table guarded by a barrier.

    Slot table layout: `size` rows of `capacity` doubles; row r holds the
    vector contributed by rank r. A parallel tag table holds each rank's
    (round, phase, length). One collective is:

        write own row + tag -> wait -> check tags, sum rows -> wait

    The second wait keeps a fast replica from overwriting its row for the
    next collective while a slow one is still reading. Rows are summed in
    rank order, so every replica computes bit-identical results.

    Build one endpoint per replica with for_threads() or for_processes().
    """

    def __init__(
        self,
        rank: int,
        size: int,
        capacity: int,
        slots: Any,
        tags: Any,
        barrier: Any,
        timeout: float | None = None,
    ) -> None:
        """
        Args:
            rank: This endpoint's replica index
            size: Number of replicas
            capacity: Maximum vector length per collective
            slots: Shared buffer of size * capacity doubles
            tags: Shared buffer of size * 3 int64 values
            barrier: threading.Barrier or multiprocessing Barrier for `size` parties
            timeout: Seconds to wait at the barrier (None = forever)
        """
        if not 0 <= rank < size:
            raise ValueError(f"rank must be in [0, {size}), got {rank}")
        self.rank = rank
        self.size = size
        self.capacity = capacity
        self.timeout = timeout
        self._slots = slots
        self._tags = tags
        self._barrier = barrier

    @classmethod
    def for_threads(
        cls, size: int, capacity: int, timeout: float | None = None
    ) -> list["SharedMemoryTransport"]:
        """Endpoints for `size` replicas running as threads of one process."""
        slots = multiprocessing.RawArray("d", size * capacity)
        tags = multiprocessing.RawArray("q", size * _TAG_WIDTH)
        barrier = threading.Barrier(size)
        return [cls(rank, size, capacity, slots, tags, barrier, timeout) for rank in range(size)]

    @classmethod
    def for_processes(
        cls,
        size: int,
        capacity: int,
        ctx: Any = None,
        timeout: float | None = None,
    ) -> list["SharedMemoryTransport"]:
        """
        Endpoints for `size` replicas running as separate processes.

        The endpoints must be handed to the child processes at creation time
        (as Process arguments), since shared memory cannot be pickled later.
        """
        ctx = ctx or multiprocessing.get_context()
        slots = ctx.RawArray("d", size * capacity)
        tags = ctx.RawArray("q", size * _TAG_WIDTH)
        barrier = ctx.Barrier(size)
        return [cls(rank, size, capacity, slots, tags, barrier, timeout) for rank in range(size)]

    def _views(self) -> tuple[np.ndarray, np.ndarray]:
        slots = np.frombuffer(self._slots, dtype=np.float64).reshape(self.size, self.capacity)
        tags = np.frombuffer(self._tags, dtype=np.int64).reshape(self.size, _TAG_WIDTH)
        return slots, tags

    def _wait(self, round_id: int) -> None:
        try:
            self._barrier.wait(self.timeout)
        except threading.BrokenBarrierError as e:
            raise DesynchronizationError(
                f"replica {self.rank}: barrier broken in round {round_id} "
                "(a peer timed out, failed or detected a mismatch)"
            ) from e

    def _collective(self, values: np.ndarray, round_id: int, phase: int) -> np.ndarray:
        length = len(values)
        if length > self.capacity:
            raise ValueError(f"vector of length {length} exceeds capacity {self.capacity}")

        slots, tags = self._views()
        slots[self.rank, :length] = values
        tags[self.rank] = (round_id, phase, length)
        self._wait(round_id)

        expected = np.array([round_id, phase, length], dtype=np.int64)
        mismatched = [r for r in range(self.size) if not np.array_equal(tags[r], expected)]
        if mismatched:
            self._barrier.abort()
            raise DesynchronizationError(
                f"replica {self.rank} in round {round_id} phase {phase} length {length}; "
                f"mismatched peers: "
                + ", ".join(f"{r}={tuple(int(v) for v in tags[r])}" for r in mismatched)
            )

        result = slots[:, :length].sum(axis=0)
        self._wait(round_id)
        return result

    def allreduce_sum(self, values: np.ndarray, round_id: int) -> np.ndarray:
        return self._collective(np.asarray(values, dtype=np.float64), round_id, PHASE_AGGREGATE)

    def barrier(self, round_id: int) -> None:
        self._collective(np.empty(0, dtype=np.float64), round_id, PHASE_BARRIER)

    def abort(self) -> None:
        self._barrier.abort()


class MarketSync:
    """
    Round-based cross-replica synchronization for one replica.

    Attributes:
        transport: Collective transport shared with the other replicas
        round: Current aggregation round (advanced by synchronize)
    """

    def __init__(self, transport: Transport | None = None) -> None:
        self.transport = transport or LocalTransport()
        self.round = 0

    @property
    def rank(self) -> int:
        return self.transport.rank

    @property
    def size(self) -> int:
        return self.transport.size

    def aggregate(self, local_prices: Sequence[float]) -> np.ndarray:
        """
        Average each instrument's last price across all replicas.

        Every replica must call this with a vector of the same length and
        instrument order in the same round.

        Args:
            local_prices: This replica's last price per instrument

        Returns:
            Mean price per instrument over all replicas (same on every replica)

        Raises:
            DesynchronizationError: If replicas are not in the same round/phase
                or passed vectors of different length
        """
        local = np.asarray(local_prices, dtype=np.float64)
        summed = self.transport.allreduce_sum(local, self.round)
        return summed / self.transport.size

    def synchronize(self) -> None:
        """
        Cluster-wide barrier closing the current round.

        Raises:
            DesynchronizationError: If a replica is in a different round or phase
        """
        self.transport.barrier(self.round)
        logger.debug(f"Replica {self.rank} completed round {self.round}")
        self.round += 1

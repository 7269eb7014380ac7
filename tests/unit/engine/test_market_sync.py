# tests/unit/engine/test_market_sync.py
"""
Tests for MarketSync and its transports.

Multi-replica tests run each replica in its own thread on a
SharedMemoryTransport.for_threads group.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from engine.market_sync import (
    DesynchronizationError,
    LocalTransport,
    MarketSync,
    SharedMemoryTransport,
)


def run_replicas(fn, transports):
    """Run fn(sync) for every endpoint concurrently; return results by rank."""
    with ThreadPoolExecutor(max_workers=len(transports)) as pool:
        futures = [pool.submit(fn, MarketSync(t)) for t in transports]
        return [f.result(timeout=30) for f in futures]


class TestLocalTransport:
    def test_aggregate_is_identity(self):
        sync = MarketSync()
        assert sync.size == 1 and sync.rank == 0
        np.testing.assert_array_equal(sync.aggregate([100.0, 101.5]), [100.0, 101.5])

    def test_synchronize_advances_round(self):
        sync = MarketSync(LocalTransport())
        sync.synchronize()
        sync.synchronize()
        assert sync.round == 2


class TestSharedMemoryTransport:
    def test_endpoints_have_distinct_ranks(self):
        transports = SharedMemoryTransport.for_threads(size=3, capacity=2)
        assert [t.rank for t in transports] == [0, 1, 2]
        assert all(t.size == 3 for t in transports)

    def test_rank_out_of_range(self):
        with pytest.raises(ValueError):
            SharedMemoryTransport(3, 3, 1, None, None, None)

    def test_aggregate_is_mean_across_replicas(self):
        transports = SharedMemoryTransport.for_threads(size=3, capacity=2, timeout=10)

        def replica(sync):
            local = [100.0 + 10 * sync.rank, 50.0 * (sync.rank + 1)]
            return sync.aggregate(local)

        results = run_replicas(replica, transports)

        for result in results:
            np.testing.assert_allclose(result, [110.0, 100.0])

    def test_every_replica_gets_identical_result(self):
        size = 4
        transports = SharedMemoryTransport.for_threads(size=size, capacity=5, timeout=10)
        vectors = np.random.default_rng(7).uniform(50, 150, size=(size, 5))

        def replica(sync):
            out = []
            for _ in range(10):
                out.append(sync.aggregate(vectors[sync.rank]))
                sync.synchronize()
            return out

        results = run_replicas(replica, transports)

        for r in range(1, size):
            for a, b in zip(results[0], results[r]):
                assert a.tobytes() == b.tobytes()
        np.testing.assert_allclose(results[0][0], vectors.mean(axis=0))

    def test_rounds_stay_in_lockstep(self):
        transports = SharedMemoryTransport.for_threads(size=3, capacity=1, timeout=10)

        def replica(sync):
            rounds = []
            for tick in range(20):
                sync.aggregate([float(tick)])
                sync.synchronize()
                rounds.append(sync.round)
            return rounds

        results = run_replicas(replica, transports)

        assert results[0] == results[1] == results[2] == list(range(1, 21))

    def test_length_mismatch_is_detected(self):
        transports = SharedMemoryTransport.for_threads(size=2, capacity=4, timeout=10)

        def replica(sync):
            with pytest.raises(DesynchronizationError):
                sync.aggregate([1.0] * (2 + sync.rank))
            return True

        assert run_replicas(replica, transports) == [True, True]

    def test_phase_mismatch_is_detected(self):
        """One replica aggregating while another is at the barrier."""
        transports = SharedMemoryTransport.for_threads(size=2, capacity=2, timeout=10)

        def replica(sync):
            with pytest.raises(DesynchronizationError):
                if sync.rank == 0:
                    sync.aggregate([1.0, 2.0])
                else:
                    sync.synchronize()
            return True

        assert run_replicas(replica, transports) == [True, True]

    def test_round_mismatch_is_detected(self):
        transports = SharedMemoryTransport.for_threads(size=2, capacity=1, timeout=10)

        def replica(sync):
            if sync.rank == 1:
                sync.round = 5
            with pytest.raises(DesynchronizationError, match="round"):
                sync.synchronize()
            return True

        assert run_replicas(replica, transports) == [True, True]

    def test_missing_peer_times_out(self):
        transports = SharedMemoryTransport.for_threads(size=2, capacity=1, timeout=0.2)
        sync = MarketSync(transports[0])

        with pytest.raises(DesynchronizationError):
            sync.aggregate([1.0])

    def test_abort_releases_waiting_peer(self):
        transports = SharedMemoryTransport.for_threads(size=2, capacity=1)

        def replica(sync):
            if sync.rank == 1:
                sync.transport.abort()
                return "aborted"
            with pytest.raises(DesynchronizationError):
                sync.synchronize()
            return "released"

        assert run_replicas(replica, transports) == ["released", "aborted"]

    def test_vector_longer_than_capacity(self):
        transports = SharedMemoryTransport.for_threads(size=1, capacity=2)
        with pytest.raises(ValueError, match="capacity"):
            MarketSync(transports[0]).aggregate([1.0, 2.0, 3.0])

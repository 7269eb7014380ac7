"""
Cluster launcher: runs several exchange replicas that meet every tick through
a shared MarketSync transport.

Backends:
- "thread": replicas are threads of this process (SharedMemoryTransport.for_threads)
- "process": replicas are child processes (SharedMemoryTransport.for_processes)

A single replica always runs inline on a LocalTransport.
"""

import logging
import multiprocessing
import queue
import traceback
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any

from omegaconf import DictConfig, OmegaConf

from engine.market_sync import (
    DesynchronizationError,
    LocalTransport,
    SharedMemoryTransport,
    Transport,
)
from engine.metrics import ClusterSummary, ReplicaResult, Timer
from engine.simulation import run_replica

BACKENDS = ("thread", "process")

LOG_FORMAT = "[%(asctime)s][%(name)s][%(levelname)s] - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Set the root level and add a stdout handler if none exists."""
    log_level = getattr(logging, str(level).upper())
    logging.getLogger().setLevel(log_level)
    logging.getLogger("engine").setLevel(log_level)
    logging.getLogger("traders").setLevel(log_level)

    if not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def _run_guarded(config: DictConfig, transport: Transport) -> ReplicaResult:
    """Run a replica; on failure release the peers waiting at the barrier."""
    try:
        return run_replica(config, transport)
    except Exception:
        transport.abort()
        raise


def _run_threads(
    config: DictConfig, num_replicas: int, timeout: float | None
) -> list[ReplicaResult]:
    transports = SharedMemoryTransport.for_threads(
        num_replicas, int(config.market.num_instruments), timeout=timeout
    )
    with ThreadPoolExecutor(max_workers=num_replicas, thread_name_prefix="replica") as executor:
        futures = [executor.submit(_run_guarded, config, t) for t in transports]
        wait(futures)

    failures = {rank: f.exception() for rank, f in enumerate(futures) if f.exception()}
    if failures:
        # Report the root cause, not the peers released by the abort
        root = [r for r, exc in failures.items() if not isinstance(exc, DesynchronizationError)]
        rank = min(root) if root else min(failures)
        raise RuntimeError(f"Replica {rank} failed: {failures[rank]!r}") from failures[rank]
    return [f.result() for f in futures]


def _replica_process(container: dict[str, Any], transport: Transport, results: Any) -> None:
    """Child process entry point. Reports ("ok" | "error", rank, payload) on the queue."""
    config = OmegaConf.create(container)
    configure_logging(config.experiment.get("log_level", "INFO"))
    try:
        result = _run_guarded(config, transport)
    except Exception:
        results.put(("error", transport.rank, traceback.format_exc()))
        raise
    results.put(("ok", transport.rank, result))


def _drain(results: Any, collected: dict[int, ReplicaResult], errors: dict[int, str]) -> None:
    """Move every report already on the queue into collected / errors."""
    while True:
        try:
            status, rank, payload = results.get_nowait()
        except queue.Empty:
            return
        if status == "ok":
            collected[rank] = payload
        else:
            errors[rank] = payload


def _run_processes(
    config: DictConfig, num_replicas: int, timeout: float | None
) -> list[ReplicaResult]:
    ctx = multiprocessing.get_context(config.cluster.get("start_method", "spawn"))
    transports = SharedMemoryTransport.for_processes(
        num_replicas, int(config.market.num_instruments), ctx=ctx, timeout=timeout
    )
    results = ctx.Queue()
    container = OmegaConf.to_container(config, resolve=True)

    processes = [
        ctx.Process(
            target=_replica_process,
            args=(container, t, results),
            name=f"replica-{t.rank}",
        )
        for t in transports
    ]
    for p in processes:
        p.start()

    collected: dict[int, ReplicaResult] = {}
    errors: dict[int, str] = {}
    try:
        while len(collected) + len(errors) < num_replicas:
            try:
                status, rank, payload = results.get(timeout=1.0)
            except queue.Empty:
                # Exit status is read before the final drain; a replica that
                # reported just before exiting is then still found in the queue
                exited = [i for i, p in enumerate(processes) if not p.is_alive()]
                _drain(results, collected, errors)
                dead = [i for i in exited if i not in collected and i not in errors]
                if dead:
                    for p in processes:
                        if p.is_alive():
                            p.terminate()
                    proc = processes[dead[0]]
                    raise RuntimeError(
                        f"Replica process {proc.name} exited with code {proc.exitcode}"
                    ) from None
                continue
            if status == "ok":
                collected[rank] = payload
            else:
                errors[rank] = payload
    finally:
        for p in processes:
            p.join()

    if errors:
        root = [r for r, tb in errors.items() if DesynchronizationError.__name__ not in tb]
        rank = min(root) if root else min(errors)
        raise RuntimeError(f"Replica {rank} failed:\n{errors[rank]}")
    return [collected[rank] for rank in sorted(collected)]


def run_cluster(config: DictConfig) -> ClusterSummary:
    """
    Run every replica of the configured cluster and reduce their totals.

    Args:
        config: Simulation configuration (cluster group selects the backend)

    Returns:
        ClusterSummary with global orders/trades and throughput

    Raises:
        ValueError: On an unknown backend or a non-positive replica count
        RuntimeError: If any replica fails
    """
    cluster = config.get("cluster", {})
    num_replicas = int(cluster.get("num_replicas", 1))
    backend = cluster.get("backend", "thread")
    timeout = cluster.get("barrier_timeout")

    if num_replicas < 1:
        raise ValueError(f"num_replicas must be >= 1, got {num_replicas}")
    if backend not in BACKENDS:
        raise ValueError(f"Unknown cluster backend {backend!r}, expected one of {BACKENDS}")

    logger.info(
        f"Simulation '{config.experiment.get('name', 'run')}': {num_replicas} replica(s) "
        f"[{backend}], {config.agents.num_agents} agents per replica, "
        f"{config.market.num_instruments} instruments, {config.market.num_ticks} ticks"
    )

    timer = Timer()
    if num_replicas == 1:
        results = [run_replica(config, LocalTransport())]
    elif backend == "thread":
        results = _run_threads(config, num_replicas, timeout)
    else:
        results = _run_processes(config, num_replicas, timeout)

    summary = ClusterSummary.from_results(results, elapsed_ms=timer.elapsed_ms())
    logger.info("=== Simulation Complete ===")
    logger.info(f"Total Execution Time: {summary.elapsed_ms:.0f} ms")
    logger.info(f"Global Orders Submitted: {summary.global_orders}")
    logger.info(f"Global Trades Executed: {summary.global_trades}")
    logger.info(f"Orders per Second: {summary.orders_per_second:.1f}")
    logger.info(f"Trades per Second: {summary.trades_per_second:.1f}")
    for result in summary.replicas:
        logger.info(
            f"Replica {result.replica_id} VWAP: {[round(p, 4) for p in result.vwap]} "
            f"| Price Std Dev: {[round(s, 4) for s in result.price_std_dev]}"
        )
    return summary

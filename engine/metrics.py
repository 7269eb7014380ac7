"""
Run metrics: timing, per-replica results and the cluster-wide summary.
"""

import time
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from engine.orders import Trade


class Timer:
    """Wall-clock timer based on time.perf_counter."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._start = time.perf_counter()

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0


@dataclass
class ReplicaResult:
    """Totals of one replica after a run."""

    replica_id: int
    num_ticks: int
    orders_submitted: int
    orders_accepted: int
    trades: int
    elapsed_ms: float
    final_prices: list[float] = field(default_factory=list)
    price_std_dev: list[float] = field(default_factory=list)
    vwap: list[float] = field(default_factory=list)
    trades_path: str | None = None
    prices_path: str | None = None


@dataclass
class ClusterSummary:
    """Cluster-wide totals, reduced from every replica's result."""

    num_replicas: int
    global_orders: int
    global_trades: int
    elapsed_ms: float
    replicas: list[ReplicaResult] = field(default_factory=list)

    @classmethod
    def from_results(
        cls, results: Sequence[ReplicaResult], elapsed_ms: float | None = None
    ) -> "ClusterSummary":
        """
        Sum the per-replica totals.

        Args:
            results: One result per replica
            elapsed_ms: Cluster wall time (default: slowest replica)
        """
        ordered = sorted(results, key=lambda r: r.replica_id)
        if elapsed_ms is None:
            elapsed_ms = max((r.elapsed_ms for r in ordered), default=0.0)
        return cls(
            num_replicas=len(ordered),
            global_orders=sum(r.orders_submitted for r in ordered),
            global_trades=sum(r.trades for r in ordered),
            elapsed_ms=elapsed_ms,
            replicas=list(ordered),
        )

    @property
    def orders_per_second(self) -> float:
        if self.elapsed_ms <= 0:
            return 0.0
        return self.global_orders * 1000.0 / self.elapsed_ms

    @property
    def trades_per_second(self) -> float:
        if self.elapsed_ms <= 0:
            return 0.0
        return self.global_trades * 1000.0 / self.elapsed_ms


def calculate_price_std_dev(transaction_prices: Sequence[float]) -> float:
    """
    Calculate standard deviation of transaction prices.

    Args:
        transaction_prices: List of prices from executed trades

    Returns:
        Standard deviation (0.0 for fewer than two prices)
    """
    if len(transaction_prices) <= 1:
        return 0.0

    return float(np.std(transaction_prices))


def calculate_vwap(prices: Sequence[float], volumes: Sequence[int]) -> float:
    """
    Volume-weighted average price.

    Returns:
        VWAP, or 0.0 if there is no volume
    """
    total = float(np.sum(volumes)) if len(volumes) else 0.0
    if total <= 0:
        return 0.0
    return float(np.dot(prices, volumes) / total)


def instrument_statistics(
    trade_log: Sequence[Trade], num_instruments: int
) -> tuple[list[float], list[float]]:
    """
    Per-instrument price dispersion and VWAP of a replica's trades.

    Args:
        trade_log: Trades in execution order
        num_instruments: Number of instruments (one entry each)

    Returns:
        (price std-dev per instrument, VWAP per instrument)
    """
    prices: list[list[float]] = [[] for _ in range(num_instruments)]
    volumes: list[list[int]] = [[] for _ in range(num_instruments)]
    for trade in trade_log:
        prices[trade.instrument_id].append(trade.price)
        volumes[trade.instrument_id].append(trade.volume)

    std_devs = [calculate_price_std_dev(p) for p in prices]
    vwaps = [calculate_vwap(p, v) for p, v in zip(prices, volumes)]
    return std_devs, vwaps

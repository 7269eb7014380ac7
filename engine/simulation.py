"""
Replica driver: the per-tick loop of one exchange replica.

Each tick runs four phases:

1. INGEST (parallel): one worker thread per agent reads the instrument's last
   price and historical average, generates orders and submits them through a
   SubmissionWindow. The window is closed only after every worker has joined.
2. PROCESS (sequential): Exchange.process_tick drains the queue and matches.
3. AGGREGATE (cluster): MarketSync.aggregate averages last prices across
   replicas; the exchange applies the global view.
4. SYNCHRONIZE (cluster): barrier; no replica starts tick t+1 ingestion
   before every replica finished tick t.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
from omegaconf import DictConfig, OmegaConf

from engine.agent_factory import DEFAULT_STRATEGIES, create_agents
from engine.event_logger import EventLogger
from engine.exchange import Exchange, SubmissionWindow
from engine.export import export_replica
from engine.market_sync import LocalTransport, MarketSync, Transport
from engine.metrics import ReplicaResult, Timer, instrument_statistics
from traders.base import Agent


@dataclass
class TickStats:
    """Outcome of one tick on one replica."""

    tick: int
    orders_submitted: int
    orders_accepted: int
    trades: int
    local_prices: np.ndarray
    global_prices: np.ndarray


class Replica:
    """
    Runs the tick loop of one exchange replica.

    Attributes:
        config: Simulation configuration
        exchange: The replica's exchange
        sync: Cross-replica synchronization endpoint
        agents: Agent pool; agent i trades instrument i % num_instruments
        num_ticks: Number of ticks to simulate
    """

    def __init__(
        self,
        config: DictConfig,
        exchange: Exchange,
        sync: MarketSync,
        agents: Sequence[Agent],
        event_logger: EventLogger | None = None,
    ) -> None:
        """
        Initialize the replica driver.

        Args:
            config: Simulation configuration (market/agents/experiment groups)
            exchange: Exchange owned by this replica
            sync: MarketSync bound to this replica's transport endpoint
            agents: Fixed agent pool (one worker thread per agent)
            event_logger: Optional JSONL event logger

        Raises:
            ValueError: If the agent pool is empty
        """
        if not agents:
            raise ValueError("a replica needs at least one agent")

        self.config = config
        self.exchange = exchange
        self.sync = sync
        self.agents = list(agents)
        self.event_logger = event_logger

        self.num_ticks = int(config.market.num_ticks)
        self.progress_interval = int(config.experiment.get("progress_interval", 100))
        self.max_workers = config.agents.get("max_workers") or len(self.agents)

        self.total_orders = 0
        self.total_accepted = 0
        self.total_trades = 0

        self.logger = logging.getLogger(__name__)

    @property
    def replica_id(self) -> int:
        return self.exchange.replica_id

    def instrument_for(self, agent_index: int) -> int:
        """Instrument traded by the agent at `agent_index` in the pool."""
        return agent_index % self.exchange.num_instruments

    # =========================================================================
    # PHASE 1: INGEST
    # =========================================================================

    def _run_agent(
        self, agent_index: int, agent: Agent, window: SubmissionWindow, tick: int
    ) -> tuple[int, int]:
        """Worker body: observe, decide (no lock held), submit. Returns (submitted, accepted)."""
        instrument_id = self.instrument_for(agent_index)
        current_price = self.exchange.price(instrument_id)
        historical_average = self.exchange.historical_average(instrument_id)

        orders = agent.generate_orders(instrument_id, current_price, historical_average, tick)

        accepted = 0
        for order in orders:
            if window.submit(order) is not None:
                accepted += 1
        return len(orders), accepted

    def ingest(self, executor: ThreadPoolExecutor, tick: int) -> tuple[int, int]:
        """
        Fan out one task per agent and join them all.

        Returns:
            (orders submitted, orders accepted) for this tick
        """
        with self.exchange.submission_window() as window:
            futures = [
                executor.submit(self._run_agent, i, agent, window, tick)
                for i, agent in enumerate(self.agents)
            ]
            # Fan-in before the window closes
            wait(futures)
            counts = [future.result() for future in futures]

        submitted = sum(c[0] for c in counts)
        accepted = sum(c[1] for c in counts)
        return submitted, accepted

    # =========================================================================
    # TICK
    # =========================================================================

    def run_tick(self, executor: ThreadPoolExecutor, tick: int) -> TickStats:
        """Run the four phases of one tick."""
        submitted, accepted = self.ingest(executor, tick)

        trades = self.exchange.process_tick(tick)

        local_prices = self.exchange.price_snapshot()
        global_prices = self.sync.aggregate(local_prices)
        self.exchange.apply_global_view(global_prices)

        self.sync.synchronize()

        return TickStats(
            tick=tick,
            orders_submitted=submitted,
            orders_accepted=accepted,
            trades=trades,
            local_prices=local_prices,
            global_prices=global_prices,
        )

    def run(self) -> ReplicaResult:
        """
        Run all ticks.

        Returns:
            Totals for this replica
        """
        timer = Timer()
        log_start = len(self.exchange.trade_log)

        with ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix=f"replica{self.replica_id}-agent",
        ) as executor:
            for tick in range(self.num_ticks):
                stats = self.run_tick(executor, tick)

                self.total_orders += stats.orders_submitted
                self.total_accepted += stats.orders_accepted
                self.total_trades += stats.trades

                if self.event_logger is not None:
                    self._log_tick(self.event_logger, stats, log_start)
                log_start = len(self.exchange.trade_log)

                if (
                    self.replica_id == 0
                    and self.progress_interval > 0
                    and (tick + 1) % self.progress_interval == 0
                ):
                    self.logger.info(
                        f"Tick {tick + 1:4d} | Orders: {self.total_orders:6d} "
                        f"| Trades: {self.total_trades:6d}"
                    )

        std_devs, vwaps = instrument_statistics(
            self.exchange.trade_log, self.exchange.num_instruments
        )
        return ReplicaResult(
            replica_id=self.replica_id,
            num_ticks=self.num_ticks,
            orders_submitted=self.total_orders,
            orders_accepted=self.total_accepted,
            trades=self.total_trades,
            elapsed_ms=timer.elapsed_ms(),
            final_prices=self.exchange.price_snapshot().tolist(),
            price_std_dev=std_devs,
            vwap=vwaps,
        )

    def _log_tick(self, event_logger: EventLogger, stats: TickStats, log_start: int) -> None:
        """Write the tick's trades and summary, then flush."""
        for trade in self.exchange.trade_log[log_start:]:
            event_logger.log_trade(self.replica_id, trade)
        event_logger.log_tick(
            replica=self.replica_id,
            tick=stats.tick,
            orders_submitted=stats.orders_submitted,
            orders_accepted=stats.orders_accepted,
            trades=stats.trades,
            local_prices=stats.local_prices,
            global_prices=stats.global_prices,
        )
        event_logger.flush()


def build_replica(
    config: DictConfig,
    transport: Transport | None = None,
    event_logger: EventLogger | None = None,
) -> Replica:
    """
    Wire an Exchange, MarketSync and agent pool from the configuration.

    Args:
        config: Simulation configuration
        transport: This replica's transport endpoint (default: single replica)
        event_logger: Optional JSONL event logger
    """
    transport = transport or LocalTransport()
    global_view = config.exchange.get("global_view", {}) if "exchange" in config else {}

    exchange = Exchange(
        num_instruments=int(config.market.num_instruments),
        initial_price=float(config.market.get("initial_price", 100.0)),
        replica_id=transport.rank,
        global_view_policy=global_view.get("policy", "local"),
        global_view_weight=float(global_view.get("weight", 0.5)),
    )

    strategies = config.agents.get("strategies") or DEFAULT_STRATEGIES
    params = config.agents.get("params")
    agents = create_agents(
        num_agents=int(config.agents.num_agents),
        replica_id=transport.rank,
        strategies=list(strategies),
        base_seed=config.agents.get("seed"),
        params=OmegaConf.to_container(params, resolve=True) if params is not None else None,
    )

    return Replica(config, exchange, MarketSync(transport), agents, event_logger=event_logger)


def run_replica(config: DictConfig, transport: Transport | None = None) -> ReplicaResult:
    """
    Build, run and export one replica.

    Event logging and CSV export are controlled by experiment.log_events and
    experiment.export.
    """
    transport = transport or LocalTransport()
    experiment = config.experiment

    event_logger = None
    if experiment.get("log_events", False):
        log_dir = Path(experiment.get("log_dir", "logs"))
        name = experiment.get("name", "run")
        event_logger = EventLogger(log_dir / f"{name}_replica_{transport.rank}_events.jsonl")

    try:
        replica = build_replica(config, transport, event_logger)
        result = replica.run()
    finally:
        if event_logger is not None:
            event_logger.close()

    if experiment.get("export", True):
        trades_path, prices_path = export_replica(
            replica.exchange, experiment.get("output_dir", "."), replica.num_ticks
        )
        result.trades_path = str(trades_path)
        result.prices_path = str(prices_path)

    return result

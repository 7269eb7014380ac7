"""
Abstract base class for trading agents.

An agent is a strategy evaluated once per tick by one worker thread. It reads
the instrument's current price and historical average (both stable for the
whole ingestion phase) and returns the orders it wants to submit. Agents hold
no shared state: each owns its random generator, so no locking is needed while
orders are generated.
"""

from abc import ABC, abstractmethod

import numpy as np

from engine.orders import Order, Side


class Agent(ABC):
    """
    Base class for all trading strategies.

    Attributes:
        agent_id: Global agent identifier (unique across replicas)
        rng: Private random generator (seeded for reproducibility)
        orders_generated: Total orders returned by generate_orders so far
    """

    def __init__(self, agent_id: int, seed: int | None = None) -> None:
        """
        Initialize a trading agent.

        Args:
            agent_id: Global agent identifier (must be >= 0)
            seed: Random seed for this agent's generator

        Raises:
            ValueError: If agent_id is negative
        """
        if agent_id < 0:
            raise ValueError(f"agent_id must be >= 0, got {agent_id}")
        self.agent_id = agent_id
        self.rng = np.random.default_rng(seed)
        self.orders_generated = 0

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def generate_orders(
        self,
        instrument_id: int,
        current_price: float,
        historical_average: float,
        tick: int,
    ) -> list[Order]:
        """
        Decide which orders to submit this tick.

        Args:
            instrument_id: Instrument this agent trades
            current_price: Last traded price of the instrument
            historical_average: Mean of all past trade prices
            tick: Current tick index (used as order timestamp)

        Returns:
            Orders to submit (order_id left at 0, the exchange assigns it)
        """

    def _order(
        self,
        instrument_id: int,
        price: float,
        volume: int,
        side: Side,
        tick: int,
    ) -> Order:
        """Build an order stamped with this agent's id."""
        self.orders_generated += 1
        return Order(
            agent_id=self.agent_id,
            instrument_id=instrument_id,
            price=float(price),
            volume=int(volume),
            side=side,
            timestamp=tick,
        )

    def _volume(self, low: int, high: int) -> int:
        """Uniform integer volume in [low, high]."""
        return int(self.rng.integers(low, high, endpoint=True))

    def __repr__(self) -> str:
        return f"{self.name}(agent_id={self.agent_id})"

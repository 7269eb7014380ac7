"""
Random Walk Agent.

Noise trader: picks a side with a fair coin and quotes 1% through the last
price (bids below, asks above), so it only trades against more aggressive
counterparties. Ignores the historical average.
"""

from typing import Any

from engine.orders import Order, Side
from traders.base import Agent


class RandomWalk(Agent):
    """
    Random Walk trader.

    Strategy:
    - Side: BUY with probability buy_probability, otherwise SELL
    - Price: current_price * (1 - offset) for bids, * (1 + offset) for asks
    - Volume: uniform in [1, max_volume]
    """

    def __init__(
        self,
        agent_id: int,
        seed: int | None = None,
        buy_probability: float = 0.5,
        offset: float = 0.01,
        max_volume: int = 10,
        **kwargs: Any,
    ) -> None:
        super().__init__(agent_id, seed)
        self.buy_probability = buy_probability
        self.offset = offset
        self.max_volume = max_volume

    def generate_orders(
        self,
        instrument_id: int,
        current_price: float,
        historical_average: float,
        tick: int,
    ) -> list[Order]:
        buy = self.rng.random() < self.buy_probability
        price = current_price * (1.0 - self.offset if buy else 1.0 + self.offset)
        side = Side.BUY if buy else Side.SELL
        return [self._order(instrument_id, price, self._volume(1, self.max_volume), side, tick)]

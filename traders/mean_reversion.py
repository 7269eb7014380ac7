"""
Mean Reversion Agent.

Contrarian: buys when the last price has fallen below its historical average
by more than a small threshold, sells otherwise.
"""

from typing import Any

from engine.orders import Order, Side
from traders.base import Agent


class MeanReversion(Agent):
    """
    Mean Reversion trader.

    Strategy:
    - BUY if current_price < historical_average * (1 - 0.001 * threshold)
    - Price: current_price * (1 + aggression) for bids, * (1 - aggression) for asks
    - Volume: uniform in [1, max_volume]
    """

    def __init__(
        self,
        agent_id: int,
        seed: int | None = None,
        threshold: float = 0.5,
        aggression: float = 0.002,
        max_volume: int = 10,
        **kwargs: Any,
    ) -> None:
        super().__init__(agent_id, seed)
        self.threshold = threshold
        self.aggression = aggression
        self.max_volume = max_volume

    def generate_orders(
        self,
        instrument_id: int,
        current_price: float,
        historical_average: float,
        tick: int,
    ) -> list[Order]:
        buy = current_price < historical_average * (1.0 - 0.001 * self.threshold)
        price = current_price * (1.0 + self.aggression if buy else 1.0 - self.aggression)
        side = Side.BUY if buy else Side.SELL
        return [self._order(instrument_id, price, self._volume(1, self.max_volume), side, tick)]

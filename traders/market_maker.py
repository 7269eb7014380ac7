"""
Market Maker Agent.

Provides liquidity on both sides every tick: a bid just below and an ask just
above the last price. The two quotes never cross each other.
"""

from typing import Any

from engine.orders import Order, Side
from traders.base import Agent


class MarketMaker(Agent):
    """
    Market Maker.

    Strategy:
    - Bid at current_price * (1 - half_spread)
    - Ask at current_price * (1 + half_spread)
    - Independent volumes, uniform in [1, max_volume]
    """

    def __init__(
        self,
        agent_id: int,
        seed: int | None = None,
        half_spread: float = 0.001,
        max_volume: int = 5,
        **kwargs: Any,
    ) -> None:
        super().__init__(agent_id, seed)
        self.half_spread = half_spread
        self.max_volume = max_volume

    def generate_orders(
        self,
        instrument_id: int,
        current_price: float,
        historical_average: float,
        tick: int,
    ) -> list[Order]:
        bid = self._order(
            instrument_id,
            current_price * (1.0 - self.half_spread),
            self._volume(1, self.max_volume),
            Side.BUY,
            tick,
        )
        ask = self._order(
            instrument_id,
            current_price * (1.0 + self.half_spread),
            self._volume(1, self.max_volume),
            Side.SELL,
            tick,
        )
        return [bid, ask]

"""
engine/orderbook.py - Per-instrument limit order book

Holds the resting buy and sell orders for a single instrument and runs the
price-time priority matching walk once per tick.

Matching rules:
- Bids are ranked by price (high first), then by submission tick (early first)
- Asks are ranked by price (low first), then by submission tick (early first)
- While the best bid crosses the best ask, trade min(bid, ask) remaining volume
  at the midpoint of the two limit prices
- Partially filled orders keep their original price and timestamp, so their
  priority on later ticks is unchanged
"""

import numpy as np

from engine.orders import Order, Trade

DEFAULT_INITIAL_PRICE = 100.0


def _bid_priority(order: Order) -> tuple[float, int, int]:
    return (-order.price, order.timestamp, order.order_id)


def _ask_priority(order: Order) -> tuple[float, int, int]:
    return (order.price, order.timestamp, order.order_id)


class OrderBook:
    """
    Order book for one instrument.

    Resting collections are unordered between ticks; they are sorted at the
    start of every matching call.

    Attributes:
        instrument_id: Instrument this book belongs to
        bids: Resting buy orders
        asks: Resting sell orders
        last_price: Price of the most recent trade (initial price before any)
        price_history: One entry per executed trade, in execution order
    """

    def __init__(
        self,
        instrument_id: int = 0,
        initial_price: float = DEFAULT_INITIAL_PRICE,
    ) -> None:
        """
        Initialize an empty order book.

        Args:
            instrument_id: Instrument index (only used for trade records)
            initial_price: Last price reported before the first trade
        """
        self.instrument_id = instrument_id
        self.bids: list[Order] = []
        self.asks: list[Order] = []
        self.last_price: float = float(initial_price)
        self.price_history: list[float] = []

    def add_order(self, order: Order) -> None:
        """Add an order to the resting side it belongs to."""
        if order.is_buy:
            self.bids.append(order)
        else:
            self.asks.append(order)

    def match_orders(self, tick: int) -> list[Trade]:
        """
        Match crossing orders and return the trades in execution order.

        Args:
            tick: Current tick index, stamped on every trade

        Returns:
            Trades generated by this call (empty if the book does not cross)
        """
        if not self.bids or not self.asks:
            return []

        self.bids.sort(key=_bid_priority)
        self.asks.sort(key=_ask_priority)

        trades: list[Trade] = []
        bi = 0
        ai = 0
        while bi < len(self.bids) and ai < len(self.asks):
            bid = self.bids[bi]
            ask = self.asks[ai]
            if bid.price < ask.price:
                break

            volume = min(bid.volume, ask.volume)
            price = (bid.price + ask.price) * 0.5
            trades.append(
                Trade(
                    buy_agent_id=bid.agent_id,
                    sell_agent_id=ask.agent_id,
                    instrument_id=self.instrument_id,
                    price=price,
                    volume=volume,
                    tick=tick,
                    buy_order_id=bid.order_id,
                    sell_order_id=ask.order_id,
                )
            )
            self.last_price = price
            self.price_history.append(price)

            bid.volume -= volume
            ask.volume -= volume
            if bid.volume == 0:
                bi += 1
            if ask.volume == 0:
                ai += 1

        # Consumed orders are exactly the sorted prefixes
        del self.bids[:bi]
        del self.asks[:ai]
        return trades

    def historical_average(self) -> float:
        """
        Mean of all executed trade prices.

        Returns:
            Arithmetic mean of price_history, or last_price if no trade yet
        """
        if not self.price_history:
            return self.last_price
        return float(np.mean(self.price_history))

    @property
    def best_bid(self) -> float | None:
        """Highest resting bid price (None if no bids)."""
        if not self.bids:
            return None
        return max(order.price for order in self.bids)

    @property
    def best_ask(self) -> float | None:
        """Lowest resting ask price (None if no asks)."""
        if not self.asks:
            return None
        return min(order.price for order in self.asks)

    def resting_volume(self) -> tuple[int, int]:
        """Total resting (bid, ask) volume."""
        return (
            sum(order.volume for order in self.bids),
            sum(order.volume for order in self.asks),
        )

    def __len__(self) -> int:
        return len(self.bids) + len(self.asks)

"""
Order and trade value types shared by the order book, the exchange and agents.

An Order is created by an agent with ``order_id == 0``; the exchange assigns
the real id at ingestion. Only ``volume`` changes after creation (it tracks the
remaining quantity while the order rests in a book).
"""

from dataclasses import dataclass, field
from enum import Enum


class Side(Enum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"


@dataclass
class Order:
    """
    A limit order for one instrument.

    Attributes:
        agent_id: Global id of the submitting agent
        instrument_id: Index of the instrument (0..num_instruments-1)
        price: Limit price
        volume: Remaining volume (positive while resting)
        side: Side.BUY or Side.SELL
        timestamp: Tick index at submission
        order_id: Assigned by the exchange at ingestion (0 = unassigned)
    """

    agent_id: int
    instrument_id: int
    price: float
    volume: int
    side: Side
    timestamp: int
    order_id: int = 0
    original_volume: int = field(init=False)

    def __post_init__(self) -> None:
        self.original_volume = self.volume

    @property
    def is_buy(self) -> bool:
        return self.side is Side.BUY

    @property
    def filled(self) -> int:
        """Volume executed so far."""
        return self.original_volume - self.volume


@dataclass(frozen=True)
class Trade:
    """An executed trade. Produced only by OrderBook.match_orders."""

    buy_agent_id: int
    sell_agent_id: int
    instrument_id: int
    price: float
    volume: int
    tick: int
    buy_order_id: int = 0
    sell_order_id: int = 0

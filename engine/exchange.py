"""
Exchange replica: one order book per instrument plus the thread-safe inbound
order queue.

A tick has two phases that must never overlap:

1. INGESTING: agents call submit_order concurrently (usually through a
   SubmissionWindow). Only the id counter and the pending queue are touched,
   under a single lock.
2. PROCESSING: process_tick drains the queue into the books and matches every
   book in increasing instrument order. Single-threaded.
"""

import dataclasses
import logging
import threading
from collections import deque
from typing import Sequence

import numpy as np

from engine.orderbook import DEFAULT_INITIAL_PRICE, OrderBook
from engine.orders import Order, Trade

GLOBAL_VIEW_POLICIES = ("local", "blend")


class PhaseError(RuntimeError):
    """Ingestion and processing were used at the same time."""


class SubmissionWindow:
    """
    Handle for the concurrent ingestion phase of one tick.

    While a window is open the owning exchange refuses to process. Use as a
    context manager:

        with exchange.submission_window() as window:
            window.submit(order)
    """

    def __init__(self, exchange: "Exchange") -> None:
        self._exchange = exchange
        self._closed = False

    def submit(self, order: Order) -> int | None:
        """Submit an order; returns the assigned order id or None if dropped."""
        if self._closed:
            raise PhaseError("submission window is closed")
        return self._exchange.submit_order(order)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._exchange._close_window()

    def __enter__(self) -> "SubmissionWindow":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Exchange:
    """
    A single exchange replica.

    Attributes:
        replica_id: Index of this replica in the cluster
        num_instruments: Number of instruments (fixed at construction)
        order_books: One OrderBook per instrument, indexed by instrument id
        trade_log: Every executed trade, in execution order
        global_view_policy: "local" (ignore cluster prices) or "blend"
        global_view_weight: Weight of the cluster price under "blend"
    """

    def __init__(
        self,
        num_instruments: int,
        initial_price: float = DEFAULT_INITIAL_PRICE,
        replica_id: int = 0,
        global_view_policy: str = "local",
        global_view_weight: float = 0.5,
    ) -> None:
        """
        Initialize the exchange.

        Args:
            num_instruments: Number of instruments traded (must be >= 1)
            initial_price: Starting last price of every instrument
            replica_id: Index of this replica in the cluster
            global_view_policy: How apply_global_view treats cluster prices
            global_view_weight: Blend weight in [0, 1] for the "blend" policy

        Raises:
            ValueError: On a non-positive instrument count or a bad policy
        """
        if num_instruments < 1:
            raise ValueError(f"num_instruments must be >= 1, got {num_instruments}")
        if global_view_policy not in GLOBAL_VIEW_POLICIES:
            raise ValueError(
                f"Unknown global view policy {global_view_policy!r}, "
                f"expected one of {GLOBAL_VIEW_POLICIES}"
            )
        if not 0.0 <= global_view_weight <= 1.0:
            raise ValueError(f"global_view_weight must be in [0, 1], got {global_view_weight}")

        self.replica_id = replica_id
        self.num_instruments = num_instruments
        self.initial_price = float(initial_price)
        self.global_view_policy = global_view_policy
        self.global_view_weight = global_view_weight

        self.order_books = [OrderBook(i, initial_price) for i in range(num_instruments)]
        self.trade_log: list[Trade] = []

        # Guarded by _lock
        self._lock = threading.Lock()
        self._pending: deque[Order] = deque()
        self._next_order_id = 1
        self._open_windows = 0
        self._processing = False

        self.logger = logging.getLogger(f"engine.exchange.{replica_id}")

    # =========================================================================
    # INGESTION
    # =========================================================================

    def submit_order(self, order: Order) -> int | None:
        """
        Accept an order into the pending queue. Safe to call from many threads.

        Malformed orders (instrument out of range, volume <= 0) are dropped
        without an error.

        Args:
            order: Order created by an agent (its order_id is ignored)

        Returns:
            The assigned order id, or None if the order was dropped

        Raises:
            PhaseError: If the exchange is currently processing a tick
        """
        if not 0 <= order.instrument_id < self.num_instruments or order.volume <= 0:
            self.logger.debug(
                f"Dropped malformed order from agent {order.agent_id}: "
                f"instrument={order.instrument_id} volume={order.volume}"
            )
            return None

        with self._lock:
            if self._processing:
                raise PhaseError("cannot submit an order while a tick is being processed")
            order_id = self._next_order_id
            self._next_order_id += 1
            self._pending.append(dataclasses.replace(order, order_id=order_id))
        return order_id

    def submission_window(self) -> SubmissionWindow:
        """
        Open the ingestion phase for one tick.

        Raises:
            PhaseError: If the exchange is currently processing
        """
        with self._lock:
            if self._processing:
                raise PhaseError("cannot open a submission window while processing")
            self._open_windows += 1
        return SubmissionWindow(self)

    def _close_window(self) -> None:
        with self._lock:
            self._open_windows -= 1

    @property
    def pending_count(self) -> int:
        """Number of orders waiting for the next process_tick."""
        with self._lock:
            return len(self._pending)

    # =========================================================================
    # PROCESSING
    # =========================================================================

    def process_tick(self, tick: int) -> int:
        """
        Drain the pending queue into the books and match every instrument.

        Must not run while submissions are in flight.

        Args:
            tick: Current tick index

        Returns:
            Number of trades executed this tick

        Raises:
            PhaseError: If a submission window is still open or another
                process_tick is running
        """
        with self._lock:
            if self._open_windows:
                raise PhaseError(
                    f"process_tick({tick}) called with {self._open_windows} "
                    "submission window(s) open"
                )
            if self._processing:
                raise PhaseError(f"process_tick({tick}) called while another tick is processing")
            self._processing = True
            pending = self._pending
            self._pending = deque()

        try:
            for order in pending:
                self.order_books[order.instrument_id].add_order(order)

            trades_total = 0
            for book in self.order_books:
                trades = book.match_orders(tick)
                trades_total += len(trades)
                self.trade_log.extend(trades)
        finally:
            with self._lock:
                self._processing = False

        return trades_total

    # =========================================================================
    # MARKET DATA
    # =========================================================================

    def price(self, instrument_id: int) -> float:
        """Last price of an instrument (0.0 for an unknown instrument)."""
        if 0 <= instrument_id < self.num_instruments:
            return self.order_books[instrument_id].last_price
        return 0.0

    def historical_average(self, instrument_id: int) -> float:
        """Historical average price of an instrument (0.0 if unknown)."""
        if 0 <= instrument_id < self.num_instruments:
            return self.order_books[instrument_id].historical_average()
        return 0.0

    def price_snapshot(self) -> np.ndarray:
        """Last price of every instrument, indexed by instrument id."""
        return np.array([book.last_price for book in self.order_books], dtype=np.float64)

    def apply_global_view(self, global_prices: Sequence[float]) -> None:
        """
        Incorporate the cluster-wide price view.

        "local": no-op, local prices stay authoritative.
        "blend": last_price <- (1 - w) * local + w * global. Price history is
        left alone since it only records executed trades.

        Args:
            global_prices: Aggregated price per instrument

        Raises:
            ValueError: If the vector length does not match num_instruments
        """
        if len(global_prices) != self.num_instruments:
            raise ValueError(
                f"global view has {len(global_prices)} prices, "
                f"expected {self.num_instruments}"
            )
        if self.global_view_policy == "local":
            return

        w = self.global_view_weight
        for book, global_price in zip(self.order_books, global_prices):
            book.last_price = (1.0 - w) * book.last_price + w * float(global_price)

"""
CSV export of a replica's trade log and per-tick price table.

Two files per replica:
- trades_rank_<r>.csv: one row per trade, in execution order
- prices_rank_<r>.csv: one row per tick, one column per instrument, each cell
  the last trade price at or before that tick
"""

import logging
from pathlib import Path
from typing import Sequence

import pandas as pd

from engine.exchange import Exchange
from engine.orders import Trade

TRADE_COLUMNS = ["Timestamp", "Instrument", "BuyAgent", "SellAgent", "Price", "Volume"]

logger = logging.getLogger(__name__)


def trades_frame(trade_log: Sequence[Trade]) -> pd.DataFrame:
    """Trade table in execution order."""
    rows = [
        (t.tick, t.instrument_id, t.buy_agent_id, t.sell_agent_id, t.price, t.volume)
        for t in trade_log
    ]
    return pd.DataFrame(rows, columns=TRADE_COLUMNS)


def price_frame(
    trade_log: Sequence[Trade],
    num_instruments: int,
    num_ticks: int,
    initial_price: float,
) -> pd.DataFrame:
    """
    Per-tick last-known price of every instrument.

    Args:
        trade_log: Trades in execution order
        num_instruments: Number of instrument columns
        num_ticks: Number of tick rows (0..num_ticks-1)
        initial_price: Price before an instrument's first trade

    Returns:
        DataFrame indexed by Tick with columns Instrument_0..Instrument_{n-1}
    """
    ticks = pd.RangeIndex(num_ticks, name="Tick")
    instruments = range(num_instruments)

    if trade_log:
        trades = pd.DataFrame(
            [(t.tick, t.instrument_id, t.price) for t in trade_log],
            columns=["tick", "instrument", "price"],
        )
        # Last trade of each (tick, instrument) in execution order
        closes = trades.groupby(["tick", "instrument"], sort=True)["price"].last().unstack()
        frame = closes.reindex(index=ticks, columns=instruments).ffill()
    else:
        frame = pd.DataFrame(index=ticks, columns=instruments, dtype=float)

    frame = frame.fillna(float(initial_price)).astype(float)
    frame.index.name = "Tick"
    frame.columns = [f"Instrument_{i}" for i in instruments]
    return frame


def export_replica(
    exchange: Exchange,
    output_dir: str | Path,
    num_ticks: int,
) -> tuple[Path, Path]:
    """
    Write the trade and price tables of one replica.

    Args:
        exchange: Replica whose trade log is exported
        output_dir: Directory to write into (created if missing)
        num_ticks: Number of ticks simulated

    Returns:
        (trades_path, prices_path)
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    rank = exchange.replica_id

    trades_path = output_dir / f"trades_rank_{rank}.csv"
    prices_path = output_dir / f"prices_rank_{rank}.csv"

    trades_frame(exchange.trade_log).to_csv(trades_path, index=False)
    price_frame(
        exchange.trade_log,
        exchange.num_instruments,
        num_ticks,
        exchange.initial_price,
    ).to_csv(prices_path)

    logger.info(f"Replica {rank}: exported {len(exchange.trade_log)} trades to {trades_path}")
    return trades_path, prices_path

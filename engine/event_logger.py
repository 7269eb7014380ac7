"""
Event Logger for per-tick market replay.

Logs tick summaries and trade executions of one replica to JSONL for
post-hoc analysis of price dynamics across replicas.
"""

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Sequence, TextIO

from engine.orders import Trade


@dataclass
class TickEvent:
    """Summary of one processed tick."""

    replica: int
    tick: int
    orders_submitted: int
    orders_accepted: int
    trades: int
    local_prices: list[float]
    global_prices: list[float]


@dataclass
class TradeEvent:
    """A trade execution."""

    replica: int
    tick: int
    instrument_id: int
    buy_agent_id: int
    sell_agent_id: int
    price: float
    volume: int


class EventLogger:
    """
    Logs market events to JSONL format.

    Usage:
        logger = EventLogger(Path("logs/run_replica_0_events.jsonl"))
        logger.log_tick(replica=0, tick=5, orders_submitted=8, orders_accepted=8,
                        trades=3, local_prices=[...], global_prices=[...])
        logger.close()
    """

    def __init__(self, output_path: Path):
        """
        Initialize the event logger.

        Args:
            output_path: Path to write JSONL file
        """
        self.output_path = Path(output_path)
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self._file: TextIO | None = None
        self._open()

    def _open(self) -> None:
        """Open the output file for writing."""
        self._file = open(self.output_path, "w")

    def log_tick(
        self,
        replica: int,
        tick: int,
        orders_submitted: int,
        orders_accepted: int,
        trades: int,
        local_prices: Sequence[float],
        global_prices: Sequence[float],
    ) -> None:
        """Log the outcome of one tick."""
        event = TickEvent(
            replica=replica,
            tick=tick,
            orders_submitted=orders_submitted,
            orders_accepted=orders_accepted,
            trades=trades,
            local_prices=[float(p) for p in local_prices],
            global_prices=[float(p) for p in global_prices],
        )
        self._write_event(event)

    def log_trade(self, replica: int, trade: Trade) -> None:
        """Log a trade execution event."""
        event = TradeEvent(
            replica=replica,
            tick=trade.tick,
            instrument_id=trade.instrument_id,
            buy_agent_id=trade.buy_agent_id,
            sell_agent_id=trade.sell_agent_id,
            price=trade.price,
            volume=trade.volume,
        )
        self._write_event(event)

    def _write_event(self, event: TickEvent | TradeEvent) -> None:
        """Write an event to the JSONL file."""
        if self._file is None:
            return

        data = asdict(event)
        data["event_type"] = "tick" if isinstance(event, TickEvent) else "trade"
        self._file.write(json.dumps(data) + "\n")

    def flush(self) -> None:
        """Flush the output buffer."""
        if self._file:
            self._file.flush()

    def close(self) -> None:
        """Close the output file."""
        if self._file:
            self._file.close()
            self._file = None

    def __enter__(self) -> "EventLogger":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def load_events(log_path: Path) -> list[dict[str, object]]:
    """
    Load events from a JSONL file.

    Args:
        log_path: Path to the JSONL file

    Returns:
        List of event dictionaries
    """
    events = []
    with open(log_path) as f:
        for line in f:
            if line.strip():
                events.append(json.loads(line))
    return events

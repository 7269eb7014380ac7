"""
engine - Core Market Logic (multi-venue exchange simulator)

This package contains the order-matching and tick-synchronization engine.
Every replica runs the same tick loop: concurrent order ingestion, single
threaded matching, cross-replica price aggregation and a cluster barrier.

Modules:
    orders: Order / Trade value types
    orderbook: Per-instrument price-time priority matching
    exchange: Thread-safe ingestion and per-tick processing
    market_sync: Cross-replica aggregation and barrier (plus transports)
    simulation: The per-replica tick loop
    cluster: Multi-replica launcher (threads or processes)
    export: CSV trade/price tables
"""

__version__ = "1.0.0"

# tests/conftest.py
"""Minimal shared fixtures for test suite."""

import numpy as np
import pytest
from omegaconf import OmegaConf

from engine.orders import Order, Side


@pytest.fixture
def seed():
    """Fixed seed for reproducibility."""
    return 42


@pytest.fixture
def rng(seed):
    """Numpy random generator with fixed seed."""
    return np.random.default_rng(seed)


@pytest.fixture
def make_order():
    """Factory for orders with sensible defaults."""

    def _make(
        price: float,
        volume: int,
        side: Side = Side.BUY,
        timestamp: int = 0,
        agent_id: int = 1,
        instrument_id: int = 0,
        order_id: int = 0,
    ) -> Order:
        return Order(
            agent_id=agent_id,
            instrument_id=instrument_id,
            price=price,
            volume=volume,
            side=side,
            timestamp=timestamp,
            order_id=order_id,
        )

    return _make


@pytest.fixture
def sim_config(tmp_path, seed):
    """Small simulation config writing into a temporary directory."""
    return OmegaConf.create(
        {
            "market": {"num_instruments": 3, "num_ticks": 20, "initial_price": 100.0},
            "agents": {
                "num_agents": 8,
                "seed": seed,
                "max_workers": None,
                "strategies": ["RandomWalk", "Momentum", "MeanReversion", "MarketMaker"],
            },
            "exchange": {"global_view": {"policy": "local", "weight": 0.5}},
            "cluster": {
                "num_replicas": 1,
                "backend": "thread",
                "start_method": "spawn",
                "barrier_timeout": 30.0,
            },
            "experiment": {
                "name": "test",
                "output_dir": str(tmp_path / "out"),
                "log_level": "INFO",
                "progress_interval": 0,
                "export": True,
                "log_events": False,
                "log_dir": str(tmp_path / "logs"),
            },
        }
    )

"""
Run Simulation Script.

Usage:
    python scripts/run_simulation.py
    python scripts/run_simulation.py cluster.num_replicas=4 market.num_ticks=500
    python scripts/run_simulation.py cluster.backend=thread exchange.global_view.policy=blend
"""

import logging
import sys
from pathlib import Path

import hydra
from omegaconf import DictConfig

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from engine.cluster import configure_logging, run_cluster


@hydra.main(version_base=None, config_path="../conf", config_name="config")
def main(cfg: DictConfig) -> None:
    configure_logging(cfg.experiment.log_level)

    logging.info(f"Running simulation: {cfg.experiment.name}")
    summary = run_cluster(cfg)

    for result in summary.replicas:
        logging.info(
            f"Replica {result.replica_id}: {result.orders_submitted} orders, "
            f"{result.trades} trades, final prices {[round(p, 4) for p in result.final_prices]}"
        )


if __name__ == "__main__":
    main()

"""
Agent Factory.
"""

from typing import Any, Sequence

from traders.base import Agent
from traders.market_maker import MarketMaker
from traders.mean_reversion import MeanReversion
from traders.momentum import Momentum
from traders.random_walk import RandomWalk

AGENT_TYPES: dict[str, type[Agent]] = {
    "RandomWalk": RandomWalk,
    "Momentum": Momentum,
    "MeanReversion": MeanReversion,
    "MarketMaker": MarketMaker,
}

# Strategy mix cycled over agent index when none is configured
DEFAULT_STRATEGIES = ("RandomWalk", "Momentum", "MeanReversion", "MarketMaker")


def create_agent(
    agent_type: str,
    agent_id: int,
    seed: int | None = None,
    **kwargs: Any,
) -> Agent:
    """
    Agent instance

    Args:
        agent_type: Strategy name (key of AGENT_TYPES)
        agent_id: Global agent id
        seed: Seed for the agent's random generator
        **kwargs: Strategy parameters

    Raises:
        ValueError: For an unknown strategy name
    """
    try:
        cls = AGENT_TYPES[agent_type]
    except KeyError:
        raise ValueError(
            f"Unknown agent type {agent_type!r}, expected one of {sorted(AGENT_TYPES)}"
        ) from None
    return cls(agent_id, seed=seed, **kwargs)


def create_agents(
    num_agents: int,
    replica_id: int = 0,
    strategies: Sequence[str] = DEFAULT_STRATEGIES,
    base_seed: int | None = None,
    params: dict[str, dict[str, Any]] | None = None,
) -> list[Agent]:
    """
    Build the agent pool of one replica.

    Agent i gets the global id replica_id * num_agents + i and the strategy
    strategies[i % len(strategies)].

    Args:
        num_agents: Agents per replica
        replica_id: Index of the owning replica
        strategies: Strategy names cycled over the agent index
        base_seed: Agent seed is base_seed + global id (None = unseeded)
        params: Optional per-strategy keyword arguments
    """
    if not strategies:
        raise ValueError("strategies must not be empty")
    params = params or {}

    agents = []
    for i in range(num_agents):
        agent_id = replica_id * num_agents + i
        agent_type = strategies[i % len(strategies)]
        seed = None if base_seed is None else base_seed + agent_id
        agents.append(create_agent(agent_type, agent_id, seed=seed, **params.get(agent_type, {})))
    return agents

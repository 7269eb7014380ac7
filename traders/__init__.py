"""
traders - Agent strategies

Each agent turns (current price, historical average) into candidate orders:
- RandomWalk: coin-flip side, quotes 1% away from the last price
- Momentum: buys when the price runs above its historical average
- MeanReversion: buys when the price falls below its historical average
- MarketMaker: quotes both sides around the last price

All agents implement traders.base.Agent.
"""

__version__ = "1.0.0"

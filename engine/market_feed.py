from __future__ import annotations

import random
from typing import Iterable, Optional

from engine.portfolio import Trade


class SimulatedMarketFeed:
    """Random-walk price noise applied to every open trade on each tick."""

    def __init__(self, rng: Optional[random.Random] = None, volatility: float = 0.01):
        if volatility < 0:
            raise ValueError("volatility cannot be negative")
        self.rng = rng or random.Random()
        self.volatility = volatility

    def next_price(self, price: float) -> float:
        return price * (1 + self.rng.uniform(-self.volatility, self.volatility))

    def apply(self, trades: Iterable[Trade]) -> None:
        for trade in trades:
            trade.mark(self.next_price(trade.current_price))

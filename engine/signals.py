from __future__ import annotations

from datetime import datetime
import math
import random
from typing import Optional, Sequence, Tuple

from engine.parameters import TradingParameters
from engine.portfolio import Side, Trade, TradeStatus


SYMBOLS: Tuple[str, ...] = ("SPY", "QQQ", "AAPL", "TSLA", "NVDA", "MSFT", "AMZN", "IWM")
STRATEGIES: Tuple[str, ...] = ("Momentum", "Mean Reversion", "Breakout", "Iron Condor")


def max_size(price: float, parameters: TradingParameters, equity: float) -> int:
    if price <= 0:
        return 0
    by_position = parameters.max_position_size / price
    by_equity = (parameters.max_trade_percentage / 100) * equity / price
    return max(math.floor(min(by_position, by_equity)), 0)


class SignalGenerator:
    def __init__(
        self,
        rng: Optional[random.Random] = None,
        probability: float = 0.05,
        symbols: Sequence[str] = SYMBOLS,
        strategies: Sequence[str] = STRATEGIES,
        price_range: Tuple[float, float] = (100.0, 500.0),
    ):
        if not 0 <= probability <= 1:
            raise ValueError("probability must be between 0 and 1")
        if not symbols:
            raise ValueError("at least one symbol is required")
        self.rng = rng or random.Random()
        self.probability = probability
        self.symbols = tuple(symbols)
        self.strategies = tuple(strategies) or ("Auto",)
        self.price_range = price_range

    def maybe_generate(
        self,
        open_count: int,
        parameters: TradingParameters,
        equity: float,
        trade_id: str,
        now: datetime,
    ) -> Optional[Trade]:
        if open_count >= parameters.max_open_positions:
            return None
        if self.rng.random() >= self.probability:
            return None

        symbol = self.rng.choice(self.symbols)
        side = self.rng.choice((Side.BUY, Side.SELL))
        price = round(self.rng.uniform(*self.price_range), 2)
        size = max_size(price, parameters, equity)
        if size <= 0:
            return None

        return Trade(
            id=trade_id,
            symbol=symbol,
            side=side,
            size=size,
            entry_price=price,
            current_price=price,
            pnl=0.0,
            timestamp=now.isoformat(),
            status=TradeStatus.PENDING,
            strategy=self.rng.choice(self.strategies),
        )

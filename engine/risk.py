from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Iterable

from engine.parameters import TradingParameters
from engine.portfolio import Trade


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


RISK_MESSAGES = {
    RiskLevel.LOW: "Risk within acceptable limits",
    RiskLevel.MEDIUM: "Elevated exposure, monitor open positions",
    RiskLevel.HIGH: "Approaching risk limits",
}


@dataclass
class RiskMetrics:
    daily_loss_used: float
    max_position_used: float
    open_positions: int
    risk_exposure: float
    score: float
    level: RiskLevel

    @property
    def message(self) -> str:
        return RISK_MESSAGES[self.level]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        data["message"] = self.message
        return data


@dataclass
class RiskSnapshot:
    open_positions: int
    daily_loss_used: float
    blocked: bool
    reason: str


class RiskAggregator:
    LOSS_WEIGHT = 0.4
    POSITIONS_WEIGHT = 0.3
    SIZE_WEIGHT = 0.3
    MEDIUM_THRESHOLD = 0.3
    HIGH_THRESHOLD = 0.7

    def compute(self, active_trades: Iterable[Trade], daily_pnl: float, parameters: TradingParameters) -> RiskMetrics:
        notionals = [t.notional for t in active_trades]
        daily_loss_used = max(0.0, -daily_pnl)
        max_position_used = max(notionals + [0.0])
        open_positions = len(notionals)

        # Ratios are not clamped; a score above 1 maps to HIGH.
        score = (
            self.LOSS_WEIGHT * (daily_loss_used / parameters.daily_loss_limit)
            + self.POSITIONS_WEIGHT * (open_positions / parameters.max_open_positions)
            + self.SIZE_WEIGHT * (max_position_used / parameters.max_position_size)
        )
        return RiskMetrics(
            daily_loss_used=daily_loss_used,
            max_position_used=max_position_used,
            open_positions=open_positions,
            risk_exposure=sum(notionals),
            score=score,
            level=self.classify(score),
        )

    def classify(self, score: float) -> RiskLevel:
        if score < self.MEDIUM_THRESHOLD:
            return RiskLevel.LOW
        if score < self.HIGH_THRESHOLD:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH

    def can_open_new_trade(self, metrics: RiskMetrics, parameters: TradingParameters) -> RiskSnapshot:
        if metrics.open_positions >= parameters.max_open_positions:
            return RiskSnapshot(metrics.open_positions, metrics.daily_loss_used, True, "Max open positions reached")
        if metrics.daily_loss_used >= parameters.daily_loss_limit:
            return RiskSnapshot(metrics.open_positions, metrics.daily_loss_used, True, "Daily loss limit reached")
        return RiskSnapshot(metrics.open_positions, metrics.daily_loss_used, False, "")

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict


@dataclass(frozen=True)
class TradingParameters:
    max_position_size: float = 10000.0
    daily_loss_limit: float = 500.0
    max_trade_percentage: float = 2.0
    max_open_positions: int = 5
    stop_loss_pct: float = 5.0
    take_profit_pct: float = 10.0
    risk_per_trade: float = 1.0

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            try:
                number = float(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{f.name} must be numeric, got {value!r}") from exc
            if f.name == "max_open_positions":
                if not number.is_integer():
                    raise ValueError(f"max_open_positions must be a whole number, got {value!r}")
                number = int(number)
            object.__setattr__(self, f.name, number)

    def validate(self) -> "TradingParameters":
        for name in ("max_position_size", "daily_loss_limit", "max_trade_percentage", "max_open_positions"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.stop_loss_pct <= 0:
            raise ValueError("stop_loss_pct must be positive")
        if self.take_profit_pct <= 0:
            raise ValueError("take_profit_pct must be positive")
        if self.risk_per_trade < 0:
            raise ValueError("risk_per_trade cannot be negative")
        return self

    def updated(self, **changes: Any) -> "TradingParameters":
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown trading parameter(s): {', '.join(unknown)}")
        return replace(self, **changes).validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradingParameters":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known}).validate()

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from engine.parameters import TradingParameters


@dataclass
class EngineConfig:
    tick_seconds: float = 2.0
    initial_equity: float = 25000.0
    fee_rate: float = 0.05
    new_trade_probability: float = 0.05
    price_volatility: float = 0.01
    recent_trades_limit: int = 10
    state_file: Optional[Path] = Path(".state/engine_state.json")
    seed: Optional[int] = None
    broker_mode: str = "simulated"
    broker_base_url: str = ""
    broker_api_key: str = ""
    broker_user_id: str = ""
    broker_max_retries: int = 3
    broker_backoff_base: float = 0.5
    kem_conversion_rate: float = 0.05
    parameters: TradingParameters = field(default_factory=TradingParameters)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def load_config() -> EngineConfig:
    load_dotenv()

    defaults = TradingParameters()
    parameters = TradingParameters(
        max_position_size=_env_float("MAX_POSITION_SIZE", defaults.max_position_size),
        daily_loss_limit=_env_float("DAILY_LOSS_LIMIT", defaults.daily_loss_limit),
        max_trade_percentage=_env_float("MAX_TRADE_PERCENTAGE", defaults.max_trade_percentage),
        max_open_positions=_env_int("MAX_OPEN_POSITIONS", defaults.max_open_positions),
        stop_loss_pct=_env_float("STOP_LOSS_PERCENT", defaults.stop_loss_pct),
        take_profit_pct=_env_float("TAKE_PROFIT_PERCENT", defaults.take_profit_pct),
        risk_per_trade=_env_float("RISK_PER_TRADE", defaults.risk_per_trade),
    ).validate()

    state_file = os.getenv("ENGINE_STATE_FILE", ".state/engine_state.json").strip()
    seed = os.getenv("ENGINE_SEED", "").strip()
    broker_mode = os.getenv("BROKER_MODE", "simulated").strip().lower()
    if broker_mode not in {"simulated", "rest"}:
        raise ValueError(f"BROKER_MODE must be 'simulated' or 'rest', got {broker_mode!r}")

    config = EngineConfig(
        tick_seconds=_env_float("ENGINE_TICK_SECONDS", 2.0),
        initial_equity=_env_float("ENGINE_INITIAL_EQUITY", 25000.0),
        fee_rate=_env_float("PLATFORM_FEE_RATE", 0.05),
        new_trade_probability=_env_float("NEW_TRADE_PROBABILITY", 0.05),
        price_volatility=_env_float("PRICE_VOLATILITY", 0.01),
        recent_trades_limit=_env_int("RECENT_TRADES_LIMIT", 10),
        state_file=Path(state_file) if state_file else None,
        seed=int(seed) if seed else None,
        broker_mode=broker_mode,
        broker_base_url=os.getenv("BROKER_BASE_URL", "").strip(),
        broker_api_key=os.getenv("BROKER_API_KEY", "").strip(),
        broker_user_id=os.getenv("BROKER_USER_ID", "").strip(),
        broker_max_retries=_env_int("BROKER_MAX_RETRIES", 3),
        broker_backoff_base=_env_float("BROKER_BACKOFF_BASE", 0.5),
        kem_conversion_rate=_env_float("KEM_CONVERSION_RATE", 0.05),
        parameters=parameters,
    )

    if config.tick_seconds <= 0:
        raise ValueError("ENGINE_TICK_SECONDS must be positive")
    if not 0 <= config.fee_rate < 1:
        raise ValueError("PLATFORM_FEE_RATE must be in [0, 1)")
    if config.recent_trades_limit <= 0:
        raise ValueError("RECENT_TRADES_LIMIT must be positive")
    return config

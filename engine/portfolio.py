from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum
import logging
import threading
from typing import Any, Callable, Deque, Dict, List, Optional


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    PENDING = "pending"


@dataclass
class Trade:
    id: str
    symbol: str
    side: Side
    size: int
    entry_price: float
    current_price: float
    pnl: float
    timestamp: str
    status: TradeStatus = TradeStatus.OPEN
    strategy: str = ""
    exit_reason: Optional[str] = None
    fee: float = 0.0
    closed_at: Optional[str] = None

    @property
    def direction(self) -> int:
        return 1 if self.side == Side.BUY else -1

    @property
    def notional(self) -> float:
        return self.current_price * self.size

    @property
    def pnl_percent(self) -> float:
        cost = self.entry_price * self.size
        if cost <= 0:
            return 0.0
        return self.pnl / cost * 100

    @property
    def net_pnl(self) -> float:
        return self.pnl - self.fee

    def mark(self, price: float) -> None:
        self.current_price = price
        self.pnl = (price - self.entry_price) * self.size * self.direction

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trade":
        payload = dict(data)
        payload["side"] = Side(payload["side"])
        payload["status"] = TradeStatus(payload.get("status", TradeStatus.OPEN.value))
        return cls(**payload)


@dataclass
class EngineStatus:
    is_running: bool
    total_pnl: float
    daily_pnl: float
    total_trades: int
    win_rate: float
    drawdown: float
    fees: float
    account_equity: float


class Portfolio:
    """
    Position ledger for the simulated engine.

    Active trades are marked to market every tick. Closed trades are kept only
    in the bounded ``recent_trades`` list for display; win rate and drawdown
    come from running counters that cover every trade ever closed.
    """

    def __init__(
        self,
        initial_equity: float = 25000.0,
        recent_limit: int = 10,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.logger = logging.getLogger("portfolio")
        self._clock = clock
        self._lock = threading.Lock()

        self.initial_equity = float(initial_equity)
        self.account_equity = float(initial_equity)
        self.total_pnl = 0.0
        self.daily_pnl = 0.0
        self.fees = 0.0
        self.total_trades = 0
        self.wins = 0
        self.peak_equity = self.account_equity
        self.drawdown = 0.0

        self.active_trades: List[Trade] = []
        self.recent_trades: Deque[Trade] = deque(maxlen=recent_limit)
        self._pnl_day: date = clock().date()

    def _roll_day(self) -> None:
        today = self._clock().date()
        if today != self._pnl_day:
            self.daily_pnl = 0.0
            self._pnl_day = today

    def open_trade(self, trade: Trade, max_open_positions: int) -> Trade:
        if trade.size <= 0:
            raise ValueError(f"Trade size must be positive, got {trade.size}")
        with self._lock:
            if len(self.active_trades) >= max_open_positions:
                raise ValueError("Max open positions reached")
            trade.status = TradeStatus.OPEN
            self.active_trades.append(trade)
            return trade

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        with self._lock:
            for trade in self.active_trades:
                if trade.id == trade_id:
                    return trade
            return None

    def close_trade(self, trade_id: str, reason: str, fee_rate: float) -> Trade:
        with self._lock:
            self._roll_day()
            trade = next((t for t in self.active_trades if t.id == trade_id), None)
            if trade is None:
                raise ValueError(f"No active trade {trade_id}")

            trade.fee = trade.pnl * fee_rate if trade.pnl > 0 else 0.0
            trade.status = TradeStatus.CLOSED
            trade.exit_reason = reason
            trade.closed_at = self._clock().isoformat()
            net = trade.net_pnl

            self.active_trades.remove(trade)
            self.account_equity += net
            self.total_pnl += net
            self.daily_pnl += net
            self.fees += trade.fee
            self.total_trades += 1
            if net > 0:
                self.wins += 1
            self.peak_equity = max(self.peak_equity, self.account_equity)
            self.drawdown = max(self.drawdown, self.peak_equity - self.account_equity)
            self.recent_trades.appendleft(trade)
            return trade

    def liquidate_all(self) -> List[Trade]:
        with self._lock:
            cleared = list(self.active_trades)
            self.active_trades.clear()
        if cleared:
            self.logger.warning("liquidated %s open position(s) without exit accounting", len(cleared))
        return cleared

    def active_snapshot(self) -> List[Trade]:
        with self._lock:
            return list(self.active_trades)

    def recent_snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [t.to_dict() for t in self.recent_trades]

    def win_rate(self) -> float:
        with self._lock:
            return (self.wins / self.total_trades * 100) if self.total_trades else 0.0

    def max_drawdown(self) -> float:
        with self._lock:
            return self.drawdown

    def current_daily_pnl(self) -> float:
        with self._lock:
            self._roll_day()
            return self.daily_pnl

    def stats(self, is_running: bool) -> EngineStatus:
        daily = self.current_daily_pnl()
        return EngineStatus(
            is_running=is_running,
            total_pnl=self.total_pnl,
            daily_pnl=daily,
            total_trades=self.total_trades,
            win_rate=self.win_rate(),
            drawdown=self.max_drawdown(),
            fees=self.fees,
            account_equity=self.account_equity,
        )

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "initial_equity": self.initial_equity,
                "account_equity": self.account_equity,
                "total_pnl": self.total_pnl,
                "daily_pnl": self.daily_pnl,
                "pnl_day": self._pnl_day.isoformat(),
                "fees": self.fees,
                "total_trades": self.total_trades,
                "wins": self.wins,
                "peak_equity": self.peak_equity,
                "max_drawdown": self.drawdown,
                "active_trades": [t.to_dict() for t in self.active_trades],
                "recent_trades": [t.to_dict() for t in self.recent_trades],
            }

    def restore(self, data: Dict[str, Any]) -> None:
        with self._lock:
            self.initial_equity = float(data.get("initial_equity", self.initial_equity))
            self.account_equity = float(data.get("account_equity", self.account_equity))
            self.total_pnl = float(data.get("total_pnl", 0.0))
            self.daily_pnl = float(data.get("daily_pnl", 0.0))
            if data.get("pnl_day"):
                self._pnl_day = date.fromisoformat(data["pnl_day"])
            self.fees = float(data.get("fees", 0.0))
            self.total_trades = int(data.get("total_trades", 0))
            self.wins = int(data.get("wins", 0))
            self.peak_equity = float(data.get("peak_equity", self.account_equity))
            self.drawdown = float(data.get("max_drawdown", 0.0))
            self.active_trades = [Trade.from_dict(t) for t in data.get("active_trades", [])]
            self.recent_trades.clear()
            self.recent_trades.extend(Trade.from_dict(t) for t in data.get("recent_trades", []))

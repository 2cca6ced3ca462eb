from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
import json
import logging
import random
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from engine.broker import BrokerConnection, broker_from_config
from engine.config import EngineConfig, load_config
from engine.event_bus import EventBus
from engine.market_feed import SimulatedMarketFeed
from engine.mode import EngineState, StateMachine
from engine.parameters import TradingParameters
from engine.portfolio import Portfolio, Trade
from engine.risk import RiskAggregator, RiskMetrics
from engine.signals import SignalGenerator
from engine.store import EngineStateStore, MemoryStateStore

Event = Tuple[str, Dict[str, Any]]


class TradingEngine:
    ERROR_BACKOFF_SECONDS = 5

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        broker: Optional[BrokerConnection] = None,
        store=None,
        bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now,
        autotick: bool = True,
    ):
        self.logger = logging.getLogger("trading_engine")
        self.config = config or load_config()
        self.autotick = autotick
        self._clock = clock

        self.broker = broker or broker_from_config(self.config)
        if store is None:
            store = EngineStateStore(self.config.state_file) if self.config.state_file else MemoryStateStore()
        self.store = store
        self.bus = bus or EventBus()

        rng = rng or random.Random(self.config.seed)
        self.feed = SimulatedMarketFeed(rng, volatility=self.config.price_volatility)
        self.signals = SignalGenerator(rng, probability=self.config.new_trade_probability)
        self.risk_aggregator = RiskAggregator()
        self.parameters: TradingParameters = self.config.parameters
        self.portfolio = self._new_portfolio()
        self._trade_seq = 0

        self._state_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._engine_thread: Optional[threading.Thread] = None

        self.state_machine = StateMachine(self._restore())

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def start(self) -> Dict[str, Any]:
        if self.state_machine.is_running:
            return {"status": "already_running", "state": self.state.value}
        if not self.broker.is_connected():
            self.logger.warning("start blocked: broker not connected")
            self._log_event("start_blocked", details={"broker": self.broker.status().value})
            return {"status": "broker_not_connected", "state": self.state.value}

        with self._state_lock:
            if self.state_machine.is_running:
                return {"status": "already_running", "state": self.state.value}
            change = self.state_machine.transition(EngineState.RUNNING, "User initiated start")
            if self.autotick:
                self._stop_event = threading.Event()
                self._engine_thread = threading.Thread(
                    target=self._engine_loop,
                    args=(self._stop_event,),
                    name="trading-engine-loop",
                    daemon=True,
                )
                self._engine_thread.start()
            self._persist()

        self._publish_state(change.from_state, change.to_state)
        return {"status": "running", "from": change.from_state.value, "state": self.state.value}

    def pause(self) -> Dict[str, Any]:
        with self._state_lock:
            if self.state != EngineState.RUNNING:
                return {"status": "not_running", "state": self.state.value}
            change = self.state_machine.transition(EngineState.PAUSED, "User initiated pause")
            thread = self._halt_ticking()
            self._persist()

        self._join(thread)
        self._publish_state(change.from_state, change.to_state)
        return {
            "status": "paused",
            "state": self.state.value,
            "open_positions": len(self.portfolio.active_snapshot()),
        }

    def stop(self) -> Dict[str, Any]:
        with self._state_lock:
            if self.state == EngineState.STOPPED:
                return {"status": "already_stopped", "state": self.state.value, "liquidated": []}
            change = self.state_machine.transition(EngineState.STOPPED, "User initiated stop")
            thread = self._halt_ticking()
            cleared = self.portfolio.liquidate_all()
            self._persist()

        self._join(thread)
        liquidated = [t.id for t in cleared]
        self._log_event("engine_stopped", details={"liquidated": liquidated})
        self._publish_state(change.from_state, change.to_state)
        return {"status": "stopped", "state": self.state.value, "liquidated": liquidated}

    def emergency_stop(self) -> Dict[str, Any]:
        result = self.stop()
        if result["status"] == "already_stopped":
            return {**result, "emergency": True}
        self.logger.critical("EMERGENCY STOP liquidated=%s", result["liquidated"])
        self._log_event("emergency_stop", details={"stopped": True, "liquidated": result["liquidated"]})
        self.bus.publish("engine.emergency_stop", {"liquidated": result["liquidated"], "state": self.state.value})
        return {**result, "emergency": True}

    def close(self) -> None:
        """Halt the tick thread and persist without changing engine state."""
        with self._state_lock:
            thread = self._halt_ticking()
            self._persist()
        self._join(thread)

    def _halt_ticking(self) -> Optional[threading.Thread]:
        self._stop_event.set()
        thread, self._engine_thread = self._engine_thread, None
        return thread

    @staticmethod
    def _join(thread: Optional[threading.Thread]) -> None:
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=3)

    def _engine_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.config.tick_seconds):
            try:
                self.tick()
            except Exception as exc:  # pragma: no cover - keep the loop alive
                self.logger.exception("engine_loop_error error=%s", exc)
                stop_event.wait(self.ERROR_BACKOFF_SECONDS)

    # ------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------

    def tick(self) -> Dict[str, Any]:
        if not self.state_machine.is_running:
            return {"event": "not_running", "state": self.state.value}
        if not self.broker.is_connected():
            self.logger.warning("tick skipped: broker not connected")
            return {"event": "broker_disconnected"}

        events: List[Event] = []
        with self._state_lock:
            if not self.state_machine.is_running:
                return {"event": "not_running", "state": self.state.value}

            now = self._clock()
            params = self.parameters
            active = self.portfolio.active_snapshot()
            self.feed.apply(active)

            closed: List[Trade] = []
            for trade in active:
                reason = self._exit_reason(trade, params)
                if reason:
                    closed.append(self.portfolio.close_trade(trade.id, reason, self.config.fee_rate))

            metrics = self._metrics()
            opened: Optional[Trade] = None
            gate = self.risk_aggregator.can_open_new_trade(metrics, params)
            if not gate.blocked:
                candidate = self.signals.maybe_generate(
                    metrics.open_positions,
                    params,
                    self.portfolio.account_equity,
                    f"T-{self._trade_seq + 1}",
                    now,
                )
                if candidate:
                    opened = self.portfolio.open_trade(candidate, params.max_open_positions)
                    self._trade_seq += 1
                    metrics = self._metrics()

            self._persist()

        for trade in closed:
            self._log_event(
                "position_exit",
                trade_id=trade.id,
                details={"reason": trade.exit_reason, "pnl": trade.pnl, "fee": trade.fee},
            )
            events.append(("trades.closed", trade.to_dict()))
        if opened:
            self.logger.info(
                "ENTRY symbol=%s side=%s size=%s price=%s id=%s",
                opened.symbol, opened.side.value, opened.size, opened.entry_price, opened.id,
            )
            events.append(("trades.opened", opened.to_dict()))
        for topic, payload in events:
            self.bus.publish(topic, payload)

        return {
            "event": "tick",
            "closed": [t.id for t in closed],
            "opened": opened.id if opened else None,
            "risk": metrics.to_dict(),
            "blocked_reason": gate.reason or None,
        }

    @staticmethod
    def _exit_reason(trade: Trade, params: TradingParameters) -> Optional[str]:
        pnl_percent = trade.pnl_percent
        if pnl_percent <= -params.stop_loss_pct:
            return "Stop loss hit"
        if pnl_percent >= params.take_profit_pct:
            return "Take profit hit"
        return None

    # ------------------------------------------------------------
    # Queries and parameters
    # ------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self.state_machine.state

    def _metrics(self) -> RiskMetrics:
        return self.risk_aggregator.compute(
            self.portfolio.active_snapshot(),
            self.portfolio.current_daily_pnl(),
            self.parameters,
        )

    def risk(self) -> Dict[str, Any]:
        with self._state_lock:
            return self._metrics().to_dict()

    def status(self) -> Dict[str, Any]:
        with self._state_lock:
            stats = self.portfolio.stats(self.state_machine.is_running)
            metrics = self._metrics()
        return {
            **asdict(stats),
            "state": self.state.value,
            "broker": self.broker.status().value,
            "open_positions": metrics.open_positions,
            "risk_level": metrics.level.value,
        }

    def trades(self) -> Dict[str, Any]:
        return {
            "active": [t.to_dict() for t in self.portfolio.active_snapshot()],
            "recent": self.portfolio.recent_snapshot(),
        }

    def update_parameters(self, **changes: Any) -> Dict[str, Any]:
        with self._state_lock:
            self.parameters = self.parameters.updated(**changes)
            self._persist()
        self._log_event("parameters_updated", details=self.parameters.to_dict())
        return self.parameters.to_dict()

    # ------------------------------------------------------------
    # Persistence and events
    # ------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        with self._state_lock:
            return {
                "state": self.state.value,
                "trade_seq": self._trade_seq,
                "parameters": self.parameters.to_dict(),
                "portfolio": self.portfolio.to_dict(),
            }

    def _new_portfolio(self) -> Portfolio:
        return Portfolio(
            initial_equity=self.config.initial_equity,
            recent_limit=self.config.recent_trades_limit,
            clock=self._clock,
        )

    def _persist(self) -> None:
        self.store.save(self.snapshot())

    def _restore(self) -> EngineState:
        data = self.store.load()
        if not data:
            return EngineState.STOPPED

        try:
            previous = EngineState(data.get("state", EngineState.STOPPED.value))
            if data.get("parameters"):
                self.parameters = TradingParameters.from_dict(data["parameters"])
            self.portfolio.restore(data.get("portfolio", {}))
            self._trade_seq = int(data.get("trade_seq", 0))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            self.store.quarantine(exc)
            self.parameters = self.config.parameters
            self.portfolio = self._new_portfolio()
            self._trade_seq = 0
            return EngineState.STOPPED

        restored = EngineState.STOPPED if previous == EngineState.STOPPED else EngineState.PAUSED
        self.logger.info(
            "restored engine state previous=%s restored=%s open_positions=%s",
            previous.value, restored.value, len(self.portfolio.active_trades),
        )
        return restored

    def _publish_state(self, from_state: EngineState, to_state: EngineState) -> None:
        self.bus.publish("engine.state", {"from": from_state.value, "state": to_state.value})

    def _log_event(self, event: str, details: Dict[str, Any], trade_id: Optional[str] = None) -> None:
        payload = {
            "timestamp": self._clock().isoformat(),
            "event": event,
            "state": self.state.value,
            "trade_id": trade_id,
            "details": details,
        }
        self.logger.info(json.dumps(payload))

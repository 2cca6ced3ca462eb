from __future__ import annotations

from dataclasses import asdict
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from engine.access import Capability, User, require_capability
from engine.broker import SimulatedBrokerConnection
from engine.credits import KemCredits, claim_airdrop, kem_tokens, plan_admin_airdrop
from engine.trading_engine import TradingEngine


class JsonLogFormatter(logging.Formatter):
    """Engine events are already JSON and pass through; plain records get a flat envelope."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if message.startswith("{"):
            try:
                parsed = json.loads(message)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict) and "event" in parsed:
                return json.dumps({"level": record.levelname, **parsed})
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging() -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    root.setLevel(getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO))
    formatter = JsonLogFormatter()
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_file = os.getenv("LOG_FILE", "logs/engine.log").strip()
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)


logger = logging.getLogger("api")
app = FastAPI(title="Traderama Simulated Trading Engine")


class ParametersUpdate(BaseModel):
    max_position_size: Optional[float] = None
    daily_loss_limit: Optional[float] = None
    max_trade_percentage: Optional[float] = None
    max_open_positions: Optional[int] = None
    stop_loss_pct: Optional[float] = None
    take_profit_pct: Optional[float] = None
    risk_per_trade: Optional[float] = None


class CreditsQuoteRequest(BaseModel):
    credits: float = Field(ge=0)


class CreditsAccount(BaseModel):
    user_id: str
    credits_earned: int = Field(default=0, ge=0)
    credits_spent: int = Field(default=0, ge=0)


class ClaimRequest(CreditsAccount):
    ethereum_wallet: str


class AirdropRequest(BaseModel):
    accounts: List[CreditsAccount]
    conversion_rate: Optional[float] = None


def get_engine(request: Request) -> TradingEngine:
    engine: Optional[TradingEngine] = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine unavailable")
    return engine


def get_current_user(request: Request) -> Optional[User]:
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        return None
    return User(
        id=user_id,
        email=request.headers.get("X-User-Email", "").strip(),
        role=request.headers.get("X-User-Role", "user").strip() or "user",
    )


def authorize(user: Optional[User], capability: Capability) -> User:
    try:
        return require_capability(user, capability)
    except PermissionError as exc:
        logger.warning("access_denied capability=%s user=%s", capability.value, user.id if user else None)
        raise HTTPException(status_code=403, detail=str(exc)) from exc


def conversion_rate(request: Request) -> float:
    engine: Optional[TradingEngine] = getattr(request.app.state, "engine", None)
    if engine is None:
        return float(os.getenv("KEM_CONVERSION_RATE", "0.05"))
    return engine.config.kem_conversion_rate


@app.on_event("startup")
def startup() -> None:
    load_dotenv()
    configure_logging()
    if getattr(app.state, "engine", None) is None:
        app.state.engine = TradingEngine()


@app.on_event("shutdown")
def shutdown() -> None:
    engine = getattr(app.state, "engine", None)
    if engine:
        engine.close()


@app.get("/status")
def status(engine: TradingEngine = Depends(get_engine)):
    return engine.status()


@app.get("/risk")
def risk(engine: TradingEngine = Depends(get_engine)):
    return engine.risk()


@app.get("/trades")
def trades(engine: TradingEngine = Depends(get_engine)):
    return engine.trades()


@app.get("/parameters")
def get_parameters(engine: TradingEngine = Depends(get_engine)):
    return engine.parameters.to_dict()


@app.put("/parameters")
def update_parameters(
    payload: ParametersUpdate,
    engine: TradingEngine = Depends(get_engine),
    user: Optional[User] = Depends(get_current_user),
):
    authorize(user, Capability.EDIT_PARAMETERS)
    changes = {k: v for k, v in payload.model_dump().items() if v is not None}
    try:
        return engine.update_parameters(**changes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/start")
def start(engine: TradingEngine = Depends(get_engine), user: Optional[User] = Depends(get_current_user)):
    authorize(user, Capability.OPERATE_ENGINE)
    result = engine.start()
    if result["status"] == "broker_not_connected":
        raise HTTPException(status_code=409, detail="Broker not connected. Connect your broker account first.")
    return result


@app.post("/pause")
def pause(engine: TradingEngine = Depends(get_engine), user: Optional[User] = Depends(get_current_user)):
    authorize(user, Capability.OPERATE_ENGINE)
    return engine.pause()


@app.post("/stop")
def stop(engine: TradingEngine = Depends(get_engine), user: Optional[User] = Depends(get_current_user)):
    authorize(user, Capability.OPERATE_ENGINE)
    return engine.stop()


@app.post("/emergency-stop")
def emergency_stop(engine: TradingEngine = Depends(get_engine), user: Optional[User] = Depends(get_current_user)):
    authorize(user, Capability.OPERATE_ENGINE)
    return engine.emergency_stop()


def _simulated_broker(engine: TradingEngine) -> SimulatedBrokerConnection:
    if not isinstance(engine.broker, SimulatedBrokerConnection):
        raise HTTPException(status_code=400, detail="Broker link is managed by the data store")
    return engine.broker


@app.post("/broker/connect")
def broker_connect(engine: TradingEngine = Depends(get_engine), user: Optional[User] = Depends(get_current_user)):
    authorize(user, Capability.OPERATE_ENGINE)
    return {"broker": _simulated_broker(engine).connect().value}


@app.post("/broker/disconnect")
def broker_disconnect(engine: TradingEngine = Depends(get_engine), user: Optional[User] = Depends(get_current_user)):
    authorize(user, Capability.OPERATE_ENGINE)
    return {"broker": _simulated_broker(engine).disconnect().value}


@app.get("/health")
def health(engine: TradingEngine = Depends(get_engine)):
    return {
        "status": "ok",
        "state": engine.state.value,
        "broker": engine.broker.status().value,
        "open_positions": len(engine.portfolio.active_snapshot()),
    }


@app.post("/credits/quote")
def credits_quote(payload: CreditsQuoteRequest, request: Request):
    rate = conversion_rate(request)
    return {"credits": payload.credits, "rate": rate, "kem_tokens": kem_tokens(payload.credits, rate)}


@app.post("/credits/claim")
def credits_claim(payload: ClaimRequest, request: Request):
    account = KemCredits(payload.user_id, payload.credits_earned, payload.credits_spent)
    try:
        allocation = claim_airdrop(account, payload.ethereum_wallet, conversion_rate(request))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        **asdict(allocation),
        "milestone_progress": account.milestone_progress,
        "next_milestone": account.next_milestone,
    }


@app.post("/admin/airdrops")
def admin_airdrops(payload: AirdropRequest, request: Request, user: Optional[User] = Depends(get_current_user)):
    authorize(user, Capability.RUN_AIRDROP)
    rate = payload.conversion_rate or conversion_rate(request)
    accounts = [KemCredits(a.user_id, a.credits_earned, a.credits_spent) for a in payload.accounts]
    try:
        allocations = plan_admin_airdrop(accounts, rate)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("admin_airdrop by=%s recipients=%s rate=%s", user.id, len(allocations), rate)
    return {"rate": rate, "allocations": [asdict(a) for a in allocations]}

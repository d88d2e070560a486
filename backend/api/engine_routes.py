"""
ENGINE ROUTES
=============
Start, stop and inspect the live trading engine.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from engine_database import get_engine_db
from logging_config import log
from services.trading_engine import EngineRunner, TradingEngine
from state import app_state

router = APIRouter(prefix="/api/engine", tags=["engine"])


class EngineStartRequest(BaseModel):
    """
    Request model for starting the engine.

    resume=True continues from the persisted account and learning state;
    resume=False starts from initial capital with neutral weights.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    settings: Optional[Dict[str, Any]] = None
    resume: bool = True
    store_key: str = Field(default="default", alias="storeKey")


@router.post("/start")
async def start_engine(request: EngineStartRequest):
    if app_state.is_engine_running():
        raise HTTPException(status_code=409, detail="Engine is already running")
    if app_state.candle_source is None:
        raise HTTPException(status_code=500, detail="Candle source not initialized")

    settings = app_state.update_settings(request.settings or {})
    store = get_engine_db()
    if request.resume:
        engine = TradingEngine.from_store(
            store, settings, app_state.candle_source, app_state.news_client, key=request.store_key,
        )
    else:
        engine = TradingEngine(
            settings, app_state.candle_source, app_state.news_client,
            store=store, store_key=request.store_key,
        )

    runner = EngineRunner(engine)
    runner.start()
    app_state.set_runner(runner)
    log(f"[API] Engine started: {settings.asset} {settings.timeframe} (resume={request.resume})")
    return {"status": "started", "settings": settings.to_dict()}


@router.post("/stop")
async def stop_engine():
    runner = app_state.get_runner()
    if runner is None or not runner.running:
        raise HTTPException(status_code=409, detail="Engine is not running")

    trade = await runner.stop()
    return {
        "status": "stopped",
        "closedTrade": trade.to_dict() if trade else None,
        "engine": runner.engine.status(),
    }


@router.get("/status")
async def get_engine_status():
    runner = app_state.get_runner()
    if runner is None:
        return {"running": False, "engine": None}
    return {"running": runner.running, "engine": runner.engine.status()}


@router.delete("/state/{key}")
async def reset_engine_state(key: str):
    """Forget persisted account and learning state for key."""
    runner = app_state.get_runner()
    if runner is not None and runner.running and runner.engine.store_key == key:
        raise HTTPException(status_code=409, detail="Stop the engine before resetting its state")
    get_engine_db().clear(key)
    log(f"[API] Cleared engine state '{key}'")
    return {"status": "cleared", "key": key}

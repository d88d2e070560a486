"""
BACKTEST ROUTES
===============
Manual backtests: the in-process cycle rule, or the configured evaluator
over the current strategy text.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from engine.cycle_backtester import CycleBacktester, CycleRuleParams
from logging_config import log
from models.trade_models import Candle, TradingSettings, candles_from_dicts
from services.candle_source import generate_synthetic_candles
from state import app_state, variable_registry

router = APIRouter(prefix="/api/backtest", tags=["backtest"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CycleParamsModel(BaseModel):
    """Cycle rule knobs. Accepts both snake_case and camelCase field names."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sma_period: Optional[int] = Field(default=None, ge=1, alias="smaPeriod")
    rsi_period: Optional[int] = Field(default=None, ge=1, alias="rsiPeriod")
    hold_candles: Optional[int] = Field(default=None, ge=1, alias="holdCandles")
    rsi_long_below: Optional[float] = Field(default=None, alias="rsiLongBelow")
    rsi_short_above: Optional[float] = Field(default=None, alias="rsiShortAbove")
    sma_band: Optional[float] = Field(default=None, ge=0, alias="smaBand")
    momentum_pct: Optional[float] = Field(default=None, alias="momentumPct")
    momentum_lookback: Optional[int] = Field(default=None, ge=1, alias="momentumLookback")


class CycleBacktestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    settings: Optional[Dict[str, Any]] = None
    params: Optional[CycleParamsModel] = None
    candles: Optional[List[Dict[str, Any]]] = None


class EvaluatorRunRequest(BaseModel):
    """Strategy text defaults to the loaded code with current variable values."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    code: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
    candles: Optional[List[Dict[str, Any]]] = None


async def _resolve_candles(raw: Optional[List[Dict]], settings: TradingSettings) -> List[Candle]:
    """Candles from the request body, else the market-data service, else synthetic."""
    if raw:
        candles = candles_from_dicts(raw)
        if not candles:
            raise HTTPException(status_code=400, detail="No valid candles in request")
        return candles
    source = app_state.candle_source
    if source is not None:
        return await source.fetch_or_synthetic(settings.asset, settings.timeframe)
    return generate_synthetic_candles(settings.asset, 100, timeframe=settings.timeframe)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/cycle")
async def run_cycle_backtest(request: CycleBacktestRequest):
    """Replay the cycle rule with fixed holds over a candle window."""
    settings = TradingSettings.from_dict({**app_state.get_settings().to_dict(), **(request.settings or {})})
    params = CycleRuleParams.from_dict(
        request.params.model_dump(exclude_none=True) if request.params else None
    )
    candles = await _resolve_candles(request.candles, settings)

    result = CycleBacktester(candles, settings, params).run()
    log(f"[API] Cycle backtest on {len(candles)} {settings.asset} candles: "
        f"{result.trades} trades, pnl {result.pnl:.2f}")
    return result.to_dict()


@router.post("/run")
async def run_evaluator(request: EvaluatorRunRequest):
    """Score a strategy text with the configured evaluator."""
    if app_state.evaluator is None:
        raise HTTPException(status_code=500, detail="Backtest evaluator not initialized")

    code = request.code if request.code is not None else variable_registry.render()
    if not code.strip():
        raise HTTPException(status_code=400, detail="No strategy code loaded")

    settings = TradingSettings.from_dict({**app_state.get_settings().to_dict(), **(request.settings or {})})
    candles = await _resolve_candles(request.candles, settings)

    result = await app_state.evaluator.run(code, candles, settings)
    if result.get("error"):
        raise HTTPException(status_code=502, detail=result["error"])
    return result

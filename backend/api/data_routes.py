"""
DATA ROUTES
===========
Market data passthrough used by the UI chart and manual backtests.
"""
from fastapi import APIRouter, HTTPException

from config import TIMEFRAME_ORDER
from logging_config import log
from services.candle_source import generate_synthetic_candles
from state import app_state

router = APIRouter(prefix="/api", tags=["data"])


@router.get("/market-data/{asset}/{timeframe}")
async def get_market_data(asset: str, timeframe: str, refresh: bool = False, fallback: bool = True):
    """
    Candles for asset/timeframe.

    With fallback (default) an unreachable market-data service yields a
    synthetic series flagged source='synthetic' instead of an empty list.
    """
    if timeframe not in TIMEFRAME_ORDER:
        raise HTTPException(status_code=400, detail=f"Unknown timeframe '{timeframe}'")

    source = app_state.candle_source
    candles = await source.fetch(asset, timeframe, force_refresh=refresh) if source else []
    origin = "live"
    if not candles and fallback:
        log(f"[API] No live candles for {asset} {timeframe}, serving synthetic data")
        candles = generate_synthetic_candles(asset, 100, timeframe=timeframe)
        origin = "synthetic"

    return {
        "asset": asset,
        "timeframe": timeframe,
        "source": origin,
        "count": len(candles),
        "candles": [c.to_dict() for c in candles],
    }

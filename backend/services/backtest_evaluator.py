"""
Backtest Evaluators
===================
Collaborators that score a strategy text over a candle window.

Both return the simulator wire shape
    {trades, wins, pnl, totalGain, winRate, gainLossRatio, maxDrawdown, tradeList, ...}
or {"error": message}. They never raise.

- RemoteBacktestEvaluator: POSTs to the strategy simulator service.
- LocalBacktestEvaluator: runs the CycleBacktester in-process, reading rule
  parameters out of the strategy text where their names are recognized.
"""
import asyncio
import re
from typing import Dict, List, Optional, Sequence

import aiohttp

from config import REQUEST_TIMEOUT, SIMULATOR_URL
from engine.cycle_backtester import CycleBacktester, CycleRuleParams
from engine.parameter_extractor import detect_variables
from logging_config import log
from models.trade_models import Candle, TradingSettings


class RemoteBacktestEvaluator:
    """POST {base_url}/api/simulate-bot with {code, candles, settings}."""

    def __init__(self, base_url: str = SIMULATOR_URL, timeout: float = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self.session

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def run(self, strategy_text: str, candles: Sequence[Candle],
                  settings: TradingSettings) -> Dict:
        payload = {
            "code": strategy_text,
            "candles": [c.to_dict() for c in candles],
            "settings": settings.to_dict(),
        }
        try:
            session = await self._get_session()
            async with session.post(f"{self.base_url}/api/simulate-bot", json=payload) as response:
                data = await response.json(content_type=None)
                if response.status != 200:
                    message = data.get("error") if isinstance(data, dict) else None
                    return {"error": message or f"HTTP {response.status}"}
        except asyncio.TimeoutError:
            log("[Backtest] Simulator request timed out", level='WARNING')
            return {"error": "Simulator request timed out"}
        except aiohttp.ClientError as e:
            log(f"[Backtest] Simulator unreachable: {e}", level='WARNING')
            return {"error": str(e)}
        except Exception as e:
            log(f"[Backtest] Simulator call failed: {e}", level='ERROR')
            return {"error": str(e)}

        if not isinstance(data, dict):
            return {"error": "Malformed simulator response"}
        return data


# Strategy variable name (case-insensitive) -> CycleRuleParams field
PARAM_NAME_MAP: List[tuple] = [
    (re.compile(r'^(sma|avg|ma)(period|length|len)?(_\d+)?$', re.IGNORECASE), 'sma_period'),
    (re.compile(r'^rsi(period|length|len)?(_\d+)?$', re.IGNORECASE), 'rsi_period'),
    (re.compile(r'^(hold|holdcandles|holdbars|barsheld)$', re.IGNORECASE), 'hold_candles'),
    (re.compile(r'^(rsilong|rsioversold|oversold|rsilow)$', re.IGNORECASE), 'rsi_long_below'),
    (re.compile(r'^(rsishort|rsioverbought|overbought|rsihigh)$', re.IGNORECASE), 'rsi_short_above'),
    (re.compile(r'^(smaband|band)$', re.IGNORECASE), 'sma_band'),
    (re.compile(r'^(momentum|momentumpct|mompct)$', re.IGNORECASE), 'momentum_pct'),
    (re.compile(r'^(momentumlookback|momlookback|momentumperiod)$', re.IGNORECASE), 'momentum_lookback'),
]

# Directive variables that override trading settings
SETTINGS_NAME_MAP = {'StopLoss': 'stop_loss', 'TakeProfit': 'take_profit'}


def params_from_strategy(strategy_text: str, settings: TradingSettings):
    """
    Map recognized strategy variables onto rule parameters and settings.

    Returns:
        (CycleRuleParams, TradingSettings); the settings object is a copy
    """
    overrides: Dict[str, float] = {}
    setting_overrides: Dict[str, float] = {}

    for var in detect_variables(strategy_text):
        if var.name in SETTINGS_NAME_MAP:
            setting_overrides[SETTINGS_NAME_MAP[var.name]] = var.current_value
            continue
        for pattern, field_name in PARAM_NAME_MAP:
            if pattern.match(var.name) and field_name not in overrides:
                overrides[field_name] = var.current_value
                break

    merged = {**settings.to_dict(), **setting_overrides}
    return CycleRuleParams.from_dict(overrides), TradingSettings.from_dict(merged)


class LocalBacktestEvaluator:
    """In-process evaluator backed by the CycleBacktester."""

    async def run(self, strategy_text: str, candles: Sequence[Candle],
                  settings: TradingSettings) -> Dict:
        if not candles:
            return {"error": "No candles to backtest"}
        try:
            params, run_settings = params_from_strategy(strategy_text, settings)
            result = CycleBacktester(candles, run_settings, params).run()
        except Exception as e:
            log(f"[Backtest] Local evaluation failed: {e}", level='ERROR')
            return {"error": str(e)}
        return result.to_dict()

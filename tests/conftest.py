"""
Pytest Configuration and Shared Fixtures
=========================================
Common fixtures for testing the AI Trading Engine.
"""
import pytest
import numpy as np
from unittest.mock import MagicMock, AsyncMock
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from models.trade_models import Candle, TradingSettings


def make_candles(closes, start_time=1_700_000_000, step=3600, wick=0.0):
    """Candles from a close series; open = previous close."""
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        candles.append(Candle(
            time=start_time + i * step,
            open=float(prev),
            high=float(max(prev, close) + wick),
            low=float(min(prev, close) - wick),
            close=float(close),
        ))
        prev = close
    return candles


@pytest.fixture
def rising_candles():
    """Steady uptrend, 120 hourly bars."""
    return make_candles([30.0 + 0.05 * i for i in range(120)])


@pytest.fixture
def falling_candles():
    """Steady downtrend, 120 hourly bars."""
    return make_candles([40.0 - 0.05 * i for i in range(120)])


@pytest.fixture
def random_walk_candles():
    """Seeded random walk around 30, 300 bars."""
    rng = np.random.default_rng(42)
    closes = 30.0 * np.cumprod(1 + rng.normal(0, 0.004, 300))
    return make_candles(closes.tolist(), wick=0.02)


@pytest.fixture
def flat_settings():
    """Silver, half a contract, no fee and no spread."""
    return TradingSettings(
        asset="silver",
        timeframe="1h",
        initial_capital=2000.0,
        max_position_size=1.0,
        position_size=0.5,
        use_order_fee=False,
        use_spread=False,
        stop_loss=0,
        take_profit=0,
    )


@pytest.fixture
def costed_settings():
    """Silver with a 7.0 fee per side and a 2 point spread."""
    return TradingSettings(
        asset="silver",
        timeframe="1h",
        initial_capital=2000.0,
        max_position_size=1.0,
        position_size=0.5,
        use_order_fee=True,
        order_fee=7.0,
        use_spread=True,
        spread_pips=2.0,
        stop_loss=0,
        take_profit=0,
    )


@pytest.fixture
def sample_strategy_code():
    """Strategy text with assignment, directive and indicator literals."""
    return "\n".join([
        "// Generated strategy",
        "ONCE period = 14",
        "threshold = 0.25",
        "startHour = 9",
        "avg = Average[20](close)",
        "r = RSI[14](close)",
        "IF close > avg AND r < 30 THEN",
        "    BUY 1 CONTRACT AT MARKET",
        "ENDIF",
        "SET STOP LOSS 50",
        "SET TARGET PROFIT 120",
    ])


@pytest.fixture
def mock_candle_source():
    """Candle source whose fetch is an AsyncMock."""
    source = MagicMock()
    source.fetch = AsyncMock(return_value=[])
    source.fetch_or_synthetic = AsyncMock(return_value=[])
    return source


@pytest.fixture
def mock_evaluator():
    """Evaluator returning a fixed simulator result."""
    evaluator = MagicMock()
    evaluator.run = AsyncMock(return_value={
        "trades": 4,
        "wins": 3,
        "pnl": 120.0,
        "totalGain": 120.0,
        "winRate": 75.0,
        "gainLossRatio": 3.0,
        "maxDrawdown": 40.0,
    })
    return evaluator

"""
CONFIGURATION MODULE
====================
All configuration constants for the AI Trading Engine.
Values that vary per deployment can be overridden via environment variables.
"""
import os
from pathlib import Path

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

BACKEND_DIR = Path(__file__).parent
PROJECT_DIR = BACKEND_DIR.parent

# Check if running in Docker (look for /app directory)
if Path("/app").exists():
    DATA_DIR = Path("/app/data")
else:
    DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_DIR / "data")))

ENGINE_DB_PATH = os.getenv("ENGINE_DB_PATH", str(DATA_DIR / "engine_state.db"))

# =============================================================================
# EXTERNAL SERVICES
# =============================================================================

MARKET_DATA_URL = os.getenv("MARKET_DATA_URL", "http://localhost:5000")
SIMULATOR_URL = os.getenv("SIMULATOR_URL", "http://localhost:5000")
NEWS_URL = os.getenv("NEWS_URL", "http://localhost:5000")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30"))

# Backtest evaluator used by the optimizer and manual backtests:
# 'local' runs the cycle backtester in-process, 'remote' calls SIMULATOR_URL
BACKTEST_EVALUATOR = os.getenv("BACKTEST_EVALUATOR", "local")

# =============================================================================
# TIMEFRAMES
# =============================================================================

# Shortest to longest. Rank distance drives higher-timeframe weighting.
TIMEFRAME_ORDER = ['1s', '5s', '10s', '30s', '1m', '5m', '15m', '30m', '1h', '4h', '1d']

# Seconds between live cycles, before the market-speed multiplier
POLL_INTERVALS = {
    '1s': 3,
    '5s': 3,
    '10s': 5,
    '30s': 10,
    '1m': 15,
    '5m': 30,
    '15m': 60,
    '30m': 120,
    '1h': 300,
    '4h': 900,
    '1d': 1800,
}

# Candle cache lifetime per timeframe (seconds)
CANDLE_CACHE_TTL = {
    '1m': 60,
    '5m': 5 * 60,
    '15m': 15 * 60,
    '30m': 30 * 60,
    '1h': 60 * 60,
    '4h': 4 * 60 * 60,
    '1d': 24 * 60 * 60,
}
DEFAULT_CANDLE_CACHE_TTL = 60 * 60

# =============================================================================
# LIVE ENGINE
# =============================================================================

ENGINE_CONFIG = {
    # Timeframes fetched every cycle
    "timeframes": ['1m', '5m', '15m', '30m', '1h', '4h', '1d'],

    # Trend blend: local share, remainder goes to higher timeframes
    "local_weight": 0.3,
    "higher_tf_distance_weight": 0.2,

    # Decision thresholds
    "dominance_ratio": 1.2,
    "min_open_confidence": 0.3,
    "low_confidence_close": 0.15,

    # Analysis
    "swing_lookback": 5,
    "momentum_lookback": 5,
    "speed_window": 20,

    # News is polled every Nth cycle
    "news_check_every": 5,

    # Closed trades kept in EngineState; totals live in running counters
    "trade_history_limit": int(os.getenv("TRADE_HISTORY_LIMIT", "500")),

    # Fallback sleep after a crashed cycle (seconds)
    "error_retry_interval": 30,
}

# 1-minute volatility (percent std of returns) -> speed bucket.
# Checked top-down; the first bucket whose threshold is met wins.
MARKET_SPEED_LEVELS = [
    {"label": "very-fast", "min_volatility": 0.15, "confidence_mult": 0.6, "interval_mult": 0.5},
    {"label": "fast", "min_volatility": 0.08, "confidence_mult": 0.8, "interval_mult": 0.75},
    {"label": "normal", "min_volatility": 0.03, "confidence_mult": 1.0, "interval_mult": 1.0},
    {"label": "slow", "min_volatility": 0.0, "confidence_mult": 1.0, "interval_mult": 1.5},
]

# =============================================================================
# ONLINE LEARNING
# =============================================================================

LEARNING_CONFIG = {
    "step": 0.05,
    "min_weight": 0.5,
    "max_weight": 2.0,
    "win_score": 5,
    "loss_score": 3,
}

# =============================================================================
# AUTO OPTIMIZER
# =============================================================================

OPTIMIZER_CONFIG = {
    "iterations": int(os.getenv("OPTIMIZER_ITERATIONS", "20")),
    "metric": "totalGain",
    "metrics": ["totalGain", "winRate", "gainLossRatio", "sharpe"],
    # Pause between iterations so the event loop stays responsive
    "iteration_delay": float(os.getenv("OPTIMIZER_DELAY", "0.05")),
    "top_n": 10,
}

# =============================================================================
# STRATEGY VARIABLE DETECTION
# =============================================================================

RESERVED_VARIABLE_NAMES = {'Open', 'High', 'Low', 'Close', 'Volume', 'BarIndex', 'Date', 'Time'}

# Session / clock variables are detected but left out of optimization by default
OPTIMIZATION_EXCLUDE_PATTERN = (
    r'^(preloadbars|preload|starttime|endtime|starthour|endhour|startminute|endminute|'
    r'tradestarttime|tradeendtime|tradestarthour|tradeendhour|tradestartminute|tradeendminute|'
    r'dayofweek|sessionstart|sessionend|openhour|closehour|openminute|closeminute|'
    r'tradingstart|tradingend|marketopen|marketclose|sessionopen|sessionclose)$'
)

# =============================================================================
# TRADING SETTINGS
# =============================================================================

DEFAULT_SETTINGS = {
    "asset": "silver",
    "timeframe": "1h",
    "initial_capital": 2000.0,
    "max_position_size": 1.0,
    "use_order_fee": True,
    "order_fee": 7.0,
    "use_spread": True,
    "spread_pips": 2.0,
    "position_size": 0.5,
    "trade_type": "both",
    "stop_loss": 7000.0,
    "take_profit": 300.0,
}

# Contract specification per asset.
# one_point_means: price move of one point; contract_value: currency per point
# per contract unit; base_price/volatility seed the offline candle generator.
ASSET_SPECS = {
    "silver": {"one_point_means": 0.01, "contract_value": 1.0, "contract_size": 100, "contract_min_size": 0.1, "base_price": 65.0, "volatility": 0.02},
    "gold": {"one_point_means": 0.1, "contract_value": 1.0, "contract_size": 10, "contract_min_size": 0.1, "base_price": 2900.0, "volatility": 0.01},
    "copper": {"one_point_means": 0.0005, "contract_value": 1.0, "contract_size": 100, "contract_min_size": 0.1, "base_price": 4.5, "volatility": 0.025},
    "oil": {"one_point_means": 0.01, "contract_value": 1.0, "contract_size": 100, "contract_min_size": 0.1, "base_price": 59.44, "volatility": 0.03},
    "natgas": {"one_point_means": 0.001, "contract_value": 1.0, "contract_size": 100, "contract_min_size": 0.1, "base_price": 3.47, "volatility": 0.04},
    "eurusd": {"one_point_means": 0.0001, "contract_value": 1.0, "contract_size": 10, "contract_min_size": 0.1, "base_price": 1.1673, "volatility": 0.005},
    "gbpusd": {"one_point_means": 0.0001, "contract_value": 1.0, "contract_size": 10, "contract_min_size": 0.1, "base_price": 1.344, "volatility": 0.006},
    "usdjpy": {"one_point_means": 0.01, "contract_value": 1.0, "contract_size": 10, "contract_min_size": 0.1, "base_price": 159.06, "volatility": 0.004},
    "spx500": {"one_point_means": 1.0, "contract_value": 1.0, "contract_size": 1, "contract_min_size": 0.1, "base_price": 6947.0, "volatility": 0.012},
    "dax": {"one_point_means": 1.0, "contract_value": 1.0, "contract_size": 1, "contract_min_size": 0.1, "base_price": 24921.0, "volatility": 0.015},
    "ftse": {"one_point_means": 1.0, "contract_value": 1.0, "contract_size": 1, "contract_min_size": 0.1, "base_price": 10141.0, "volatility": 0.01},
}
DEFAULT_ASSET = "silver"

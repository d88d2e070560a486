"""
SERVICES PACKAGE
================
Collaborator clients, the live trading engine and the auto optimizer.
"""
from .candle_source import (
    CandleCache,
    CandleSource,
    generate_synthetic_candles,
    timeframe_seconds,
)
from .news_sentiment import NewsSentimentClient
from .backtest_evaluator import (
    LocalBacktestEvaluator,
    RemoteBacktestEvaluator,
    params_from_strategy,
)
from .auto_optimizer import AutoOptimizer, score_result, snap_to_step
from .trading_engine import EngineRunner, TradingEngine

__all__ = [
    # Market data
    'CandleCache',
    'CandleSource',
    'generate_synthetic_candles',
    'timeframe_seconds',
    # News
    'NewsSentimentClient',
    # Backtesting
    'LocalBacktestEvaluator',
    'RemoteBacktestEvaluator',
    'params_from_strategy',
    # Optimizer
    'AutoOptimizer',
    'score_result',
    'snap_to_step',
    # Live engine
    'EngineRunner',
    'TradingEngine',
]

"""
MODELS PACKAGE
==============
Data classes and type definitions for the AI Trading Engine.
"""
from .trade_models import (
    Candle,
    AssetSpec,
    PositionType,
    TradingSettings,
    DetectedVariable,
    SignalKind,
    SignalContribution,
    LearningWeights,
    LearningState,
    Position,
    Trade,
    EngineState,
    BacktestResult,
    OptimizationCandidate,
    WEIGHT_FIELDS,
    candles_from_dicts,
    is_valid_price,
)

__all__ = [
    'Candle',
    'AssetSpec',
    'PositionType',
    'TradingSettings',
    'DetectedVariable',
    'SignalKind',
    'SignalContribution',
    'LearningWeights',
    'LearningState',
    'Position',
    'Trade',
    'EngineState',
    'BacktestResult',
    'OptimizationCandidate',
    'WEIGHT_FIELDS',
    'candles_from_dicts',
    'is_valid_price',
]

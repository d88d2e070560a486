"""
ENGINE PACKAGE
==============
Decision, position, learning and replay components for the AI Trading Engine.
"""
from .parameter_extractor import (
    detect_variables,
    synthesize_range,
    apply_variables_to_code,
)
from .decision_scorer import DecisionScorer, Decision, MarketSpeed, classify_market_speed
from .position_manager import PositionManager, clamp_position_size
from .learning_adapter import adjust_learning_weights, credited_signals
from .cycle_backtester import CycleBacktester, CycleRuleParams

__all__ = [
    'detect_variables',
    'synthesize_range',
    'apply_variables_to_code',
    'DecisionScorer',
    'Decision',
    'MarketSpeed',
    'classify_market_speed',
    'PositionManager',
    'clamp_position_size',
    'adjust_learning_weights',
    'credited_signals',
    'CycleBacktester',
    'CycleRuleParams',
]

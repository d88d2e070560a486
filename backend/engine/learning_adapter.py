"""
LEARNING ADAPTER
================
Online credit assignment after each closed trade.

Every signal that voted on the trade's side gets its weight nudged up on a
win and down on a loss (one step per distinct signal, clamped to the
configured bounds). A scalar learning score tracks overall progress.
"""
from typing import List, Optional

from config import LEARNING_CONFIG
from logging_config import log
from models.trade_models import LearningState, PositionType, SignalKind, Trade

# Substring markers for trades recorded before contributions were tagged
LEGACY_REASON_MARKERS = [
    (('trend',), SignalKind.TREND),
    (('rsi',), SignalKind.RSI),
    (('support', 'resistance'), SignalKind.WAVE_POSITION),
    (('news',), SignalKind.NEWS),
]


def credited_signals(trade: Trade) -> List[SignalKind]:
    """Distinct signals that argued for the trade's direction, in first-seen order."""
    side = 'bull' if trade.type is PositionType.LONG else 'bear'
    kinds: List[SignalKind] = []

    if trade.contributions:
        for contribution in trade.contributions:
            if contribution.side == side and contribution.signal not in kinds:
                kinds.append(contribution.signal)
        return kinds

    for reason in trade.reasons:
        text = reason.lower()
        for markers, kind in LEGACY_REASON_MARKERS:
            if kind not in kinds and any(m in text for m in markers):
                kinds.append(kind)
    return kinds


def adjust_learning_weights(learning: LearningState, trade: Trade,
                            config: Optional[dict] = None) -> List[SignalKind]:
    """
    Apply one trade's outcome to the learning state in place.

    Returns:
        The signals whose weights were nudged
    """
    config = config or LEARNING_CONFIG
    kinds = credited_signals(trade)
    delta = config['step'] if trade.is_win else -config['step']

    for kind in kinds:
        learning.weights.adjust(kind, delta)

    if trade.is_win:
        learning.learning_score += config['win_score']
    else:
        learning.learning_score = max(0.0, learning.learning_score - config['loss_score'])

    outcome = 'WIN' if trade.is_win else 'LOSS'
    names = ', '.join(k.value for k in kinds) or 'none'
    log(f"[Learning] {outcome} {trade.pnl:+.2f}: nudged {names} by {delta:+.2f} "
        f"(score {learning.learning_score:.0f})")
    return kinds

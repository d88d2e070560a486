"""
DECISION SCORER
===============
Turns one cycle's analysis into bull/bear scores, a confidence and an action.

Every signal that votes is recorded as a SignalContribution so the learning
step can credit exactly the signals behind a trade.

State machine:
    idle       --buy/sell (dominance, confidence > floor, trade type allows)--> positioned
    positioned --opposing dominance | confidence < close floor | stop/target--> idle
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from config import ENGINE_CONFIG, MARKET_SPEED_LEVELS
from models.trade_models import (
    LearningWeights,
    Position,
    PositionType,
    SignalContribution,
    SignalKind,
    TradingSettings,
    is_valid_price,
)
from mtf_analysis import TimeframeAnalysis, TrendSummary


@dataclass(frozen=True)
class MarketSpeed:
    label: str
    confidence_mult: float
    interval_mult: float


def classify_market_speed(volatility: float) -> MarketSpeed:
    """Bucket 1-minute volatility (% std of returns) into a market speed."""
    for level in MARKET_SPEED_LEVELS:
        if volatility >= level['min_volatility']:
            return MarketSpeed(level['label'], level['confidence_mult'], level['interval_mult'])
    slowest = MARKET_SPEED_LEVELS[-1]
    return MarketSpeed(slowest['label'], slowest['confidence_mult'], slowest['interval_mult'])


@dataclass
class Decision:
    """Outcome of one scoring pass."""
    action: str  # 'buy', 'sell', 'close', 'hold'
    bull_score: float = 0.0
    bear_score: float = 0.0
    confidence: float = 0.0
    speed: Optional[MarketSpeed] = None
    reasons: List[str] = field(default_factory=list)
    contributions: List[SignalContribution] = field(default_factory=list)
    # Direction the idle-state open rules allow right now, if any
    open_action: Optional[str] = None

    @property
    def position_type(self) -> Optional[PositionType]:
        if self.action == 'buy':
            return PositionType.LONG
        if self.action == 'sell':
            return PositionType.SHORT
        return None

    def to_dict(self) -> Dict:
        return {
            'action': self.action,
            'bullScore': round(self.bull_score, 4),
            'bearScore': round(self.bear_score, 4),
            'confidence': round(self.confidence, 4),
            'marketSpeed': self.speed.label if self.speed else None,
            'reasons': list(self.reasons),
            'contributions': [c.to_dict() for c in self.contributions],
        }


class DecisionScorer:
    """Weighted multi-signal scoring over the blended trend and oscillators."""

    def __init__(self, config: Optional[Dict] = None):
        config = config or ENGINE_CONFIG
        self.dominance_ratio = config['dominance_ratio']
        self.min_open_confidence = config['min_open_confidence']
        self.low_confidence_close = config['low_confidence_close']
        self.momentum_lookback = config['momentum_lookback']

    def score(self, summary: TrendSummary, analysis: Optional[TimeframeAnalysis],
              closes: Sequence[float], news: str,
              weights: LearningWeights) -> List[SignalContribution]:
        """Collect every signal that votes this cycle, already weighted."""
        contributions: List[SignalContribution] = []

        def vote(kind: SignalKind, bullish: bool, magnitude: float, reason: str):
            contributions.append(SignalContribution(
                signal=kind,
                side='bull' if bullish else 'bear',
                magnitude=magnitude * weights.get(kind),
                reason=reason,
            ))

        blended = summary.blended_trend
        if blended != 0:
            direction = 'Bullish' if blended > 0 else 'Bearish'
            vote(SignalKind.TREND, blended > 0, 2 * abs(blended),
                 f"{direction} trend (blended {blended:+.2f})")

        local, higher = summary.local_trend, summary.higher_tf_trend
        if summary.higher_count and local != 0 and higher != 0 and (local > 0) == (higher > 0):
            vote(SignalKind.HIGHER_TF, local > 0, 0.5, "Higher timeframes agree")

        momentum = self._momentum_pct(closes)
        if abs(momentum) > 0.1:
            vote(SignalKind.MOMENTUM, momentum > 0, min(1.0, abs(momentum) / 0.5),
                 f"Momentum {momentum:+.2f}%")

        if analysis is not None and analysis.has_data:
            rsi = analysis.indicators.get('rsi', 50.0)
            if rsi < 30:
                vote(SignalKind.RSI, True, 1.0, f"RSI oversold ({rsi:.1f})")
            elif rsi > 70:
                vote(SignalKind.RSI, False, 1.0, f"RSI overbought ({rsi:.1f})")

            macd = analysis.indicators.get('macd', 0.0)
            if macd != 0:
                vote(SignalKind.MACD, macd > 0, 0.5, f"MACD {'positive' if macd > 0 else 'negative'}")

            position = analysis.wave_info.position_in_cycle
            if position < 0.2:
                vote(SignalKind.WAVE_POSITION, True, 1.0, f"Near support ({position:.2f} of range)")
            elif position > 0.8:
                vote(SignalKind.WAVE_POSITION, False, 1.0, f"Near resistance ({position:.2f} of range)")

        if news == 'bullish':
            vote(SignalKind.NEWS, True, 0.8, "Bullish news sentiment")
        elif news == 'bearish':
            vote(SignalKind.NEWS, False, 0.8, "Bearish news sentiment")

        return contributions

    def _momentum_pct(self, closes: Sequence[float]) -> float:
        if len(closes) < 2:
            return 0.0
        base = closes[-1 - self.momentum_lookback] if len(closes) > self.momentum_lookback else closes[0]
        if not is_valid_price(base) or not is_valid_price(closes[-1]):
            return 0.0
        return (closes[-1] - base) / base * 100

    def _dominant_side(self, bull: float, bear: float) -> Optional[str]:
        if bull > 0 and bull >= self.dominance_ratio * bear:
            return 'bull'
        if bear > 0 and bear >= self.dominance_ratio * bull:
            return 'bear'
        return None

    def decide(self, price: float, summary: TrendSummary,
               analysis: Optional[TimeframeAnalysis], closes: Sequence[float],
               news: str, weights: LearningWeights, speed: MarketSpeed,
               position: Optional[Position], settings: TradingSettings) -> Decision:
        """
        Score the cycle and pick an action.

        Args:
            price: Latest price of the active timeframe
            summary: Blended trend for the active timeframe
            analysis: Active timeframe analysis (None when its fetch failed)
            closes: Recent closes of the active timeframe
            news: 'bullish', 'bearish' or 'neutral'
            weights: Current learning weights
            speed: Market speed bucket from 1-minute volatility
            position: Open position, if any
            settings: Trading settings (trade type filter)
        """
        if not is_valid_price(price):
            return Decision(action='hold', speed=speed, reasons=["Invalid price sample"])

        contributions = self.score(summary, analysis, closes, news, weights)
        bull = sum(c.magnitude for c in contributions if c.side == 'bull')
        bear = sum(c.magnitude for c in contributions if c.side == 'bear')
        total = bull + bear
        confidence = abs(bull - bear) / total * speed.confidence_mult if total > 0 else 0.0

        dominant = self._dominant_side(bull, bear)
        open_action = None
        if dominant and confidence > self.min_open_confidence:
            wanted = PositionType.LONG if dominant == 'bull' else PositionType.SHORT
            if settings.allows(wanted):
                open_action = 'buy' if dominant == 'bull' else 'sell'

        if position is None:
            action = open_action or 'hold'
        else:
            opposing = 'bear' if position.type is PositionType.LONG else 'bull'
            if dominant == opposing:
                action = 'sell' if position.type is PositionType.LONG else 'buy'
            elif confidence < self.low_confidence_close:
                action = 'close'
            else:
                action = 'hold'

        if action == 'close':
            reasons = ["Low confidence"]
        elif action in ('buy', 'sell'):
            side = 'bull' if action == 'buy' else 'bear'
            reasons = [c.reason for c in contributions if c.side == side]
        else:
            reasons = []

        return Decision(
            action=action,
            bull_score=bull,
            bear_score=bear,
            confidence=confidence,
            speed=speed,
            reasons=reasons,
            contributions=contributions,
            open_action=open_action,
        )

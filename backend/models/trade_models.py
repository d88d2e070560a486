"""
TRADE MODELS
=============
Data classes for trading configuration, live positions, trade records,
learning state and optimization results.

Wire format (API, collaborators, persistence) uses camelCase keys to match the
browser client; Python attributes stay snake_case.
"""
import math
import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from config import ASSET_SPECS, DEFAULT_ASSET, DEFAULT_SETTINGS, LEARNING_CONFIG


def _to_snake(key: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', key).lower()


def _to_camel(key: str) -> str:
    head, *rest = key.split('_')
    return head + ''.join(part.title() for part in rest)


def is_valid_price(value: Any) -> bool:
    """True for a finite, strictly positive number."""
    try:
        return math.isfinite(value) and value > 0
    except TypeError:
        return False


# =============================================================================
# MARKET DATA
# =============================================================================

@dataclass(frozen=True)
class Candle:
    """One OHLC bar. `time` is the bar open in epoch seconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None

    @classmethod
    def from_dict(cls, raw: Dict) -> 'Candle':
        volume = raw.get("volume")
        return cls(
            time=int(raw["time"]),
            open=float(raw["open"]),
            high=float(raw["high"]),
            low=float(raw["low"]),
            close=float(raw["close"]),
            volume=float(volume) if volume is not None else None,
        )

    def to_dict(self) -> Dict:
        d = {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
        }
        if self.volume is not None:
            d["volume"] = self.volume
        return d


def candles_from_dicts(raw_candles) -> List[Candle]:
    """Parse wire candles, dropping malformed rows and ordering by time."""
    candles = []
    for raw in raw_candles or []:
        try:
            candle = Candle.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            continue
        # "nan" and "inf" parse as floats
        if not all(is_valid_price(p) for p in (candle.open, candle.high, candle.low, candle.close)):
            continue
        candles.append(candle)
    candles.sort(key=lambda c: c.time)
    return candles


@dataclass(frozen=True)
class AssetSpec:
    """Contract specification used to turn price moves into currency."""
    one_point_means: float = 0.01
    contract_value: float = 1.0
    contract_size: float = 100.0
    contract_min_size: float = 0.1
    base_price: float = 65.0
    volatility: float = 0.02

    @classmethod
    def for_asset(cls, asset: str) -> 'AssetSpec':
        raw = ASSET_SPECS.get((asset or '').lower(), ASSET_SPECS[DEFAULT_ASSET])
        return cls(**raw)


# =============================================================================
# SETTINGS
# =============================================================================

class PositionType(Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def opposite(self) -> 'PositionType':
        return PositionType.SHORT if self is PositionType.LONG else PositionType.LONG


@dataclass
class TradingSettings:
    """
    User-facing trading settings.

    stop_loss / take_profit are expressed in points from entry; 0 disables
    the check. trade_type is one of 'both', 'long', 'short'.
    """
    asset: str = DEFAULT_SETTINGS["asset"]
    timeframe: str = DEFAULT_SETTINGS["timeframe"]
    initial_capital: float = DEFAULT_SETTINGS["initial_capital"]
    max_position_size: float = DEFAULT_SETTINGS["max_position_size"]
    use_order_fee: bool = DEFAULT_SETTINGS["use_order_fee"]
    order_fee: float = DEFAULT_SETTINGS["order_fee"]
    use_spread: bool = DEFAULT_SETTINGS["use_spread"]
    spread_pips: float = DEFAULT_SETTINGS["spread_pips"]
    position_size: float = DEFAULT_SETTINGS["position_size"]
    trade_type: str = DEFAULT_SETTINGS["trade_type"]
    stop_loss: float = DEFAULT_SETTINGS["stop_loss"]
    take_profit: float = DEFAULT_SETTINGS["take_profit"]

    @classmethod
    def from_dict(cls, raw: Optional[Dict]) -> 'TradingSettings':
        """Build settings from snake_case or camelCase keys, ignoring unknown ones."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in (raw or {}).items():
            name = _to_snake(key)
            if name in known and value is not None:
                kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict:
        return {_to_camel(f.name): getattr(self, f.name) for f in fields(self)}

    @property
    def spec(self) -> AssetSpec:
        return AssetSpec.for_asset(self.asset)

    @property
    def fee(self) -> float:
        return float(self.order_fee) if self.use_order_fee else 0.0

    @property
    def spread_points(self) -> float:
        return float(self.spread_pips) if self.use_spread else 0.0

    def allows(self, position_type: PositionType) -> bool:
        return self.trade_type in ('both', position_type.value)


# =============================================================================
# STRATEGY VARIABLES
# =============================================================================

@dataclass
class DetectedVariable:
    """A tunable numeric literal found in strategy text."""
    name: str
    original_value: float
    current_value: float
    min: float
    max: float
    step: float
    source_pattern: str
    line_index: int = 0
    include_in_optimization: bool = True

    def set_value(self, value: float) -> float:
        """Set current value, clamped to the search range."""
        self.current_value = min(self.max, max(self.min, float(value)))
        return self.current_value

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "originalValue": self.original_value,
            "currentValue": self.current_value,
            "min": self.min,
            "max": self.max,
            "step": self.step,
            "sourcePattern": self.source_pattern,
            "lineIndex": self.line_index,
            "includeInOptimization": self.include_in_optimization,
        }

    @classmethod
    def from_dict(cls, raw: Dict) -> 'DetectedVariable':
        data = {_to_snake(k): v for k, v in raw.items()}
        return cls(
            name=data["name"],
            original_value=float(data["original_value"]),
            current_value=float(data["current_value"]),
            min=float(data["min"]),
            max=float(data["max"]),
            step=float(data["step"]),
            source_pattern=data.get("source_pattern", ""),
            line_index=int(data.get("line_index", 0)),
            include_in_optimization=bool(data.get("include_in_optimization", True)),
        )


# =============================================================================
# SIGNALS AND LEARNING
# =============================================================================

class SignalKind(Enum):
    TREND = "trend"
    MOMENTUM = "momentum"
    RSI = "rsi"
    MACD = "macd"
    WAVE_POSITION = "wavePosition"
    NEWS = "news"
    HIGHER_TF = "higherTF"


# SignalKind -> LearningWeights attribute
WEIGHT_FIELDS = {
    SignalKind.TREND: "trend",
    SignalKind.MOMENTUM: "momentum",
    SignalKind.RSI: "rsi",
    SignalKind.MACD: "macd",
    SignalKind.WAVE_POSITION: "wave_position",
    SignalKind.NEWS: "news",
    SignalKind.HIGHER_TF: "higher_tf",
}


@dataclass(frozen=True)
class SignalContribution:
    """One scored signal: which signal, which side it voted for, how hard."""
    signal: SignalKind
    side: str  # 'bull' or 'bear'
    magnitude: float
    reason: str = ""

    def to_dict(self) -> Dict:
        return {
            "signal": self.signal.value,
            "side": self.side,
            "magnitude": self.magnitude,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, raw: Dict) -> 'SignalContribution':
        return cls(
            signal=SignalKind(raw["signal"]),
            side=raw["side"],
            magnitude=float(raw.get("magnitude", 0.0)),
            reason=raw.get("reason", ""),
        )


@dataclass
class LearningWeights:
    """Per-signal multipliers, each kept within [min_weight, max_weight]."""
    trend: float = 1.0
    momentum: float = 1.0
    rsi: float = 1.0
    macd: float = 1.0
    wave_position: float = 1.0
    news: float = 1.0
    higher_tf: float = 1.0

    def get(self, kind: SignalKind) -> float:
        return getattr(self, WEIGHT_FIELDS[kind])

    def adjust(self, kind: SignalKind, delta: float) -> float:
        lo, hi = LEARNING_CONFIG["min_weight"], LEARNING_CONFIG["max_weight"]
        value = min(hi, max(lo, self.get(kind) + delta))
        setattr(self, WEIGHT_FIELDS[kind], round(value, 6))
        return value

    def to_dict(self) -> Dict:
        return {kind.value: self.get(kind) for kind in SignalKind}

    @classmethod
    def from_dict(cls, raw: Optional[Dict]) -> 'LearningWeights':
        weights = cls()
        lo, hi = LEARNING_CONFIG["min_weight"], LEARNING_CONFIG["max_weight"]
        for kind in SignalKind:
            if raw and kind.value in raw:
                setattr(weights, WEIGHT_FIELDS[kind], min(hi, max(lo, float(raw[kind.value]))))
        return weights


@dataclass
class LearningState:
    weights: LearningWeights = field(default_factory=LearningWeights)
    learning_score: float = 0.0

    def to_dict(self) -> Dict:
        return {"learningWeights": self.weights.to_dict(), "learningScore": self.learning_score}

    @classmethod
    def from_dict(cls, raw: Optional[Dict]) -> 'LearningState':
        raw = raw or {}
        return cls(
            weights=LearningWeights.from_dict(raw.get("learningWeights")),
            learning_score=max(0.0, float(raw.get("learningScore", 0.0))),
        )


# =============================================================================
# POSITIONS AND TRADES
# =============================================================================

@dataclass
class Position:
    """The single open position."""
    type: PositionType
    size: float
    entry_price: float
    entry_time: float
    confidence: float = 0.0
    reasons: List[str] = field(default_factory=list)
    contributions: List[SignalContribution] = field(default_factory=list)
    entry_fee: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "type": self.type.value,
            "size": self.size,
            "entryPrice": self.entry_price,
            "entryTime": self.entry_time,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "contributions": [c.to_dict() for c in self.contributions],
            "entryFee": self.entry_fee,
        }

    @classmethod
    def from_dict(cls, raw: Dict) -> 'Position':
        return cls(
            type=PositionType(raw["type"]),
            size=float(raw["size"]),
            entry_price=float(raw["entryPrice"]),
            entry_time=float(raw["entryTime"]),
            confidence=float(raw.get("confidence", 0.0)),
            reasons=list(raw.get("reasons", [])),
            contributions=[SignalContribution.from_dict(c) for c in raw.get("contributions", [])],
            entry_fee=float(raw.get("entryFee", 0.0)),
        )


@dataclass(frozen=True)
class Trade:
    """Closed trade record."""
    type: PositionType
    entry_price: float
    exit_price: float
    size: float
    pnl: float
    is_win: bool
    entry_time: float
    exit_time: float
    reasons: Tuple[str, ...] = ()
    close_reason: str = ""
    contributions: Tuple[SignalContribution, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "type": self.type.value,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "size": self.size,
            "pnl": self.pnl,
            "isWin": self.is_win,
            "entryTime": self.entry_time,
            "exitTime": self.exit_time,
            "reasons": list(self.reasons),
            "closeReason": self.close_reason,
            "contributions": [c.to_dict() for c in self.contributions],
        }

    @classmethod
    def from_dict(cls, raw: Dict) -> 'Trade':
        return cls(
            type=PositionType(raw["type"]),
            entry_price=float(raw["entryPrice"]),
            exit_price=float(raw["exitPrice"]),
            size=float(raw["size"]),
            pnl=float(raw["pnl"]),
            is_win=bool(raw["isWin"]),
            entry_time=float(raw["entryTime"]),
            exit_time=float(raw["exitTime"]),
            reasons=tuple(raw.get("reasons", [])),
            close_reason=raw.get("closeReason", ""),
            contributions=tuple(SignalContribution.from_dict(c) for c in raw.get("contributions", [])),
        )


@dataclass
class EngineState:
    """Account state that survives restarts."""
    capital: float
    starting_capital: float
    position: Optional[Position] = None
    trades: List[Trade] = field(default_factory=list)
    pnl: float = 0.0
    wins: int = 0
    losses: int = 0

    @classmethod
    def fresh(cls, capital: float) -> 'EngineState':
        return cls(capital=float(capital), starting_capital=float(capital))

    def record_trade(self, trade: 'Trade', limit: Optional[int] = None):
        """Append a closed trade, keeping only the newest `limit` entries."""
        self.trades.append(trade)
        if limit is not None and limit > 0 and len(self.trades) > limit:
            del self.trades[:-limit]

    @property
    def win_rate(self) -> float:
        total = self.wins + self.losses
        return self.wins / total * 100 if total else 0.0

    def to_dict(self) -> Dict:
        return {
            "capital": self.capital,
            "startingCapital": self.starting_capital,
            "position": self.position.to_dict() if self.position else None,
            "trades": [t.to_dict() for t in self.trades],
            "pnl": self.pnl,
            "wins": self.wins,
            "losses": self.losses,
        }

    @classmethod
    def from_dict(cls, raw: Dict) -> 'EngineState':
        position = raw.get("position")
        return cls(
            capital=float(raw["capital"]),
            starting_capital=float(raw.get("startingCapital", raw["capital"])),
            position=Position.from_dict(position) if position else None,
            trades=[Trade.from_dict(t) for t in raw.get("trades", [])],
            pnl=float(raw.get("pnl", 0.0)),
            wins=int(raw.get("wins", 0)),
            losses=int(raw.get("losses", 0)),
        )


# =============================================================================
# BACKTEST AND OPTIMIZATION RESULTS
# =============================================================================

@dataclass
class BacktestResult:
    """Aggregate of one cycle backtest run."""
    trades: int = 0
    wins: int = 0
    pnl: float = 0.0
    trade_list: List[Dict] = field(default_factory=list)

    @property
    def losses(self) -> int:
        return self.trades - self.wins

    @property
    def win_rate(self) -> float:
        return self.wins / self.trades * 100 if self.trades else 0.0

    @property
    def gains_only(self) -> float:
        return sum(t["pnl"] for t in self.trade_list if t["pnl"] > 0)

    @property
    def losses_only(self) -> float:
        return sum(t["pnl"] for t in self.trade_list if t["pnl"] <= 0)

    @property
    def gain_loss_ratio(self) -> float:
        gross_loss = abs(self.losses_only)
        if gross_loss > 0:
            return self.gains_only / gross_loss
        return 10.0 if self.gains_only > 0 else 0.0

    @property
    def max_drawdown(self) -> float:
        if not self.trade_list:
            return 0.0
        cumulative = np.cumsum([t["pnl"] for t in self.trade_list])
        running_max = np.maximum.accumulate(np.concatenate(([0.0], cumulative)))[1:]
        return float(np.max(running_max - cumulative))

    def to_dict(self) -> Dict:
        return {
            "trades": self.trades,
            "wins": self.wins,
            "losses": self.losses,
            "pnl": round(self.pnl, 2),
            "totalGain": round(self.pnl, 2),
            "winRate": round(self.win_rate, 2),
            "gainLossRatio": round(self.gain_loss_ratio, 4),
            "maxDrawdown": round(self.max_drawdown, 2),
            "gainsOnly": round(self.gains_only, 2),
            "lossesOnly": round(self.losses_only, 2),
            "tradeList": self.trade_list,
        }


@dataclass
class OptimizationCandidate:
    """One scored parameter set from an optimizer run."""
    variables: List[Dict]
    result: Dict
    score: float
    metric: str = "totalGain"

    def to_dict(self) -> Dict:
        return {
            "variables": self.variables,
            "result": self.result,
            "score": self.score,
            "metric": self.metric,
        }

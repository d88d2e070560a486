"""
Multi-Timeframe (MTF) Analysis Module

Per-timeframe trend, oscillator and swing/wave analysis, plus the blend of a
timeframe's local trend with the trend of every longer timeframe.

Trend score contributions (summed, then clamped to [-1, 1]):
- Price vs SMA20/50/100/200: ±0.15 / ±0.15 / ±0.10 / ±0.10
- EMA9 vs EMA21: ±0.15, EMA21 vs EMA50: ±0.10
- RSI deviation from 50, scaled by 1/200
- MACD sign: ±0.10
"""

import pandas as pd
import numpy as np
import ta
from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass, field

from config import ENGINE_CONFIG, TIMEFRAME_ORDER
from models.trade_models import Candle, is_valid_price


@dataclass(frozen=True)
class WaveInfo:
    """Swing-to-swing wave statistics for one timeframe."""
    wave_count: int = 0
    avg_wave_height: float = 0.0
    avg_wave_length: float = 0.0
    current_phase: str = 'unknown'  # 'upwave', 'downwave', 'breakout', 'breakdown'
    position_in_cycle: float = 0.5  # 0 = at swing-low extreme, 1 = at swing-high extreme

    def to_dict(self) -> Dict:
        return {
            'waveCount': self.wave_count,
            'avgWaveHeight': round(self.avg_wave_height, 6),
            'avgWaveLength': round(self.avg_wave_length, 2),
            'currentPhase': self.current_phase,
            'positionInCycle': round(self.position_in_cycle, 4),
        }


@dataclass(frozen=True)
class TimeframeAnalysis:
    """Analysis results for a single timeframe."""
    timeframe: str
    trend: float  # -1 (bearish) .. 1 (bullish)
    long_term_trend: float  # % distance from the longest SMA
    volatility: float  # std of % close-to-close returns
    indicators: Dict[str, float] = field(default_factory=dict)
    wave_info: WaveInfo = field(default_factory=WaveInfo)
    last_price: float = 0.0
    candle_count: int = 0

    @property
    def has_data(self) -> bool:
        return self.candle_count >= 2

    def to_dict(self) -> Dict:
        return {
            'timeframe': self.timeframe,
            'trend': round(self.trend, 4),
            'longTermTrend': round(self.long_term_trend, 4),
            'volatility': round(self.volatility, 6),
            'indicators': {k: round(v, 6) for k, v in self.indicators.items()},
            'waveInfo': self.wave_info.to_dict(),
            'lastPrice': self.last_price,
            'candleCount': self.candle_count,
        }


def candles_to_dataframe(candles: Sequence[Candle]) -> pd.DataFrame:
    """Candle list -> OHLC DataFrame ordered by time."""
    df = pd.DataFrame(
        [(c.time, c.open, c.high, c.low, c.close) for c in candles],
        columns=['time', 'open', 'high', 'low', 'close'],
    )
    return df.sort_values('time').reset_index(drop=True)


class TimeframeAnalyzer:
    """
    Computes indicators, trend score and wave structure for one candle window.

    Windows shorter than an indicator's period use the available length, so
    the analyzer degrades instead of failing on short histories.
    """

    SMA_WEIGHTS = {20: 0.15, 50: 0.15, 100: 0.10, 200: 0.10}
    EMA_PERIODS = (9, 21, 50)
    EMA_ORDER_WEIGHTS = ((9, 21, 0.15), (21, 50, 0.10))
    MACD_WEIGHT = 0.10

    def __init__(self, swing_lookback: int = ENGINE_CONFIG['swing_lookback'], rsi_period: int = 14):
        self.swing_lookback = swing_lookback
        self.rsi_period = rsi_period

    def analyze(self, timeframe: str, candles: Sequence[Candle]) -> TimeframeAnalysis:
        """
        Analyze a single timeframe.

        Args:
            timeframe: Timeframe string (e.g., '5m', '1h')
            candles: Candles ordered ascending by time

        Returns:
            TimeframeAnalysis; neutral when fewer than 2 candles or when the
            last close is not a finite positive price
        """
        if len(candles) < 2 or not is_valid_price(candles[-1].close):
            price = candles[-1].close if candles and is_valid_price(candles[-1].close) else 0.0
            return TimeframeAnalysis(
                timeframe=timeframe,
                trend=0.0,
                long_term_trend=0.0,
                volatility=0.0,
                indicators=self._neutral_indicators(price),
                last_price=price,
                candle_count=len(candles),
            )

        df = candles_to_dataframe(candles)
        close = df['close']
        price = float(close.iloc[-1])

        indicators = self.calculate_indicators(close)
        trend = self.calculate_trend_score(price, indicators)

        sma_long = indicators['sma200']
        long_term_trend = (price - sma_long) / sma_long * 100 if sma_long else 0.0

        returns = close.pct_change().dropna() * 100
        volatility = float(returns.std()) if len(returns) > 1 else 0.0
        if np.isnan(volatility):
            volatility = 0.0

        swings = self.find_swings(df)
        wave_info = self.analyze_waves(swings, price)

        return TimeframeAnalysis(
            timeframe=timeframe,
            trend=trend,
            long_term_trend=float(long_term_trend),
            volatility=volatility,
            indicators=indicators,
            wave_info=wave_info,
            last_price=price,
            candle_count=len(df),
        )

    def _neutral_indicators(self, price: float) -> Dict[str, float]:
        indicators = {f'sma{p}': price for p in self.SMA_WEIGHTS}
        indicators.update({f'ema{p}': price for p in self.EMA_PERIODS})
        indicators['rsi'] = 50.0
        indicators['macd'] = 0.0
        return indicators

    def calculate_indicators(self, close: pd.Series) -> Dict[str, float]:
        """Latest SMA/EMA/RSI/MACD values for a close series."""
        n = len(close)
        indicators = {}

        for period in self.SMA_WEIGHTS:
            indicators[f'sma{period}'] = float(close.tail(min(period, n)).mean())

        for period in self.EMA_PERIODS:
            indicators[f'ema{period}'] = float(close.ewm(span=period, adjust=False).mean().iloc[-1])

        indicators['rsi'] = self._calculate_rsi(close)

        ema12 = close.ewm(span=12, adjust=False).mean().iloc[-1]
        ema26 = close.ewm(span=26, adjust=False).mean().iloc[-1]
        indicators['macd'] = float(ema12 - ema26)

        return indicators

    def _calculate_rsi(self, close: pd.Series) -> float:
        """Wilder RSI; 50 when there is too little data or no movement."""
        if len(close) <= self.rsi_period:
            return 50.0
        if close.diff().tail(self.rsi_period).abs().sum() == 0:
            return 50.0
        rsi = ta.momentum.RSIIndicator(close, window=self.rsi_period).rsi().iloc[-1]
        if np.isnan(rsi):
            return 50.0
        return float(min(100.0, max(0.0, rsi)))

    def calculate_trend_score(self, price: float, indicators: Dict[str, float]) -> float:
        score = 0.0

        for period, weight in self.SMA_WEIGHTS.items():
            score += weight * np.sign(price - indicators[f'sma{period}'])

        for fast, slow, weight in self.EMA_ORDER_WEIGHTS:
            score += weight * np.sign(indicators[f'ema{fast}'] - indicators[f'ema{slow}'])

        score += (indicators['rsi'] - 50) / 200
        score += self.MACD_WEIGHT * np.sign(indicators['macd'])

        return float(max(-1.0, min(1.0, score)))

    def find_swings(self, df: pd.DataFrame) -> List[Dict]:
        """
        Swing highs/lows: a candle whose high (low) is not exceeded by any
        neighbor within `swing_lookback` candles on either side.

        Returns:
            [{'index', 'price', 'kind'}] ordered by index
        """
        window = 2 * self.swing_lookback + 1
        if len(df) < window:
            return []

        rolling_high = df['high'].rolling(window, center=True).max()
        rolling_low = df['low'].rolling(window, center=True).min()
        is_high = (df['high'] == rolling_high) & rolling_high.notna()
        is_low = (df['low'] == rolling_low) & rolling_low.notna()

        swings = []
        for i in df.index[is_high | is_low]:
            if is_high[i]:
                swings.append({'index': int(i), 'price': float(df['high'][i]), 'kind': 'high'})
            if is_low[i]:
                swings.append({'index': int(i), 'price': float(df['low'][i]), 'kind': 'low'})
        return swings

    def analyze_waves(self, swings: List[Dict], price: float) -> WaveInfo:
        if not swings:
            return WaveInfo()

        heights = [abs(b['price'] - a['price']) for a, b in zip(swings, swings[1:])]
        lengths = [b['index'] - a['index'] for a, b in zip(swings, swings[1:])]

        highs = [s['price'] for s in swings if s['kind'] == 'high']
        lows = [s['price'] for s in swings if s['kind'] == 'low']

        if highs and price > max(highs):
            phase = 'breakout'
        elif lows and price < min(lows):
            phase = 'breakdown'
        elif swings[-1]['kind'] == 'low':
            phase = 'upwave'
        else:
            phase = 'downwave'

        position = 0.5
        if highs and lows:
            top, bottom = max(highs), min(lows)
            if top > bottom:
                position = max(0.0, min(1.0, (price - bottom) / (top - bottom)))

        return WaveInfo(
            wave_count=len(heights),
            avg_wave_height=float(np.mean(heights)) if heights else 0.0,
            avg_wave_length=float(np.mean(lengths)) if lengths else 0.0,
            current_phase=phase,
            position_in_cycle=float(position),
        )


def blend_trends(local_trend: float, higher_tf_trend: float,
                 local_weight: float = ENGINE_CONFIG['local_weight']) -> float:
    """local_weight x local + (1 - local_weight) x higher."""
    return local_weight * local_trend + (1 - local_weight) * higher_tf_trend


@dataclass(frozen=True)
class TrendSummary:
    """Blended trend for the active timeframe."""
    local_trend: float
    higher_tf_trend: float
    blended_trend: float
    higher_count: int  # longer timeframes that contributed

    def to_dict(self) -> Dict:
        return {
            'localTrend': round(self.local_trend, 4),
            'higherTFTrend': round(self.higher_tf_trend, 4),
            'blendedTrend': round(self.blended_trend, 4),
            'higherCount': self.higher_count,
        }


class TrendAggregator:
    """
    Blends the active timeframe's trend with every strictly longer timeframe.

    Longer timeframes are weighted 1 + distance_weight x (rank distance), so
    the further up the ladder, the more say a timeframe gets.
    """

    def __init__(self, local_weight: float = ENGINE_CONFIG['local_weight'],
                 distance_weight: float = ENGINE_CONFIG['higher_tf_distance_weight'],
                 timeframe_order: Optional[List[str]] = None):
        self.local_weight = local_weight
        self.distance_weight = distance_weight
        self.timeframe_order = timeframe_order or TIMEFRAME_ORDER

    def higher_tf_trend(self, current_tf: str,
                        analyses: Dict[str, TimeframeAnalysis]) -> Optional[float]:
        """Weighted mean trend over longer timeframes with data, None if none."""
        if current_tf not in self.timeframe_order:
            return None
        current_rank = self.timeframe_order.index(current_tf)

        total = 0.0
        total_weight = 0.0
        for tf, analysis in analyses.items():
            if tf not in self.timeframe_order or not analysis.has_data:
                continue
            distance = self.timeframe_order.index(tf) - current_rank
            if distance <= 0:
                continue
            weight = 1 + self.distance_weight * distance
            total += analysis.trend * weight
            total_weight += weight

        return total / total_weight if total_weight else None

    def aggregate(self, current_tf: str, analyses: Dict[str, TimeframeAnalysis]) -> TrendSummary:
        local = analyses.get(current_tf)
        local_trend = local.trend if local is not None and local.has_data else 0.0

        higher = self.higher_tf_trend(current_tf, analyses)
        higher_count = sum(
            1 for tf, a in analyses.items()
            if a.has_data and tf in self.timeframe_order and current_tf in self.timeframe_order
            and self.timeframe_order.index(tf) > self.timeframe_order.index(current_tf)
        )
        if higher is None:
            higher = local_trend

        return TrendSummary(
            local_trend=local_trend,
            higher_tf_trend=higher,
            blended_trend=blend_trends(local_trend, higher, self.local_weight),
            higher_count=higher_count,
        )

"""
Cycle Backtester - fast fixed-hold replay of a candle slice

Deliberately simpler than the live decision scorer:
- Long:  RSI < rsi_long_below, or price > SMA x (1 + band) with momentum > momentum_pct
- Short: RSI > rsi_short_above, or price < SMA x (1 - band) with momentum < -momentum_pct
- Exit at the close `hold_candles` later, then resume scanning after the exit
  candle, so trades never overlap.
"""
import pandas as pd
import numpy as np
from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass, fields

from logging_config import log
from models.trade_models import BacktestResult, Candle, PositionType, TradingSettings
from mtf_analysis import candles_to_dataframe
from engine.position_manager import clamp_position_size, points_between


@dataclass
class CycleRuleParams:
    """Tunable knobs of the cycle rule."""
    sma_period: int = 10
    rsi_period: int = 14
    hold_candles: int = 10
    rsi_long_below: float = 35
    rsi_short_above: float = 65
    sma_band: float = 0.001
    momentum_pct: float = 0.1
    momentum_lookback: int = 5

    @classmethod
    def from_dict(cls, raw: Optional[Dict]) -> 'CycleRuleParams':
        params = cls()
        known = {f.name for f in fields(cls)}
        for key, value in (raw or {}).items():
            if key in known and value is not None:
                integer = key in ('sma_period', 'rsi_period', 'hold_candles', 'momentum_lookback')
                setattr(params, key, max(1, int(round(float(value)))) if integer else float(value))
        return params


class CycleBacktester:
    """
    Replays candles with the cycle rule and fixed-length holds.

    P&L per trade uses the same contract math as the live position manager:
    points x contract_value x size x contract_size, minus the full spread
    and one fee per side.
    """

    def __init__(self, candles: Sequence[Candle], settings: Optional[TradingSettings] = None,
                 params: Optional[CycleRuleParams] = None):
        self.candles = list(candles)
        self.settings = settings or TradingSettings()
        self.params = params or CycleRuleParams()

    def calculate_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        """SMA, simple-average RSI and momentum columns"""
        df = df.copy()
        p = self.params

        df['sma'] = df['close'].rolling(p.sma_period).mean()

        # Simple average of gains/losses over the window (not Wilder)
        delta = df['close'].diff()
        avg_gain = delta.clip(lower=0).rolling(p.rsi_period).mean()
        avg_loss = (-delta.clip(upper=0)).rolling(p.rsi_period).mean()
        rs = avg_gain / avg_loss.replace(0, np.nan)
        rsi = 100 - 100 / (1 + rs)
        rsi = rsi.where(avg_loss != 0, np.where(avg_gain > 0, 100.0, 50.0))
        df['rsi'] = rsi.where(avg_gain.notna())

        df['momentum'] = df['close'].pct_change(p.momentum_lookback) * 100

        df['long_signal'] = (
            (df['rsi'] < p.rsi_long_below) |
            ((df['close'] > df['sma'] * (1 + p.sma_band)) & (df['momentum'] > p.momentum_pct))
        )
        df['short_signal'] = (
            (df['rsi'] > p.rsi_short_above) |
            ((df['close'] < df['sma'] * (1 - p.sma_band)) & (df['momentum'] < -p.momentum_pct))
        )
        return df

    def signal_at(self, df: pd.DataFrame, i: int) -> Optional[PositionType]:
        row = df.iloc[i]
        if pd.isna(row['sma']) or pd.isna(row['rsi']) or pd.isna(row['momentum']):
            return None
        if row['long_signal'] and self.settings.allows(PositionType.LONG):
            return PositionType.LONG
        if row['short_signal'] and self.settings.allows(PositionType.SHORT):
            return PositionType.SHORT
        return None

    def run(self) -> BacktestResult:
        """
        Run the replay.

        Returns:
            BacktestResult with one tradeList entry per completed hold
        """
        if not self.candles:
            return BacktestResult()

        df = self.calculate_indicators(candles_to_dataframe(self.candles))
        spec = self.settings.spec
        size = clamp_position_size(self.settings)
        per_point = spec.contract_value * size * spec.contract_size
        spread_cost = self.settings.spread_points * per_point
        commission = 2 * self.settings.fee
        hold = self.params.hold_candles

        trade_list: List[Dict] = []
        n = len(df)
        i = 0
        while i < n:
            direction = self.signal_at(df, i)
            if direction is None:
                i += 1
                continue

            exit_index = i + hold
            if exit_index >= n:
                break

            entry_price = float(df['close'].iloc[i])
            exit_price = float(df['close'].iloc[exit_index])
            points = points_between(direction, entry_price, exit_price, spec.one_point_means)
            pnl = points * per_point - spread_cost - commission

            trade_list.append({
                "type": direction.value,
                "entryIndex": i,
                "exitIndex": exit_index,
                "entryTime": int(df['time'].iloc[i]),
                "exitTime": int(df['time'].iloc[exit_index]),
                "entryPrice": entry_price,
                "exitPrice": exit_price,
                "size": size,
                "pnl": round(pnl, 2),
                "isWin": pnl > 0,
            })
            i = exit_index + 1

        result = BacktestResult(
            trades=len(trade_list),
            wins=sum(1 for t in trade_list if t["isWin"]),
            pnl=float(sum(t["pnl"] for t in trade_list)),
            trade_list=trade_list,
        )
        log(f"[Cycle Backtest] {n} candles -> {result.trades} trades, "
            f"{result.wins} wins, P&L {result.pnl:+.2f}", level='DEBUG')
        return result

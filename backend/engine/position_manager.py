"""
POSITION MANAGER
================
Owns the single open position of an EngineState: opening with spread and
fee, stop-loss / take-profit checks, and realized P&L on close.

Accounting:
    spread price  = spread_pips x one_point_means, half on entry, half on exit
    points        = (exit - entry) / one_point_means   (mirrored for shorts)
    gross         = points x contract_value x size x contract_size
    trade pnl     = gross - entry fee - exit fee
Fees leave capital at the moment they are paid, so
capital - starting_capital always equals the cumulative realized P&L
once flat.
"""
import time
from typing import Callable, Optional, Sequence

from config import ENGINE_CONFIG
from logging_config import log
from models.trade_models import (
    EngineState,
    Position,
    PositionType,
    SignalContribution,
    Trade,
    TradingSettings,
    is_valid_price,
)


def clamp_position_size(settings: TradingSettings) -> float:
    """Requested size clamped to [contract_min_size, max_position_size]."""
    spec = settings.spec
    return max(spec.contract_min_size, min(float(settings.max_position_size), float(settings.position_size)))


def points_between(position_type: PositionType, entry: float, exit_price: float,
                   one_point_means: float) -> float:
    diff = exit_price - entry if position_type is PositionType.LONG else entry - exit_price
    return diff / one_point_means


class PositionManager:
    """At most one open position; opening while one exists is rejected."""

    def __init__(self, state: EngineState, settings: TradingSettings,
                 clock: Callable[[], float] = time.time,
                 history_limit: int = ENGINE_CONFIG['trade_history_limit']):
        self.state = state
        self.settings = settings
        self.clock = clock
        self.history_limit = history_limit

    @property
    def position(self) -> Optional[Position]:
        return self.state.position

    def _half_spread(self) -> float:
        return self.settings.spread_points * self.settings.spec.one_point_means / 2

    def open(self, position_type: PositionType, raw_price: float, confidence: float = 0.0,
             reasons: Optional[Sequence[str]] = None,
             contributions: Optional[Sequence[SignalContribution]] = None) -> Optional[Position]:
        """
        Open a position at raw_price with the spread against the trader.

        Returns:
            The new Position, or None when a position is already open or
            the price is unusable
        """
        if self.state.position is not None:
            log(f"[Engine] Open {position_type.value} rejected: "
                f"{self.state.position.type.value} position already open", level='WARNING')
            return None
        if not is_valid_price(raw_price):
            log(f"[Engine] Open {position_type.value} rejected: invalid price {raw_price!r}", level='WARNING')
            return None

        half_spread = self._half_spread()
        entry = raw_price + half_spread if position_type is PositionType.LONG else raw_price - half_spread
        fee = self.settings.fee
        self.state.capital -= fee

        position = Position(
            type=position_type,
            size=clamp_position_size(self.settings),
            entry_price=entry,
            entry_time=self.clock(),
            confidence=confidence,
            reasons=list(reasons or []),
            contributions=list(contributions or []),
            entry_fee=fee,
        )
        self.state.position = position

        log(f"[Engine] OPEN {position_type.value.upper()} {position.size} @ {entry:.5f} "
            f"(confidence {confidence:.2f}, fee {fee:.2f})")
        return position

    def points_from_entry(self, price: float) -> float:
        position = self.state.position
        if position is None:
            return 0.0
        return points_between(position.type, position.entry_price, price,
                              self.settings.spec.one_point_means)

    def unrealized_pnl(self, price: float) -> float:
        position = self.state.position
        if position is None or not is_valid_price(price):
            return 0.0
        spec = self.settings.spec
        return self.points_from_entry(price) * spec.contract_value * position.size * spec.contract_size

    def close(self, raw_price: float, reason: str) -> Optional[Trade]:
        """
        Close the open position at raw_price.

        Returns:
            The recorded Trade, or None when flat or the price is unusable
        """
        position = self.state.position
        if position is None:
            return None
        if not is_valid_price(raw_price):
            log(f"[Engine] Close rejected: invalid price {raw_price!r}", level='WARNING')
            return None

        spec = self.settings.spec
        half_spread = self._half_spread()
        exit_price = raw_price - half_spread if position.type is PositionType.LONG else raw_price + half_spread

        points = points_between(position.type, position.entry_price, exit_price, spec.one_point_means)
        gross = points * spec.contract_value * position.size * spec.contract_size
        exit_fee = self.settings.fee
        pnl = gross - position.entry_fee - exit_fee

        self.state.capital += gross - exit_fee
        self.state.pnl += pnl
        is_win = pnl > 0
        if is_win:
            self.state.wins += 1
        else:
            self.state.losses += 1

        trade = Trade(
            type=position.type,
            entry_price=position.entry_price,
            exit_price=exit_price,
            size=position.size,
            pnl=pnl,
            is_win=is_win,
            entry_time=position.entry_time,
            exit_time=self.clock(),
            reasons=tuple(position.reasons),
            close_reason=reason,
            contributions=tuple(position.contributions),
        )
        self.state.record_trade(trade, self.history_limit)
        self.state.position = None

        log(f"[Engine] CLOSE {position.type.value.upper()} @ {exit_price:.5f}: "
            f"{points:+.1f} pts, P&L {pnl:+.2f} ({reason})")
        return trade

    def check_stop_loss_take_profit(self, price: float) -> Optional[Trade]:
        """
        Force-close when points from entry reach -stop_loss or +take_profit.

        A threshold of 0 disables that check. Calling again once flat is a no-op.
        """
        if self.state.position is None or not is_valid_price(price):
            return None

        points = self.points_from_entry(price)
        stop_loss = float(self.settings.stop_loss or 0)
        take_profit = float(self.settings.take_profit or 0)

        if stop_loss > 0 and points <= -stop_loss:
            return self.close(price, "Stop loss hit")
        if take_profit > 0 and points >= take_profit:
            return self.close(price, "Take profit hit")
        return None

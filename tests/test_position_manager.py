"""
Tests for the Position Manager
==============================
Contract P&L math, spread and fees, single-position rule, stop loss / take profit.
"""
import math
import pytest
from dataclasses import replace
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from engine.position_manager import PositionManager, clamp_position_size, points_between
from models.trade_models import EngineState, PositionType


def manager_for(settings):
    state = EngineState.fresh(settings.initial_capital)
    return PositionManager(state, settings, clock=lambda: 1_700_000_000.0)


class TestContractMath:

    def test_long_pnl_without_costs(self, flat_settings):
        manager = manager_for(flat_settings)
        manager.open(PositionType.LONG, 30.00)
        trade = manager.close(30.50, "Signal reversed")

        assert trade.pnl == pytest.approx(2500.0)
        assert trade.is_win
        assert manager.state.capital == pytest.approx(4500.0)
        assert manager.state.wins == 1

    def test_points_between(self):
        assert points_between(PositionType.LONG, 30.0, 30.5, 0.01) == pytest.approx(50)
        assert points_between(PositionType.SHORT, 30.0, 30.5, 0.01) == pytest.approx(-50)

    def test_long_with_spread_and_fees(self, costed_settings):
        manager = manager_for(costed_settings)
        position = manager.open(PositionType.LONG, 30.00)

        assert position.entry_price == pytest.approx(30.01)
        assert position.entry_fee == 7.0
        assert manager.state.capital == pytest.approx(1993.0)

        trade = manager.close(30.50, "Take profit hit")
        assert trade.exit_price == pytest.approx(30.49)
        assert trade.pnl == pytest.approx(2400.0 - 14.0)
        assert manager.state.capital - manager.state.starting_capital == pytest.approx(trade.pnl)

    def test_short_with_spread(self, costed_settings):
        manager = manager_for(costed_settings)
        position = manager.open(PositionType.SHORT, 30.00)
        assert position.entry_price == pytest.approx(29.99)

        trade = manager.close(29.50, "Signal reversed")
        assert trade.exit_price == pytest.approx(29.51)
        assert trade.pnl == pytest.approx(2400.0 - 14.0)

    def test_losing_trade_counts_as_loss(self, costed_settings):
        manager = manager_for(costed_settings)
        manager.open(PositionType.LONG, 30.00)
        trade = manager.close(30.00, "Low confidence")

        assert not trade.is_win
        assert trade.pnl == pytest.approx(-2 * 50.0 - 14.0)
        assert manager.state.losses == 1
        assert manager.state.pnl == pytest.approx(trade.pnl)

    def test_unrealized_pnl(self, flat_settings):
        manager = manager_for(flat_settings)
        assert manager.unrealized_pnl(31.0) == 0.0
        manager.open(PositionType.LONG, 30.0)
        assert manager.unrealized_pnl(30.1) == pytest.approx(500.0)
        assert manager.unrealized_pnl(math.nan) == 0.0


class TestPositionRules:

    def test_second_open_rejected(self, flat_settings):
        manager = manager_for(flat_settings)
        first = manager.open(PositionType.LONG, 30.0)
        assert manager.open(PositionType.SHORT, 31.0) is None
        assert manager.position is first

    @pytest.mark.parametrize("price", [math.nan, 0.0, -5.0, None])
    def test_invalid_open_price_rejected(self, flat_settings, price):
        manager = manager_for(flat_settings)
        assert manager.open(PositionType.LONG, price) is None
        assert manager.position is None
        assert manager.state.capital == flat_settings.initial_capital

    def test_invalid_close_price_keeps_position(self, flat_settings):
        manager = manager_for(flat_settings)
        manager.open(PositionType.LONG, 30.0)
        assert manager.close(math.inf, "Stopped") is None
        assert manager.position is not None

    def test_close_when_flat(self, flat_settings):
        assert manager_for(flat_settings).close(30.0, "Stopped") is None

    def test_trade_carries_reasons_and_times(self, flat_settings):
        manager = manager_for(flat_settings)
        manager.open(PositionType.LONG, 30.0, confidence=0.7, reasons=["Bullish trend (blended +0.50)"])
        trade = manager.close(30.2, "Signal reversed")
        assert trade.reasons == ("Bullish trend (blended +0.50)",)
        assert trade.close_reason == "Signal reversed"
        assert trade.entry_time == trade.exit_time == 1_700_000_000.0
        assert manager.state.trades == [trade]

    def test_trade_history_is_capped_but_counters_are_not(self, flat_settings):
        state = EngineState.fresh(flat_settings.initial_capital)
        manager = PositionManager(state, flat_settings, clock=lambda: 1_700_000_000.0, history_limit=3)
        exits = [30.5, 29.5, 30.5, 29.5, 30.5]
        for exit_price in exits:
            manager.open(PositionType.LONG, 30.0)
            manager.close(exit_price, "Signal reversed")

        assert [t.exit_price for t in state.trades] == exits[-3:]
        assert state.wins == 3
        assert state.losses == 2
        assert state.pnl == pytest.approx(2500.0)
        assert state.capital == pytest.approx(flat_settings.initial_capital + 2500.0)

    @pytest.mark.parametrize("requested,expected", [(5.0, 1.0), (0.01, 0.1), (0.5, 0.5)])
    def test_size_clamp(self, flat_settings, requested, expected):
        assert clamp_position_size(replace(flat_settings, position_size=requested)) == expected


class TestStopLossTakeProfit:

    def test_stop_loss_hit(self, flat_settings):
        manager = manager_for(replace(flat_settings, stop_loss=10, take_profit=30))
        manager.open(PositionType.LONG, 30.0)
        trade = manager.check_stop_loss_take_profit(29.8)
        assert trade.close_reason == "Stop loss hit"
        assert manager.position is None

    def test_take_profit_hit_on_short(self, flat_settings):
        manager = manager_for(replace(flat_settings, stop_loss=10, take_profit=30))
        manager.open(PositionType.SHORT, 30.0)
        trade = manager.check_stop_loss_take_profit(29.5)
        assert trade.close_reason == "Take profit hit"

    def test_inside_band_keeps_position(self, flat_settings):
        manager = manager_for(replace(flat_settings, stop_loss=10, take_profit=30))
        manager.open(PositionType.LONG, 30.0)
        assert manager.check_stop_loss_take_profit(30.05) is None
        assert manager.position is not None

    def test_repeat_check_is_noop(self, flat_settings):
        manager = manager_for(replace(flat_settings, stop_loss=10))
        manager.open(PositionType.LONG, 30.0)
        assert manager.check_stop_loss_take_profit(29.0) is not None
        assert manager.check_stop_loss_take_profit(29.0) is None
        assert len(manager.state.trades) == 1

    def test_zero_threshold_disables_check(self, flat_settings):
        manager = manager_for(flat_settings)
        manager.open(PositionType.LONG, 30.0)
        assert manager.check_stop_loss_take_profit(1.0) is None
        assert manager.check_stop_loss_take_profit(500.0) is None

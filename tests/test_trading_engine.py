"""
Tests for the Trading Engine
============================
Cycle processing, position flips, learning hooks, persistence and the runner.
"""
import pytest
import asyncio
import sqlite3
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock
import sys
import os

import aiohttp

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from config import ENGINE_CONFIG, POLL_INTERVALS
from models.trade_models import PositionType
from services.trading_engine import EngineRunner, TradingEngine


def all_timeframes(candles):
    return {tf: candles for tf in ENGINE_CONFIG['timeframes']}


def make_engine(settings, candle_source=None, **kwargs):
    source = candle_source or MagicMock()
    return TradingEngine(settings, source, clock=lambda: 1_700_000_000.0, **kwargs)


class TestProcessCycle:

    def test_uptrend_opens_long(self, flat_settings, rising_candles):
        engine = make_engine(flat_settings)
        engine.process_cycle(all_timeframes(rising_candles))

        assert engine.last_decision.action == 'buy'
        assert engine.state.position.type is PositionType.LONG
        assert engine.last_price == rising_candles[-1].close
        assert engine.trend.blended_trend > 0

    def test_reversal_closes_and_flips(self, flat_settings, rising_candles, falling_candles):
        engine = make_engine(flat_settings)
        engine.process_cycle(all_timeframes(rising_candles))
        engine.process_cycle(all_timeframes(falling_candles))

        assert len(engine.state.trades) == 1
        trade = engine.state.trades[0]
        assert trade.close_reason == "Signal reversed"
        assert trade.type is PositionType.LONG
        assert not trade.is_win
        assert engine.state.position.type is PositionType.SHORT

    def test_losing_trade_lowers_credited_weights(self, flat_settings, rising_candles, falling_candles):
        engine = make_engine(flat_settings)
        engine.process_cycle(all_timeframes(rising_candles))
        engine.process_cycle(all_timeframes(falling_candles))

        weights = engine.learning.weights
        assert weights.trend < 1.0
        # RSI voted bear on the long entry, so it was not credited
        assert weights.rsi == 1.0

    def test_reversal_without_open_permission_only_closes(self, flat_settings, rising_candles, falling_candles):
        engine = make_engine(replace(flat_settings, trade_type='long'))
        engine.process_cycle(all_timeframes(rising_candles))
        engine.process_cycle(all_timeframes(falling_candles))

        assert engine.state.trades[0].close_reason == "Signal reversed"
        assert engine.state.position is None

    def test_stop_loss_checked_before_decision(self, flat_settings, falling_candles):
        engine = make_engine(replace(flat_settings, stop_loss=100))
        engine.positions.open(PositionType.LONG, 40.0)
        engine.process_cycle(all_timeframes(falling_candles))

        assert engine.state.trades[0].close_reason == "Stop loss hit"

    def test_no_price_holds(self, flat_settings):
        engine = make_engine(flat_settings)
        delay = engine.process_cycle({})

        assert engine.last_decision.action == 'hold'
        assert engine.state.position is None
        assert delay == POLL_INTERVALS['1h'] * engine.speed.interval_mult

    def test_unusable_higher_timeframe_close_casts_no_bullish_vote(self, flat_settings, falling_candles):
        candles = all_timeframes(falling_candles)
        candles['4h'] = falling_candles[:-1] + [replace(falling_candles[-1], close=float("nan"))]
        engine = make_engine(flat_settings)
        engine.process_cycle(candles)

        assert engine.analysis['4h'].trend == 0.0
        assert engine.trend.blended_trend < 0
        assert engine.last_decision.action != 'buy'

    def test_delay_follows_market_speed(self, flat_settings, rising_candles):
        engine = make_engine(flat_settings)
        delay = engine.process_cycle(all_timeframes(rising_candles))
        assert engine.speed.label == 'slow'
        assert delay == pytest.approx(POLL_INTERVALS['1h'] * 1.5)

    def test_state_persisted_after_change(self, flat_settings, rising_candles):
        store = MagicMock()
        engine = make_engine(flat_settings, store=store)
        engine.process_cycle(all_timeframes(rising_candles))

        store.save_engine_state.assert_called_once_with(engine.state, "default")
        store.save_learning_state.assert_called_once_with(engine.learning, "default")

    def test_persist_errors_are_logged_not_raised(self, flat_settings):
        store = MagicMock()
        store.save_engine_state.side_effect = sqlite3.OperationalError("disk I/O error")
        engine = make_engine(flat_settings, store=store)
        engine.persist()

    def test_status_shape(self, flat_settings, rising_candles):
        engine = make_engine(flat_settings)
        engine.process_cycle(all_timeframes(rising_candles))
        status = engine.status()

        assert status['position']['type'] == 'long'
        assert status['lastDecision']['action'] == 'buy'
        assert set(status['analysis']) == set(ENGINE_CONFIG['timeframes'])
        assert 'learningWeights' in status['learning']


class TestRunCycle:

    @pytest.mark.asyncio
    async def test_failed_timeframe_skipped(self, flat_settings, rising_candles):
        async def fetch(asset, timeframe):
            if timeframe == '5m':
                raise aiohttp.ClientError("connection reset")
            if timeframe == '15m':
                return []
            return rising_candles

        source = MagicMock()
        source.fetch = AsyncMock(side_effect=fetch)
        engine = make_engine(flat_settings, source)

        await engine.run_cycle()

        assert '5m' not in engine.analysis
        assert '15m' not in engine.analysis
        assert '1h' in engine.analysis
        assert engine.cycle_count == 1

    @pytest.mark.asyncio
    async def test_news_checked_on_first_and_every_nth_cycle(self, flat_settings, mock_candle_source):
        news = MagicMock()
        news.check = AsyncMock(return_value='bearish')
        engine = make_engine(flat_settings, mock_candle_source, news_client=news)

        for _ in range(ENGINE_CONFIG['news_check_every']):
            await engine.run_cycle()

        assert news.check.await_count == 2
        assert engine.news_sentiment == 'bearish'

    @pytest.mark.asyncio
    async def test_active_timeframe_always_fetched(self, flat_settings, mock_candle_source):
        engine = make_engine(replace(flat_settings, timeframe='10s'), mock_candle_source)
        await engine.run_cycle()
        fetched = [call.args[1] for call in mock_candle_source.fetch.await_args_list]
        assert '10s' in fetched
        assert fetched == sorted(fetched, key=engine.timeframes.index)


class TestFromStore:

    def test_resumes_saved_state(self, flat_settings, rising_candles):
        first = make_engine(flat_settings)
        first.process_cycle(all_timeframes(rising_candles))

        store = MagicMock()
        store.load_engine_state.return_value = first.state
        store.load_learning_state.return_value = first.learning

        resumed = TradingEngine.from_store(store, flat_settings, MagicMock(), key="silver")
        assert resumed.state.position is first.state.position
        assert resumed.store_key == "silver"
        store.load_engine_state.assert_called_once_with("silver")

    def test_fresh_when_store_empty(self, flat_settings):
        store = MagicMock()
        store.load_engine_state.return_value = None
        store.load_learning_state.return_value = None

        engine = TradingEngine.from_store(store, flat_settings, MagicMock())
        assert engine.state.capital == flat_settings.initial_capital
        assert engine.learning.learning_score == 0.0


class TestEngineRunner:

    @pytest.mark.asyncio
    async def test_stop_closes_open_position(self, flat_settings, mock_candle_source):
        store = MagicMock()
        engine = make_engine(flat_settings, mock_candle_source, store=store)
        engine.positions.open(PositionType.LONG, 30.0)
        engine.last_price = 30.5

        runner = EngineRunner(engine)
        runner.start()
        await asyncio.sleep(0.05)
        assert runner.running

        trade = await runner.stop()

        assert not runner.running
        assert trade.close_reason == "Stopped"
        assert trade.pnl == pytest.approx(2500.0)
        assert engine.state.position is None
        assert store.save_engine_state.called

    @pytest.mark.asyncio
    async def test_stop_when_flat(self, flat_settings, mock_candle_source):
        runner = EngineRunner(make_engine(flat_settings, mock_candle_source))
        runner.start()
        await asyncio.sleep(0.01)
        assert await runner.stop() is None

    @pytest.mark.asyncio
    async def test_double_start_rejected(self, flat_settings, mock_candle_source):
        runner = EngineRunner(make_engine(flat_settings, mock_candle_source))
        runner.start()
        try:
            with pytest.raises(RuntimeError):
                runner.start()
        finally:
            await runner.stop()

    @pytest.mark.asyncio
    async def test_crashed_cycle_retries(self, flat_settings, mock_candle_source):
        engine = make_engine(flat_settings, mock_candle_source)
        engine.run_cycle = AsyncMock(side_effect=RuntimeError("analysis blew up"))

        runner = EngineRunner(engine, error_retry_interval=0.01)
        runner.start()
        await asyncio.sleep(0.1)
        await runner.stop()

        assert engine.run_cycle.await_count >= 2

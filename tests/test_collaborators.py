"""
Tests for Collaborator Clients
==============================
Candle source and cache, news sentiment, and the backtest evaluators.
HTTP sessions are mocked; nothing leaves the process.
"""
import pytest
import asyncio
from unittest.mock import AsyncMock, MagicMock
import sys
import os

import aiohttp

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from models.trade_models import TradingSettings, candles_from_dicts
from services.backtest_evaluator import (
    LocalBacktestEvaluator,
    RemoteBacktestEvaluator,
    params_from_strategy,
)
from services.candle_source import (
    CandleCache,
    CandleSource,
    generate_synthetic_candles,
    timeframe_seconds,
)
from services.news_sentiment import NewsSentimentClient


def mock_session(status=200, payload=None, error=None):
    """aiohttp-like session whose get/post yield one canned response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value="upstream error")

    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    if error is not None:
        session.get = MagicMock(side_effect=error)
        session.post = MagicMock(side_effect=error)
    else:
        session.get = MagicMock(return_value=ctx)
        session.post = MagicMock(return_value=ctx)
    return session


def with_session(client, session):
    client._get_session = AsyncMock(return_value=session)
    return client


class TestSyntheticCandles:

    def test_seeded_series_is_reproducible(self):
        a = generate_synthetic_candles("silver", 50, seed=3, end_time=1_700_000_000)
        b = generate_synthetic_candles("silver", 50, seed=3, end_time=1_700_000_000)
        assert a == b

    def test_shape(self):
        candles = generate_synthetic_candles("gold", 30, seed=1, timeframe='15m', end_time=1_700_000_000)
        assert len(candles) == 30
        assert candles[-1].time == 1_700_000_000
        assert candles[1].time - candles[0].time == 900
        for c in candles:
            assert c.low <= min(c.open, c.close)
            assert c.high >= max(c.open, c.close)
            assert c.low > 0

    @pytest.mark.parametrize("timeframe,seconds", [('1s', 1), ('15m', 900), ('4h', 14400), ('1d', 86400), ('?', 3600)])
    def test_timeframe_seconds(self, timeframe, seconds):
        assert timeframe_seconds(timeframe) == seconds


class TestCandleParsing:

    def test_sorted_and_malformed_dropped(self, rising_candles):
        raw = [c.to_dict() for c in reversed(rising_candles[:5])] + [{"time": 1}, {"time": "x", "close": 1}]
        assert candles_from_dicts(raw) == rising_candles[:5]

    @pytest.mark.parametrize("field,value", [
        ("close", "nan"), ("close", "NaN"), ("open", "inf"), ("high", float("nan")), ("low", 0), ("close", -2.5),
    ])
    def test_unusable_prices_dropped(self, rising_candles, field, value):
        raw = [c.to_dict() for c in rising_candles[:3]]
        raw[-1][field] = value
        assert candles_from_dicts(raw) == rising_candles[:2]


class TestCandleCache:

    def test_hit_and_miss(self, rising_candles):
        cache = CandleCache()
        assert cache.get("silver", "1h") is None
        cache.set("Silver", "1h", rising_candles)
        assert cache.get("silver", "1h") == rising_candles
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["entries"] == 1

    def test_expired_entries_dropped(self, rising_candles):
        cache = CandleCache(ttls={'1m': -1})
        cache.set("silver", "1m", rising_candles)
        assert cache.get("silver", "1m") is None
        assert cache.get_stats()["entries"] == 0

    def test_empty_windows_not_cached(self):
        cache = CandleCache()
        cache.set("silver", "1h", [])
        assert cache.get_stats()["entries"] == 0

    def test_invalidate(self, rising_candles):
        cache = CandleCache()
        cache.set("silver", "1h", rising_candles)
        cache.invalidate("silver", "1h")
        assert cache.get("silver", "1h") is None
        assert cache.get_stats()["invalidations"] == 1


class TestCandleSource:

    @pytest.mark.asyncio
    async def test_fetch_parses_and_caches(self, rising_candles):
        payload = {"candles": [c.to_dict() for c in reversed(rising_candles)] + [{"time": "bad"}]}
        session = mock_session(payload=payload)
        source = with_session(CandleSource("http://market"), session)

        candles = await source.fetch("silver", "1h")
        again = await source.fetch("silver", "1h")

        assert candles == rising_candles
        assert again == rising_candles
        assert session.get.call_count == 1
        assert session.get.call_args.args[0] == "http://market/api/market-data/silver/1h"

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, rising_candles):
        session = mock_session(payload={"candles": [c.to_dict() for c in rising_candles]})
        source = with_session(CandleSource("http://market"), session)
        await source.fetch("silver", "1h")
        await source.fetch("silver", "1h", force_refresh=True)
        assert session.get.call_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session", [
        mock_session(error=aiohttp.ClientConnectionError("refused")),
        mock_session(error=asyncio.TimeoutError()),
        mock_session(status=503),
        mock_session(payload={"error": "unknown asset"}),
    ])
    async def test_failures_return_empty(self, session):
        source = with_session(CandleSource("http://market"), session)
        assert await source.fetch("silver", "1h") == []

    @pytest.mark.asyncio
    async def test_synthetic_fallback(self):
        source = with_session(CandleSource("http://market"), mock_session(status=500))
        candles = await source.fetch_or_synthetic("oil", "5m", n=40)
        assert len(candles) == 40


class TestNewsSentiment:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session,expected", [
        (mock_session(payload={"sentiment": "Bullish"}), 'bullish'),
        (mock_session(payload={"sentiment": "bearish"}), 'bearish'),
        (mock_session(payload={"sentiment": "ecstatic"}), 'neutral'),
        (mock_session(payload=["bullish"]), 'neutral'),
        (mock_session(status=500), 'neutral'),
        (mock_session(error=aiohttp.ClientConnectionError("refused")), 'neutral'),
    ])
    async def test_check(self, session, expected):
        client = with_session(NewsSentimentClient("http://news"), session)
        assert await client.check("silver") == expected


class TestParamsFromStrategy:

    def test_recognized_names_mapped(self):
        code = "\n".join([
            "smaPeriod = 8",
            "rsiPeriod = 6",
            "hold = 4",
            "oversold = 25",
            "SET STOP LOSS 50",
            "SET TARGET PROFIT 120",
        ])
        params, settings = params_from_strategy(code, TradingSettings())
        assert params.sma_period == 8
        assert params.rsi_period == 6
        assert params.hold_candles == 4
        assert params.rsi_long_below == 25
        assert settings.stop_loss == 50
        assert settings.take_profit == 120

    def test_indicator_periods_mapped(self):
        params, _ = params_from_strategy("x = Average[12](close)\ny = RSI[9](close)", TradingSettings())
        assert params.sma_period == 12
        assert params.rsi_period == 9

    def test_settings_not_mutated(self):
        settings = TradingSettings()
        params_from_strategy("SET STOP LOSS 50", settings)
        assert settings.stop_loss == TradingSettings().stop_loss


class TestEvaluators:

    @pytest.mark.asyncio
    async def test_local_evaluator(self, random_walk_candles):
        result = await LocalBacktestEvaluator().run("hold = 5", random_walk_candles, TradingSettings())
        assert "error" not in result
        assert {"trades", "totalGain", "winRate", "gainLossRatio", "maxDrawdown"} <= set(result)

    @pytest.mark.asyncio
    async def test_local_evaluator_without_candles(self):
        result = await LocalBacktestEvaluator().run("hold = 5", [], TradingSettings())
        assert result == {"error": "No candles to backtest"}

    @pytest.mark.asyncio
    async def test_remote_evaluator_posts_payload(self, rising_candles):
        session = mock_session(payload={"totalGain": 55.0, "trades": 3})
        evaluator = with_session(RemoteBacktestEvaluator("http://sim"), session)

        result = await evaluator.run("a = 5", rising_candles[:3], TradingSettings())

        assert result["totalGain"] == 55.0
        url = session.post.call_args.args[0]
        body = session.post.call_args.kwargs["json"]
        assert url == "http://sim/api/simulate-bot"
        assert body["code"] == "a = 5"
        assert len(body["candles"]) == 3
        assert body["settings"]["asset"] == "silver"

    @pytest.mark.asyncio
    async def test_remote_evaluator_errors(self):
        evaluator = with_session(RemoteBacktestEvaluator("http://sim"),
                                 mock_session(status=400, payload={"error": "syntax error"}))
        assert await evaluator.run("a = 5", [], TradingSettings()) == {"error": "syntax error"}

        evaluator = with_session(RemoteBacktestEvaluator("http://sim"),
                                 mock_session(error=aiohttp.ClientConnectionError("refused")))
        assert "error" in await evaluator.run("a = 5", [], TradingSettings())

"""
TRADING ENGINE SERVICE
======================
The live multi-timeframe trading simulator.

TradingEngine is a plain context object: it owns its account state, learning
state and latest analysis, and exposes one cycle at a time. It has no timer.
EngineRunner is the scheduler that drives cycles on an asyncio task and
honours a stop event.

One cycle:
    fetch all timeframes in parallel (+ news every Nth cycle)
    -> analyze each timeframe -> blend trends -> stop/target check
    -> score and decide -> open/close/flip -> learn from closed trades
    -> persist -> return the delay before the next cycle
"""
import asyncio
import math
import sqlite3
import time
from typing import Callable, Dict, List, Optional

from config import ENGINE_CONFIG, POLL_INTERVALS, TIMEFRAME_ORDER
from engine.decision_scorer import Decision, DecisionScorer, MarketSpeed, classify_market_speed
from engine.learning_adapter import adjust_learning_weights
from engine.position_manager import PositionManager
from logging_config import log
from models.trade_models import (
    Candle,
    EngineState,
    LearningState,
    PositionType,
    Trade,
    TradingSettings,
    is_valid_price,
)
from mtf_analysis import TimeframeAnalysis, TimeframeAnalyzer, TrendAggregator, TrendSummary


class TradingEngine:
    """
    One independent trading simulator.

    Args:
        settings: Trading settings (asset, active timeframe, sizing, risk)
        candle_source: Object with `async fetch(asset, timeframe) -> List[Candle]`
        news_client: Optional object with `async check(asset) -> str`
        store: Optional EngineDatabase used to persist state after changes
        state / learning: Resume from existing state instead of starting fresh
    """

    def __init__(self, settings: TradingSettings, candle_source, news_client=None,
                 store=None, state: Optional[EngineState] = None,
                 learning: Optional[LearningState] = None, config: Optional[Dict] = None,
                 store_key: str = "default", clock: Callable[[], float] = time.time):
        self.settings = settings
        self.candle_source = candle_source
        self.news_client = news_client
        self.store = store
        self.store_key = store_key
        self.config = config or ENGINE_CONFIG

        self.state = state or EngineState.fresh(settings.initial_capital)
        self.learning = learning or LearningState()
        self.analysis: Dict[str, TimeframeAnalysis] = {}
        self.trend: Optional[TrendSummary] = None
        self.last_decision: Optional[Decision] = None
        self.speed: Optional[MarketSpeed] = None
        self.news_sentiment = 'neutral'
        self.last_price: Optional[float] = None
        self.cycle_count = 0
        self.next_delay: Optional[float] = None

        self.analyzer = TimeframeAnalyzer(swing_lookback=self.config['swing_lookback'])
        self.aggregator = TrendAggregator(
            local_weight=self.config['local_weight'],
            distance_weight=self.config['higher_tf_distance_weight'],
        )
        self.scorer = DecisionScorer(self.config)
        self.positions = PositionManager(self.state, settings, clock)

    @classmethod
    def from_store(cls, store, settings: TradingSettings, candle_source, news_client=None,
                   key: str = "default", **kwargs) -> 'TradingEngine':
        """Resume account and learning state from the store, or start fresh."""
        state = store.load_engine_state(key)
        learning = store.load_learning_state(key)
        if state is not None:
            log(f"[Engine] Resumed: capital {state.capital:.2f}, {len(state.trades)} trades, "
                f"position {'open' if state.position else 'none'}")
        if learning is not None:
            log(f"[Learning] Resumed: score {learning.learning_score:.0f}")
        return cls(settings, candle_source, news_client, store=store, state=state,
                   learning=learning, store_key=key, **kwargs)

    @property
    def timeframes(self) -> List[str]:
        """Configured timeframes plus the active one, shortest first."""
        tfs = set(self.config['timeframes']) | {self.settings.timeframe}
        return sorted(tfs, key=lambda tf: TIMEFRAME_ORDER.index(tf) if tf in TIMEFRAME_ORDER else len(TIMEFRAME_ORDER))

    async def fetch_all(self) -> Dict[str, List[Candle]]:
        """Fetch every timeframe in parallel. Failed or empty ones are left out."""
        timeframes = self.timeframes
        results = await asyncio.gather(
            *[self.candle_source.fetch(self.settings.asset, tf) for tf in timeframes],
            return_exceptions=True,
        )

        candles_by_tf = {}
        for tf, result in zip(timeframes, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                log(f"[Engine] {tf} fetch failed: {result}", level='WARNING')
                continue
            if result:
                candles_by_tf[tf] = result
        return candles_by_tf

    async def run_cycle(self) -> float:
        """
        Run one full cycle.

        Returns:
            Seconds to wait before the next cycle
        """
        self.cycle_count += 1
        candles_by_tf = await self.fetch_all()

        if self.news_client is not None and (
                self.cycle_count == 1 or self.cycle_count % self.config['news_check_every'] == 0):
            self.news_sentiment = await self.news_client.check(self.settings.asset)

        return self.process_cycle(candles_by_tf)

    def process_cycle(self, candles_by_tf: Dict[str, List[Candle]]) -> float:
        """Synchronous part of a cycle: analysis, decision, position changes."""
        current_tf = self.settings.timeframe
        self.analysis = {tf: self.analyzer.analyze(tf, candles) for tf, candles in candles_by_tf.items()}
        self.trend = self.aggregator.aggregate(current_tf, self.analysis)

        speed_source = self.analysis.get('1m') or self.analysis.get(current_tf)
        self.speed = classify_market_speed(speed_source.volatility if speed_source else 0.0)

        current_candles = candles_by_tf.get(current_tf, [])
        price = current_candles[-1].close if current_candles else math.nan
        closes = [c.close for c in current_candles[-50:]]
        if is_valid_price(price):
            self.last_price = price
        else:
            log(f"[Engine] Cycle {self.cycle_count}: no usable {current_tf} price, holding", level='WARNING')

        changed = False
        if self.state.position is not None:
            trade = self.positions.check_stop_loss_take_profit(price)
            if trade is not None:
                self._on_trade_closed(trade)
                changed = True

        decision = self.scorer.decide(
            price=price,
            summary=self.trend,
            analysis=self.analysis.get(current_tf),
            closes=closes,
            news=self.news_sentiment,
            weights=self.learning.weights,
            speed=self.speed,
            position=self.state.position,
            settings=self.settings,
        )
        self.last_decision = decision
        changed = self._apply(decision, price) or changed

        if changed:
            self.persist()

        interval = POLL_INTERVALS.get(current_tf, 60)
        self.next_delay = interval * self.speed.interval_mult
        log(f"[Engine] Cycle {self.cycle_count}: {decision.action.upper()} "
            f"(bull {decision.bull_score:.2f} / bear {decision.bear_score:.2f}, "
            f"conf {decision.confidence:.2f}, {self.speed.label}) next in {self.next_delay:.0f}s",
            level='DEBUG')
        return self.next_delay

    def _apply(self, decision: Decision, price: float) -> bool:
        """Carry out a decision. Returns True when the account changed."""
        if decision.action == 'hold':
            return False

        if decision.action == 'close':
            trade = self.positions.close(price, decision.reasons[0] if decision.reasons else "Low confidence")
            if trade is not None:
                self._on_trade_closed(trade)
            return trade is not None

        wanted = decision.position_type
        changed = False
        position = self.state.position
        if position is not None and position.type is not wanted:
            trade = self.positions.close(price, "Signal reversed")
            if trade is None:
                return False
            self._on_trade_closed(trade)
            changed = True
            # Flip only when the reverse also passes the open rules
            if decision.open_action != decision.action:
                return changed

        if self.state.position is None:
            side = 'bull' if wanted is PositionType.LONG else 'bear'
            opened = self.positions.open(
                wanted,
                price,
                confidence=decision.confidence,
                reasons=decision.reasons,
                contributions=[c for c in decision.contributions if c.side == side],
            )
            changed = changed or opened is not None
        return changed

    def _on_trade_closed(self, trade: Trade):
        adjust_learning_weights(self.learning, trade)

    def close_position(self, reason: str = "Stopped") -> Optional[Trade]:
        """Force-close any open position at the last known price."""
        position = self.state.position
        if position is None:
            return None
        price = self.last_price if self.last_price is not None else position.entry_price
        trade = self.positions.close(price, reason)
        if trade is not None:
            self._on_trade_closed(trade)
            self.persist()
        return trade

    def persist(self):
        if self.store is None:
            return
        try:
            self.store.save_engine_state(self.state, self.store_key)
            self.store.save_learning_state(self.learning, self.store_key)
        except sqlite3.Error as e:
            log(f"[Engine] Failed to persist state: {e}", level='ERROR')

    def status(self) -> Dict:
        state = self.state
        price = self.last_price
        return {
            "asset": self.settings.asset,
            "timeframe": self.settings.timeframe,
            "cycleCount": self.cycle_count,
            "capital": round(state.capital, 2),
            "startingCapital": state.starting_capital,
            "pnl": round(state.pnl, 2),
            "wins": state.wins,
            "losses": state.losses,
            "winRate": round(state.win_rate, 2),
            "position": state.position.to_dict() if state.position else None,
            "unrealizedPnl": round(self.positions.unrealized_pnl(price), 2) if price else 0.0,
            "lastPrice": price,
            "lastDecision": self.last_decision.to_dict() if self.last_decision else None,
            "trend": self.trend.to_dict() if self.trend else None,
            "analysis": {tf: a.to_dict() for tf, a in self.analysis.items()},
            "marketSpeed": self.speed.label if self.speed else None,
            "newsSentiment": self.news_sentiment,
            "nextDelay": self.next_delay,
            "learning": self.learning.to_dict(),
            "trades": [t.to_dict() for t in state.trades[-50:]],
        }


class EngineRunner:
    """
    Drives a TradingEngine on an asyncio task.

    Each cycle is awaited before the next sleep, so cycles never overlap. The
    sleep length is whatever the cycle returned. stop() wakes the sleep,
    cancels the task and force-closes any open position.
    """

    def __init__(self, engine: TradingEngine,
                 error_retry_interval: float = ENGINE_CONFIG['error_retry_interval']):
        self.engine = engine
        self.error_retry_interval = error_retry_interval
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            raise RuntimeError("Engine is already running")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        return self._task

    async def _loop(self):
        engine = self.engine
        log(f"[Runner] Started {engine.settings.asset} on {engine.settings.timeframe}")
        while not self._stop_event.is_set():
            try:
                delay = await engine.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log(f"[Runner] Cycle {engine.cycle_count} crashed: {e}", level='ERROR')
                delay = self.error_retry_interval

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> Optional[Trade]:
        """
        Stop the loop and flatten.

        Returns:
            The trade closed with reason "Stopped", if a position was open
        """
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        trade = self.engine.close_position("Stopped")
        self.engine.persist()
        log(f"[Runner] Stopped after {self.engine.cycle_count} cycles")
        return trade

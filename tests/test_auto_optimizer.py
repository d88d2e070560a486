"""
Tests for the Auto Optimizer
============================
Random search over detected variables, scoring, ranking and failure handling.
"""
import pytest
import asyncio
from unittest.mock import AsyncMock, MagicMock
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from engine.parameter_extractor import detect_variables
from models.trade_models import TradingSettings
from services.auto_optimizer import AutoOptimizer, score_result, snap_to_step


def optimizer_for(evaluator, **kwargs):
    kwargs.setdefault("iteration_delay", 0)
    return AutoOptimizer(evaluator, **kwargs)


class TestScoreResult:

    RESULT = {"totalGain": 300.0, "winRate": 60.0, "gainLossRatio": 2.5, "maxDrawdown": 150.0}

    @pytest.mark.parametrize("metric,expected", [
        ("totalGain", 300.0),
        ("winRate", 60.0),
        ("gainLossRatio", 2.5),
        ("sharpe", 2.0),
    ])
    def test_metrics(self, metric, expected):
        assert score_result(self.RESULT, metric) == pytest.approx(expected)

    def test_pnl_fallback(self):
        assert score_result({"pnl": 42.0}, "totalGain") == 42.0

    def test_small_drawdown_floor(self):
        assert score_result({"totalGain": 50.0, "maxDrawdown": 0.2}, "sharpe") == 50.0

    def test_unknown_metric(self):
        with pytest.raises(ValueError):
            score_result(self.RESULT, "profitFactor")


class TestSnapToStep:

    def test_snaps_and_clamps(self):
        var = detect_variables("fast = 9")[0]  # range 1.8 .. 27, step 0.1
        assert snap_to_step(12.34, var) == pytest.approx(12.3)
        assert snap_to_step(99.0, var) == var.max
        assert snap_to_step(0.0, var) == var.min


class TestAutoOptimizer:

    @pytest.mark.asyncio
    async def test_results_sorted_best_first(self, sample_strategy_code):
        variables = detect_variables(sample_strategy_code)
        gains = iter([50.0, 300.0, -20.0, 120.0, 300.0, 10.0])

        async def evaluate(code, candles, settings):
            return {"totalGain": next(gains)}

        evaluator = MagicMock()
        evaluator.run = AsyncMock(side_effect=evaluate)
        optimizer = optimizer_for(evaluator, iterations=6, top_n=4, seed=1)

        results = await optimizer.run(sample_strategy_code, variables, [], TradingSettings())

        assert [c.score for c in results] == [300.0, 300.0, 120.0, 50.0]
        assert all(results[0].score >= c.score for c in results)
        assert evaluator.run.await_count == 6
        assert optimizer.running is False

    @pytest.mark.asyncio
    async def test_ties_keep_discovery_order(self, sample_strategy_code, mock_evaluator):
        variables = detect_variables(sample_strategy_code)
        optimizer = optimizer_for(mock_evaluator, iterations=3, seed=3)
        seen = []

        async def evaluate(code, candles, settings):
            seen.append(code)
            return {"totalGain": 1.0}

        mock_evaluator.run.side_effect = evaluate
        results = await optimizer.run(sample_strategy_code, variables, [], TradingSettings())

        assert len(results) == 3
        for candidate, code in zip(results, seen):
            period = next(v["value"] for v in candidate.variables if v["name"] == "period")
            assert f"period = {int(period)}" in code

    @pytest.mark.asyncio
    async def test_sampled_values_respect_ranges(self, sample_strategy_code, mock_evaluator):
        variables = detect_variables(sample_strategy_code)
        by_name = {v.name: v for v in variables}
        optimizer = optimizer_for(mock_evaluator, iterations=15, seed=7)

        results = await optimizer.run(sample_strategy_code, variables, [], TradingSettings())

        for candidate in results:
            for item in candidate.variables:
                var = by_name[item["name"]]
                assert var.min <= item["value"] <= var.max
                steps = (item["value"] - var.min) / var.step
                if var.include_in_optimization and var.min % var.step == 0:
                    assert abs(steps - round(steps)) < 1e-6
            start_hour = next(v for v in candidate.variables if v["name"] == "startHour")
            assert start_hour["value"] == by_name["startHour"].original_value

    @pytest.mark.asyncio
    async def test_input_variables_not_mutated(self, sample_strategy_code, mock_evaluator):
        variables = detect_variables(sample_strategy_code)
        before = [v.current_value for v in variables]
        await optimizer_for(mock_evaluator, iterations=5, seed=2).run(
            sample_strategy_code, variables, [], TradingSettings())
        assert [v.current_value for v in variables] == before

    @pytest.mark.asyncio
    async def test_failed_iterations_skipped(self, sample_strategy_code):
        variables = detect_variables(sample_strategy_code)
        outcomes = iter([
            {"error": "Simulator unreachable"},
            RuntimeError("boom"),
            {"totalGain": 80.0},
            "not a dict",
            {"totalGain": float("nan")},
        ])

        async def evaluate(code, candles, settings):
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        evaluator = MagicMock()
        evaluator.run = AsyncMock(side_effect=evaluate)
        optimizer = optimizer_for(evaluator, iterations=5, seed=4)

        results = await optimizer.run(sample_strategy_code, variables, [], TradingSettings())

        assert len(results) == 1
        assert results[0].score == 80.0
        assert optimizer.failed == 4
        assert optimizer.iteration == 5

    @pytest.mark.asyncio
    async def test_same_seed_same_samples(self, sample_strategy_code, mock_evaluator):
        variables = detect_variables(sample_strategy_code)
        first = await optimizer_for(mock_evaluator, iterations=4, seed=11).run(
            sample_strategy_code, variables, [], TradingSettings())
        second = await optimizer_for(mock_evaluator, iterations=4, seed=11).run(
            sample_strategy_code, variables, [], TradingSettings())
        assert [c.variables for c in first] == [c.variables for c in second]

    @pytest.mark.asyncio
    async def test_stop_between_iterations(self, sample_strategy_code, mock_evaluator):
        variables = detect_variables(sample_strategy_code)
        progress = []
        optimizer = None

        def on_progress(iteration, total, best):
            progress.append((iteration, total, best))
            if iteration == 2:
                optimizer.stop()

        optimizer = optimizer_for(mock_evaluator, iterations=10, seed=5, progress_callback=on_progress)
        results = await optimizer.run(sample_strategy_code, variables, [], TradingSettings())

        assert optimizer.iteration == 2
        assert len(results) == 2
        assert progress == [(1, 10, 120.0), (2, 10, 120.0)]

    @pytest.mark.asyncio
    async def test_progress_callback_errors_ignored(self, sample_strategy_code, mock_evaluator):
        variables = detect_variables(sample_strategy_code)

        def broken(iteration, total, best):
            raise RuntimeError("ui went away")

        optimizer = optimizer_for(mock_evaluator, iterations=2, progress_callback=broken)
        results = await optimizer.run(sample_strategy_code, variables, [], TradingSettings())
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_cancel_stops_run(self, sample_strategy_code):
        variables = detect_variables(sample_strategy_code)
        evaluator = MagicMock()

        async def slow(code, candles, settings):
            await asyncio.sleep(10)
            return {"totalGain": 1.0}

        evaluator.run = AsyncMock(side_effect=slow)
        optimizer = optimizer_for(evaluator, iterations=3)
        task = asyncio.create_task(optimizer.run(sample_strategy_code, variables, [], TradingSettings()))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert optimizer.running is False
        assert optimizer.results == []

    def test_unknown_metric_rejected(self, mock_evaluator):
        with pytest.raises(ValueError):
            AutoOptimizer(mock_evaluator, metric="profitFactor")

    def test_status_shape(self, mock_evaluator):
        status = optimizer_for(mock_evaluator, iterations=3).status()
        assert status == {
            "running": False,
            "iteration": 0,
            "total": 3,
            "failed": 0,
            "metric": "totalGain",
            "bestScore": None,
            "results": [],
        }

"""
AUTO OPTIMIZER SERVICE
======================
Randomized search over detected strategy variables.

Each iteration draws a value for every variable included in optimization
(uniform over [min, max], snapped to the nearest step), writes the values
into the strategy text, asks the backtest evaluator for a result and scores
it. Failed iterations are logged and dropped. Candidates come back sorted
best-first (stable for ties), trimmed to top_n.

Sampling goes through an optuna study with a RandomSampler so every trial,
including failures, is recorded in one place.
"""
import asyncio
import copy
import math
from typing import Callable, Dict, List, Optional, Sequence

import optuna
from optuna.samplers import RandomSampler
from optuna.trial import TrialState

from config import OPTIMIZER_CONFIG
from engine.parameter_extractor import apply_variables_to_code, decimal_places
from logging_config import log
from models.trade_models import Candle, DetectedVariable, OptimizationCandidate, TradingSettings

ProgressCallback = Callable[[int, int, Optional[float]], None]


def score_result(result: Dict, metric: str) -> float:
    """
    Score a simulator result by metric.

    totalGain      -> totalGain (or pnl)
    winRate        -> winRate (percent)
    gainLossRatio  -> gainLossRatio
    sharpe         -> totalGain / max(1, |maxDrawdown|)
    """
    total_gain = float(result.get("totalGain", result.get("pnl", 0)) or 0)

    if metric == "totalGain":
        return total_gain
    if metric == "winRate":
        return float(result.get("winRate", 0) or 0)
    if metric == "gainLossRatio":
        return float(result.get("gainLossRatio", 0) or 0)
    if metric == "sharpe":
        drawdown = abs(float(result.get("maxDrawdown", 0) or 0))
        return total_gain / max(1.0, drawdown)
    raise ValueError(f"Unknown optimization metric: {metric}")


def snap_to_step(value: float, var: DetectedVariable) -> float:
    """Round to the nearest multiple of step, then clamp to [min, max]."""
    snapped = round(value / var.step) * var.step
    snapped = min(var.max, max(var.min, snapped))
    return round(snapped, decimal_places(var.step) + 2)


class AutoOptimizer:
    """
    Sequential random-search optimizer.

    One run at a time; `stop()` is checked between iterations.
    """

    def __init__(self, evaluator, iterations: int = OPTIMIZER_CONFIG["iterations"],
                 metric: str = OPTIMIZER_CONFIG["metric"],
                 top_n: int = OPTIMIZER_CONFIG["top_n"],
                 iteration_delay: float = OPTIMIZER_CONFIG["iteration_delay"],
                 seed: Optional[int] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        if metric not in OPTIMIZER_CONFIG["metrics"]:
            raise ValueError(f"Unknown optimization metric: {metric}")
        self.evaluator = evaluator
        self.iterations = max(1, int(iterations))
        self.metric = metric
        self.top_n = top_n
        self.iteration_delay = iteration_delay
        self.seed = seed
        self.progress_callback = progress_callback

        self.results: List[OptimizationCandidate] = []
        self.iteration = 0
        self.failed = 0
        self.running = False
        self._stop_requested = False

    def stop(self):
        """Ask the running loop to finish after the current iteration."""
        self._stop_requested = True

    def sample_variables(self, trial: optuna.Trial,
                         variables: Sequence[DetectedVariable]) -> List[DetectedVariable]:
        """Copies of variables with sampled current values; excluded ones keep theirs."""
        sampled = []
        for var in variables:
            candidate = copy.copy(var)
            if var.include_in_optimization:
                raw = trial.suggest_float(var.name, var.min, var.max)
                candidate.current_value = snap_to_step(raw, var)
            sampled.append(candidate)
        return sampled

    def status(self) -> Dict:
        best = self.results[0].score if self.results else None
        return {
            "running": self.running,
            "iteration": self.iteration,
            "total": self.iterations,
            "failed": self.failed,
            "metric": self.metric,
            "bestScore": best,
            "results": [c.to_dict() for c in self.results],
        }

    def _report_progress(self, best_score: Optional[float]):
        if not self.progress_callback:
            return
        try:
            self.progress_callback(self.iteration, self.iterations, best_score)
        except Exception as e:
            log(f"[Optimizer] Progress callback error: {e}", level='WARNING')

    async def run(self, strategy_text: str, variables: Sequence[DetectedVariable],
                  candles: Sequence[Candle], settings: TradingSettings) -> List[OptimizationCandidate]:
        """
        Run the search.

        Args:
            strategy_text: Strategy source with the original literal values
            variables: Snapshot of detected variables (not mutated)
            candles: Price window handed to the evaluator
            settings: Trading settings handed to the evaluator

        Returns:
            Top candidates, best first
        """
        optuna.logging.set_verbosity(optuna.logging.WARNING)
        study = optuna.create_study(direction="maximize", sampler=RandomSampler(seed=self.seed))

        self.results = []
        self.iteration = 0
        self.failed = 0
        self.running = True
        self._stop_requested = False
        candidates: List[OptimizationCandidate] = []
        included = sum(1 for v in variables if v.include_in_optimization)

        log(f"[Optimizer] Starting {self.iterations} iterations over {included}/{len(variables)} "
            f"variables (metric={self.metric})")

        try:
            for iteration in range(1, self.iterations + 1):
                if self._stop_requested:
                    log(f"[Optimizer] Stopped after {self.iteration} iterations")
                    break
                self.iteration = iteration

                trial = study.ask()
                sampled = self.sample_variables(trial, variables)
                code = apply_variables_to_code(strategy_text, sampled)

                try:
                    result = await self.evaluator.run(code, candles, settings)
                    if not isinstance(result, dict):
                        raise ValueError("evaluator returned a non-dict result")
                    if result.get("error"):
                        raise RuntimeError(result["error"])
                    score = score_result(result, self.metric)
                    if not math.isfinite(score):
                        raise ValueError(f"non-finite score {score}")
                except asyncio.CancelledError:
                    study.tell(trial, state=TrialState.FAIL)
                    raise
                except Exception as e:
                    self.failed += 1
                    study.tell(trial, state=TrialState.FAIL)
                    log(f"[Optimizer] Iteration {iteration}/{self.iterations} skipped: {e}", level='WARNING')
                else:
                    study.tell(trial, score)
                    candidates.append(OptimizationCandidate(
                        variables=[{"name": v.name, "value": v.current_value} for v in sampled],
                        result=result,
                        score=score,
                        metric=self.metric,
                    ))
                    log(f"[Optimizer] Iteration {iteration}/{self.iterations}: "
                        f"{self.metric}={score:.4f}", level='DEBUG')

                best = max((c.score for c in candidates), default=None)
                self._report_progress(best)

                if self.iteration_delay > 0 and iteration < self.iterations:
                    await asyncio.sleep(self.iteration_delay)
        finally:
            # sorted() is stable: equal scores keep discovery order
            self.results = sorted(candidates, key=lambda c: c.score, reverse=True)[:self.top_n]
            self.running = False

        if self.results:
            log(f"[Optimizer] Done: {len(candidates)} scored, {self.failed} failed, "
                f"best {self.metric}={self.results[0].score:.4f}")
        else:
            log(f"[Optimizer] Done: no successful iterations ({self.failed} failed)", level='WARNING')
        return self.results

"""
OPTIMIZER ROUTES
================
API endpoints for auto-optimization runs over the detected variables.
"""
import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import OPTIMIZER_CONFIG
from logging_config import log
from services.auto_optimizer import AutoOptimizer
from services.candle_source import generate_synthetic_candles
from state import app_state, variable_registry

router = APIRouter(prefix="/api/optimizer", tags=["optimizer"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class OptimizerRunRequest(BaseModel):
    """
    Request model for an optimization run.

    Accepts both snake_case and camelCase parameter names for frontend compatibility.
    Settings not given fall back to the current application settings.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    iterations: int = Field(default=OPTIMIZER_CONFIG["iterations"], ge=1, le=10000)
    metric: str = Field(default=OPTIMIZER_CONFIG["metric"])
    seed: Optional[int] = None
    top_n: int = Field(default=OPTIMIZER_CONFIG["top_n"], ge=1, le=100, alias="topN")
    settings: Optional[Dict[str, Any]] = None

    @field_validator("metric")
    @classmethod
    def validate_metric(cls, v: str) -> str:
        if v not in OPTIMIZER_CONFIG["metrics"]:
            raise ValueError(f"Invalid metric '{v}'. Must be one of: {', '.join(OPTIMIZER_CONFIG['metrics'])}")
        return v


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/run")
async def run_optimizer(request: OptimizerRunRequest):
    """Start an optimization run in the background."""
    if app_state.is_optimizer_running():
        raise HTTPException(status_code=409, detail="Optimizer is already running")

    code = variable_registry.code
    variables = variable_registry.snapshot()
    if not code or not variables:
        raise HTTPException(status_code=400, detail="No strategy variables detected")
    if not any(v.include_in_optimization for v in variables):
        raise HTTPException(status_code=400, detail="No variables are included in optimization")
    if app_state.evaluator is None:
        raise HTTPException(status_code=500, detail="Backtest evaluator not initialized")

    # Claimed before the first await so concurrent requests cannot both start
    if not app_state.try_begin_optimizer(
        iteration=0,
        total=request.iterations,
        bestScore=None,
        metric=request.metric,
        message="Loading candles...",
    ):
        raise HTTPException(status_code=409, detail="Optimizer is already running")

    try:
        settings = app_state.update_settings(request.settings or {})
        source = app_state.candle_source
        if source is not None:
            candles = await source.fetch_or_synthetic(settings.asset, settings.timeframe)
        else:
            candles = generate_synthetic_candles(settings.asset, 100, timeframe=settings.timeframe)
    except BaseException as e:
        app_state.update_optimizer_status(running=False, message=f"Error: {e}")
        raise

    def on_progress(iteration: int, total: int, best_score: Optional[float]):
        app_state.update_optimizer_status(
            iteration=iteration,
            total=total,
            bestScore=best_score,
            message=f"Iteration {iteration}/{total}",
        )

    optimizer = AutoOptimizer(
        app_state.evaluator,
        iterations=request.iterations,
        metric=request.metric,
        top_n=request.top_n,
        seed=request.seed,
        progress_callback=on_progress,
    )

    async def run_with_error_handling():
        try:
            results = await optimizer.run(code, variables, candles, settings)
            app_state.update_optimizer_status(
                running=False,
                message=f"Complete: {len(results)} candidates",
                bestScore=results[0].score if results else None,
            )
        except asyncio.CancelledError:
            app_state.update_optimizer_status(running=False, message="Cancelled")
            raise
        except Exception as e:
            log(f"[Optimizer] Run CRASHED: {e}", level='ERROR')
            app_state.update_optimizer_status(running=False, message=f"Error: {e}")

    app_state.update_optimizer_status(message="Starting...")
    task = asyncio.create_task(run_with_error_handling())
    app_state.set_optimizer(optimizer, task)

    return {
        "status": "started",
        "iterations": request.iterations,
        "metric": request.metric,
        "candles": len(candles),
    }


@router.get("/status")
async def get_optimizer_status():
    status = app_state.get_optimizer_status()
    optimizer = app_state.get_optimizer()
    if optimizer is not None:
        status["results"] = [c.to_dict() for c in optimizer.results]
        status["failed"] = optimizer.failed
    else:
        status["results"] = []
    return status


@router.post("/stop")
async def stop_optimizer():
    optimizer = app_state.get_optimizer()
    if optimizer is None or not app_state.is_optimizer_running():
        raise HTTPException(status_code=409, detail="Optimizer is not running")
    optimizer.stop()
    app_state.update_optimizer_status(message="Stopping...")
    return {"status": "stopping"}


@router.post("/apply/{index}")
async def apply_result(index: int):
    """Copy a ranked candidate's values into the shared variables."""
    optimizer = app_state.get_optimizer()
    results = optimizer.results if optimizer is not None else []
    if index < 0 or index >= len(results):
        raise HTTPException(status_code=404, detail=f"No optimization result at index {index}")

    candidate = results[index]
    applied = variable_registry.apply_values(candidate.variables)
    log(f"[API] Applied optimizer result #{index} ({applied} variables, score {candidate.score:.4f})")
    return {
        "applied": applied,
        "score": candidate.score,
        "code": variable_registry.render(),
        "variables": [v.to_dict() for v in variable_registry.snapshot()],
    }

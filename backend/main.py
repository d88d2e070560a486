"""
AI Trading Engine - Main FastAPI Application
============================================
Entry point for the application.

Business logic lives in separate modules:
- config.py: Configuration constants
- state.py: Thread-safe state management
- api/: API route handlers
- services/: Collaborator clients, live engine, auto optimizer
- engine/: Scoring, positions, learning, variable detection, cycle backtests
- models/: Data classes

This file is only responsible for:
1. Initializing the FastAPI app
2. Registering routes
3. Managing application lifecycle (collaborator clients, shutdown)
"""
import asyncio
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import (
    BACKTEST_EVALUATOR,
    DATA_DIR,
    MARKET_DATA_URL,
    NEWS_URL,
    REQUEST_TIMEOUT,
    SIMULATOR_URL,
)
from state import app_state
from logging_config import log, UVICORN_LOG_CONFIG

from services.candle_source import CandleCache, CandleSource
from services.news_sentiment import NewsSentimentClient
from services.backtest_evaluator import LocalBacktestEvaluator, RemoteBacktestEvaluator

# API routes
from api import register_routes

log("[Startup] AI Trading Engine v1.0.0")


def create_evaluator(kind: str = BACKTEST_EVALUATOR):
    """Backtest evaluator for the optimizer and manual runs."""
    if kind == "remote":
        return RemoteBacktestEvaluator(SIMULATOR_URL, REQUEST_TIMEOUT)
    if kind != "local":
        log(f"[Startup] Unknown BACKTEST_EVALUATOR '{kind}', using local", level='WARNING')
    return LocalBacktestEvaluator()


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

async def shutdown_services():
    """Stop the engine and optimizer, then close HTTP sessions."""
    runner = app_state.get_runner()
    if runner is not None and runner.running:
        try:
            await runner.stop()
        except Exception as e:
            log(f"[Shutdown] Engine stop failed: {e}", level='WARNING')

    optimizer = app_state.get_optimizer()
    if optimizer is not None and app_state.is_optimizer_running():
        optimizer.stop()
        task = app_state.optimizer_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    for client in (app_state.candle_source, app_state.news_client, app_state.evaluator):
        close = getattr(client, "close", None)
        if close is not None:
            await close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    log("[Startup] Application starting...")
    DATA_DIR.mkdir(parents=True, exist_ok=True)

    app_state.candle_source = CandleSource(MARKET_DATA_URL, CandleCache(), REQUEST_TIMEOUT)
    app_state.news_client = NewsSentimentClient(NEWS_URL, REQUEST_TIMEOUT)
    app_state.evaluator = create_evaluator()
    log(f"[Startup] Market data: {MARKET_DATA_URL}, news: {NEWS_URL}, "
        f"evaluator: {type(app_state.evaluator).__name__}")

    yield

    log("[Shutdown] Application shutting down...")
    await shutdown_services()


# =============================================================================
# FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="AI Trading Engine",
    version="1.0.0",
    description="Multi-timeframe trading simulator with online learning and strategy variable optimization",
    lifespan=lifespan
)

# Register all API routes
register_routes(app)


# =============================================================================
# UTILITY ENDPOINTS
# =============================================================================

@app.get("/api/ping")
async def ping():
    """Simple ping endpoint for health checks."""
    return {"pong": True, "timestamp": datetime.now().isoformat()}


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8080,
        log_config=UVICORN_LOG_CONFIG
    )

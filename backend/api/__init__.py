"""
API ROUTES PACKAGE
==================
Modular API route definitions for the AI Trading Engine.
"""
from .data_routes import router as data_router
from .variable_routes import router as variable_router
from .optimizer_routes import router as optimizer_router
from .backtest_routes import router as backtest_router
from .engine_routes import router as engine_router


def register_routes(app):
    """Register all API routes with the FastAPI app."""
    app.include_router(data_router)
    app.include_router(variable_router)
    app.include_router(optimizer_router)
    app.include_router(backtest_router)
    app.include_router(engine_router)


__all__ = [
    'data_router',
    'variable_router',
    'optimizer_router',
    'backtest_router',
    'engine_router',
    'register_routes',
]

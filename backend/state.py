"""
STATE MANAGEMENT MODULE
=======================
Thread-safe shared state for the AI Trading Engine.

The detected strategy variables are shared between the HTTP layer, the
optimizer and the live engine, so every read and write goes through
VariableRegistry's lock. Readers always get copies.
"""
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import copy

from engine.parameter_extractor import apply_variables_to_code, detect_variables
from models.trade_models import DetectedVariable, TradingSettings


class VariableRegistry:
    """
    Owns the current strategy text and its detected variables.

    Values are clamped to each variable's range on every write, so the
    min <= current_value <= max invariant holds for anything handed out.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._code = ""
        self._variables: List[DetectedVariable] = []

    def load_code(self, code: str) -> List[DetectedVariable]:
        """Replace the strategy text and re-detect its variables."""
        variables = detect_variables(code)
        with self._lock:
            self._code = code or ""
            self._variables = variables
            return copy.deepcopy(self._variables)

    @property
    def code(self) -> str:
        with self._lock:
            return self._code

    def snapshot(self) -> List[DetectedVariable]:
        """Deep copy of all variables."""
        with self._lock:
            return copy.deepcopy(self._variables)

    def get(self, name: str) -> Optional[DetectedVariable]:
        with self._lock:
            for var in self._variables:
                if var.name == name:
                    return copy.deepcopy(var)
            return None

    def update(self, name: str, current_value: Optional[float] = None,
               include_in_optimization: Optional[bool] = None) -> Optional[DetectedVariable]:
        """Change one variable. Returns the updated copy, or None if unknown."""
        with self._lock:
            for var in self._variables:
                if var.name == name:
                    if current_value is not None:
                        var.set_value(current_value)
                    if include_in_optimization is not None:
                        var.include_in_optimization = bool(include_in_optimization)
                    return copy.deepcopy(var)
            return None

    def apply_values(self, values: List[Dict]) -> int:
        """Set current values from [{name, value}] (e.g. an optimizer candidate)."""
        applied = 0
        with self._lock:
            by_name = {var.name: var for var in self._variables}
            for item in values:
                var = by_name.get(item.get("name"))
                if var is not None and item.get("value") is not None:
                    var.set_value(item["value"])
                    applied += 1
        return applied

    def render(self) -> str:
        """Strategy text with current values written in."""
        with self._lock:
            return apply_variables_to_code(self._code, self._variables)

    def clear(self):
        with self._lock:
            self._code = ""
            self._variables = []


@dataclass
class AppState:
    """
    Centralized application state with thread-safe access.
    All state modifications should go through this class.
    """
    _lock: threading.RLock = field(default_factory=threading.RLock)

    settings: TradingSettings = field(default_factory=TradingSettings)

    # Collaborator clients, created in main.lifespan
    candle_source: Any = None
    news_client: Any = None
    evaluator: Any = None

    # Live engine runner (services.trading_engine.EngineRunner)
    runner: Any = None

    # Current or last optimizer (services.auto_optimizer.AutoOptimizer)
    optimizer: Any = None
    optimizer_task: Any = None

    # Last optimizer run summary
    optimizer_status: Dict = field(default_factory=lambda: {
        "running": False,
        "iteration": 0,
        "total": 0,
        "bestScore": None,
        "message": "Idle",
    })

    # ==========================================================================
    # SETTINGS
    # ==========================================================================

    def get_settings(self) -> TradingSettings:
        with self._lock:
            return copy.deepcopy(self.settings)

    def update_settings(self, raw: Dict) -> TradingSettings:
        """Merge camelCase/snake_case overrides into the current settings."""
        with self._lock:
            merged = {**self.settings.to_dict(), **(raw or {})}
            self.settings = TradingSettings.from_dict(merged)
            return copy.deepcopy(self.settings)

    # ==========================================================================
    # ENGINE RUNNER
    # ==========================================================================

    def set_runner(self, runner: Any) -> None:
        with self._lock:
            self.runner = runner

    def get_runner(self) -> Any:
        with self._lock:
            return self.runner

    def is_engine_running(self) -> bool:
        with self._lock:
            return self.runner is not None and self.runner.running

    # ==========================================================================
    # OPTIMIZER
    # ==========================================================================

    def set_optimizer(self, optimizer: Any, task: Any = None) -> None:
        with self._lock:
            self.optimizer = optimizer
            self.optimizer_task = task

    def get_optimizer(self) -> Any:
        with self._lock:
            return self.optimizer

    def is_optimizer_running(self) -> bool:
        with self._lock:
            return self.optimizer_status.get("running", False)

    def try_begin_optimizer(self, **status) -> bool:
        """Claim the optimizer slot. False if a run is already active."""
        with self._lock:
            if self.optimizer_status.get("running", False):
                return False
            self.optimizer_status.update(status, running=True)
            return True

    def update_optimizer_status(self, **kwargs) -> None:
        """Thread-safe update of optimizer status."""
        with self._lock:
            self.optimizer_status.update(kwargs)

    def get_optimizer_status(self) -> Dict:
        """Thread-safe get of optimizer status."""
        with self._lock:
            return copy.deepcopy(self.optimizer_status)


# =============================================================================
# GLOBAL STATE INSTANCES
# =============================================================================

app_state = AppState()
variable_registry = VariableRegistry()

"""
VARIABLE ROUTES
===============
Detect, inspect and edit the tunable variables of the current strategy text.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from logging_config import log
from state import variable_registry

router = APIRouter(prefix="/api/variables", tags=["variables"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class DetectRequest(BaseModel):
    code: str = Field(..., description="Strategy source text")


class VariableUpdateRequest(BaseModel):
    """Accepts both snake_case and camelCase field names."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    current_value: Optional[float] = Field(default=None, alias="currentValue")
    include_in_optimization: Optional[bool] = Field(default=None, alias="includeInOptimization")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/detect")
async def detect(request: DetectRequest):
    """Load strategy text and detect its variables."""
    if not request.code.strip():
        raise HTTPException(status_code=400, detail="Strategy code is empty")
    variables = variable_registry.load_code(request.code)
    log(f"[API] Detected {len(variables)} variables")
    return {"count": len(variables), "variables": [v.to_dict() for v in variables]}


@router.get("")
async def list_variables():
    variables = variable_registry.snapshot()
    return {
        "count": len(variables),
        "variables": [v.to_dict() for v in variables],
        "code": variable_registry.code,
    }


@router.patch("/{name}")
async def update_variable(name: str, request: VariableUpdateRequest):
    """Set a variable's value (clamped to its range) or toggle optimization."""
    updated = variable_registry.update(
        name,
        current_value=request.current_value,
        include_in_optimization=request.include_in_optimization,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Unknown variable '{name}'")
    return updated.to_dict()


@router.post("/apply")
async def apply_variables():
    """Strategy text with the current variable values written in."""
    if not variable_registry.code:
        raise HTTPException(status_code=400, detail="No strategy code loaded")
    return {"code": variable_registry.render()}

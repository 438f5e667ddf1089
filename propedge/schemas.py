"""
Pydantic request/response schemas for the PropEdge API.
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Component = Literal["edge", "parlays", "outcomes", "calibration"]

_ACTIONS: Dict[str, tuple] = {
    "edge": ("analyze", "analyze_auto", "get_picks"),
    "parlays": ("generate_parlays", "get_picks"),
    "outcomes": ("verify_outcomes",),
    "calibration": ("recalibrate", "get_metrics"),
}


class ActionRequest(BaseModel):
    """Payload for POST /api/{component}."""

    action: str = Field(..., min_length=1, max_length=40, description='e.g. "analyze"')
    params: Dict[str, Any] = Field(default_factory=dict, description="Action-specific parameters")

    @field_validator("action")
    @classmethod
    def normalize_action(cls, v: str) -> str:
        return v.strip().lower()


def is_known_action(component: str, action: str) -> bool:
    return action in _ACTIONS.get(component, ())


class ActionResponse(BaseModel):
    """Summary returned by every action; extra keys are action-specific."""

    model_config = ConfigDict(extra="allow")

    status: str
    timestamp: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    database: str
    version: str

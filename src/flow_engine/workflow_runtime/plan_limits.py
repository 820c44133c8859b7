"""
Plan Limits - Plan tier -> allowed subtypes, max nodes, max depth.

Loaded from YAML so limits change without a code change. The packaged
table lives next to this module; a deployment can point
``FLOW_ENGINE_PLAN_LIMITS_PATH`` at its own file.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from flow_engine.config import get_settings


DEFAULT_PLAN_LIMITS_PATH = Path(__file__).parent / "plan_limits.yaml"
ALL_SUBTYPES = "*"


class PlanLimitsLoadError(Exception):
    """Raised when the plan limits file is missing or invalid."""
    pass


class PlanLimit(BaseModel):
    """Limits for one plan tier."""
    model_config = ConfigDict(frozen=True)

    max_nodes: int = Field(..., gt=0)
    max_depth: int = Field(..., gt=0)
    allowed_subtypes: List[str] = Field(default_factory=list)

    @field_validator("allowed_subtypes", mode="before")
    @classmethod
    def upper_subtypes(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [str(s).strip().upper() for s in v]
        return v

    def allows(self, sub_type: str) -> bool:
        return ALL_SUBTYPES in self.allowed_subtypes or sub_type.upper() in self.allowed_subtypes


class PlanLimits(BaseModel):
    """The full plan table."""
    model_config = ConfigDict(frozen=True)

    plans: Dict[str, PlanLimit] = Field(default_factory=dict)

    @field_validator("plans", mode="before")
    @classmethod
    def upper_plan_names(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k).strip().upper(): limit for k, limit in v.items()}
        return v

    def get(self, plan: Optional[str]) -> Optional[PlanLimit]:
        if not plan:
            return None
        return self.plans.get(plan.strip().upper())

    @property
    def plan_names(self) -> List[str]:
        return list(self.plans.keys())


def load_plan_limits(path: Optional[Path] = None) -> PlanLimits:
    """
    Load the plan table from YAML.

    Args:
        path: YAML file (defaults to the packaged table)

    Raises:
        PlanLimitsLoadError: If the file is missing or invalid
    """
    path = Path(path) if path is not None else DEFAULT_PLAN_LIMITS_PATH
    if not path.exists():
        raise PlanLimitsLoadError(f"Plan limits file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise PlanLimitsLoadError(f"Invalid YAML in {path}: {e}")

    if not isinstance(data, dict) or "plans" not in data:
        raise PlanLimitsLoadError(f"{path}: expected a top-level 'plans' mapping")

    try:
        return PlanLimits.model_validate(data)
    except ValidationError as e:
        raise PlanLimitsLoadError(f"Invalid plan limits in {path}: {e}")


# Global plan table
_plan_limits: Optional[PlanLimits] = None
_plan_limits_lock = threading.Lock()


def get_plan_limits() -> PlanLimits:
    """Get the process-wide plan table (loaded on first use)."""
    global _plan_limits
    if _plan_limits is None:
        with _plan_limits_lock:
            if _plan_limits is None:
                configured = get_settings().plan_limits_path
                _plan_limits = load_plan_limits(Path(configured) if configured else None)
    return _plan_limits


def reset_plan_limits() -> None:
    """Drop the cached plan table (useful for testing)."""
    global _plan_limits
    with _plan_limits_lock:
        _plan_limits = None

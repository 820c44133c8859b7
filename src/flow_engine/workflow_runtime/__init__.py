"""
Workflow Runtime - Validation and execution of automation flows.

This package provides:
- FlowNode / FlowEdge / FlowDefinition: stored flow structures
- FlowGraph: adjacency view shared by validator and runner
- FlowValidator: pre-execution structural and plan-tier gate
- WorkflowRunner: breadth-first interpreter producing a RunResult
- LegacyBridge: fallback dispatcher for not-yet-migrated subtypes
"""

from .models import FlowDefinition, FlowEdge, FlowNode, parse_flow
from .graph import FlowGraph
from .plan_limits import (
    PlanLimit,
    PlanLimits,
    PlanLimitsLoadError,
    get_plan_limits,
    load_plan_limits,
    reset_plan_limits,
)
from .legacy import LEGACY_SUBTYPES, LegacyBridge, execute_legacy_node
from .validator import (
    FlowValidationError,
    FlowValidator,
    ValidationReport,
    Violation,
    ViolationCode,
)
from .runner import (
    FatalCode,
    FatalErrorDetail,
    FatalRunError,
    NodeRunResult,
    RunLogEntry,
    RunResult,
    RunStatus,
    WorkflowRunner,
)

__all__ = [
    # Models
    "FlowDefinition",
    "FlowEdge",
    "FlowNode",
    "parse_flow",
    "FlowGraph",
    # Plan limits
    "PlanLimit",
    "PlanLimits",
    "PlanLimitsLoadError",
    "get_plan_limits",
    "load_plan_limits",
    "reset_plan_limits",
    # Legacy
    "LEGACY_SUBTYPES",
    "LegacyBridge",
    "execute_legacy_node",
    # Validator
    "FlowValidationError",
    "FlowValidator",
    "ValidationReport",
    "Violation",
    "ViolationCode",
    # Runner
    "FatalCode",
    "FatalErrorDetail",
    "FatalRunError",
    "NodeRunResult",
    "RunLogEntry",
    "RunResult",
    "RunStatus",
    "WorkflowRunner",
]

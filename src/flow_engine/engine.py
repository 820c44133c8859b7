"""
Engine facade - validate, then run.

This is the entry point inbound surfaces (API, Celery task, CLI) call:

    result = run_flow("DM", nodes, edges, context)

A flow that fails validation never starts; the caller gets a
``rejected`` RunResult carrying the violations.
"""

from __future__ import annotations

import time
from typing import Any, Iterable, List, Optional

from flow_engine.config import get_settings
from flow_engine.node_registry import NodeRegistry, get_node_registry
from flow_engine.node_sdk import ExecutionContext, Item
from flow_engine.observability import get_logger
from flow_engine.services import (
    AuditStore,
    Capabilities,
    InMemoryChatHistory,
    InMemoryFlagCache,
    InMemoryRateLimiter,
    InMemorySheetsExporter,
    RecordingMessenger,
    ScriptedAIGenerator,
    StaticContentQuery,
)
from flow_engine.workflow_runtime import (
    FlowValidator,
    LegacyBridge,
    PlanLimits,
    RunResult,
    RunStatus,
    ValidationReport,
    WorkflowRunner,
)


def validate_flow(
    nodes: Iterable[Any],
    edges: Iterable[Any],
    plan: Optional[str] = None,
    *,
    registry: Optional[NodeRegistry] = None,
    legacy_bridge: Optional[LegacyBridge] = None,
    plan_limits: Optional[PlanLimits] = None,
) -> ValidationReport:
    """Validate a flow against the global registry (or the one given)."""
    registry = registry or get_node_registry()
    bridge = legacy_bridge or LegacyBridge(registry)
    return FlowValidator(registry, bridge, plan_limits).validate(nodes, edges, plan)


def run_flow(
    trigger_type: str,
    nodes: Iterable[Any],
    edges: Iterable[Any],
    context: ExecutionContext,
    items: Optional[List[Item]] = None,
    *,
    plan: Optional[str] = None,
    registry: Optional[NodeRegistry] = None,
    legacy_bridge: Optional[LegacyBridge] = None,
    plan_limits: Optional[PlanLimits] = None,
    audit_store: Optional[AuditStore] = None,
) -> RunResult:
    """
    Validate and run a flow for one inbound event.

    The plan tier comes from ``context.subscription``, then ``plan``,
    then the ``default_plan`` setting.

    Args:
        trigger_type: Inbound event kind (DM, COMMENT, STORY_REPLY, MENTION)
        nodes: Editor node dicts or FlowNode instances
        edges: Editor edge dicts or FlowEdge instances
        context: Run context with the collaborators in ``context.services``
        items: Initial items (defaults to ``context.initial_items()``)
        audit_store: When given, the run's audit record is stored there

    Returns:
        RunResult (status rejected when validation fails)
    """
    nodes = list(nodes)
    edges = list(edges)
    registry = registry or get_node_registry()
    bridge = legacy_bridge or LegacyBridge(registry)
    tier = context.subscription or plan or get_settings().default_plan
    log = get_logger(__name__, run_id=context.run_id, automation_id=context.automation_id)

    started = time.perf_counter()
    report = FlowValidator(registry, bridge, plan_limits).validate(nodes, edges, tier)
    if not report.ok:
        log.warning(
            "Flow rejected",
            extra={"plan": report.plan, "violations": report.codes},
        )
        result = RunResult(
            run_id=context.run_id,
            status=RunStatus.REJECTED,
            trigger_type=str(getattr(trigger_type, "value", trigger_type)).upper(),
            automation_id=context.automation_id,
            message=f"Flow failed validation with {len(report.violations)} violation(s)",
            violations=report.violations,
            dry_run=context.dry_run,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
    else:
        result = WorkflowRunner(registry, bridge).run(nodes, edges, trigger_type, context, items)

    if audit_store is not None:
        try:
            audit_store.record(result.to_audit_record())
        except Exception as e:
            log.error("Could not record run", extra={"error": str(e)})

    return result


def build_dry_run_capabilities(
    followers: Optional[Iterable[str]] = None,
    ai_responses: Optional[List[str]] = None,
) -> Capabilities:
    """
    Recording collaborators for test runs: nothing leaves the process.

    The messenger records every outbound call; inspect
    ``capabilities.messaging.calls`` after the run.
    """
    settings = get_settings()
    return Capabilities(
        messaging=RecordingMessenger(),
        content=StaticContentQuery(followers=set(followers or ())),
        ai=ScriptedAIGenerator(responses=ai_responses),
        chat_history=InMemoryChatHistory(),
        flags=InMemoryFlagCache(),
        rate_limiter=InMemoryRateLimiter(settings.ai_rate_limit, settings.ai_rate_window_s),
        sheets=InMemorySheetsExporter(),
    )

"""
Flow Validator - Structural and plan-tier gate run before any execution.

``validate()`` collects every problem instead of stopping at the first,
and never raises. A flow with violations must not be run; warnings are
informational.

Checks, in order:
1. Structure: node/edge records, duplicate IDs, dangling edges, a
   trigger, known subtypes, per-subtype configuration
2. Graph: cycles reachable from a trigger, generated-text handoff
   conflicts
3. Plan tier: allowed subtypes, node count, depth
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flow_engine.config import get_settings
from flow_engine.node_registry import NodeRegistry
from flow_engine.node_sdk import BaseNode, NodeCategory

from .graph import BRANCH_NODE_LABELS, FlowGraph
from .legacy import LegacyBridge
from .models import FlowEdge, FlowNode
from .plan_limits import PlanLimits, PlanLimitsLoadError, get_plan_limits


logger = logging.getLogger(__name__)


class ViolationCode(str, Enum):
    """Problem codes reported by the validator."""
    # Violations (block execution)
    INVALID_DEFINITION = "INVALID_DEFINITION"
    DUPLICATE_NODE_ID = "DUPLICATE_NODE_ID"
    DANGLING_EDGE = "DANGLING_EDGE"
    NO_TRIGGER = "NO_TRIGGER"
    UNKNOWN_SUBTYPE = "UNKNOWN_SUBTYPE"
    MISSING_CONFIG = "MISSING_CONFIG"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    HANDOFF_CONFLICT = "HANDOFF_CONFLICT"
    UNKNOWN_PLAN = "UNKNOWN_PLAN"
    PLAN_LIMITS_UNAVAILABLE = "PLAN_LIMITS_UNAVAILABLE"
    SUBTYPE_NOT_ALLOWED = "SUBTYPE_NOT_ALLOWED"
    NODE_LIMIT_EXCEEDED = "NODE_LIMIT_EXCEEDED"
    DEPTH_LIMIT_EXCEEDED = "DEPTH_LIMIT_EXCEEDED"
    # Warnings
    ORPHANED_NODE = "ORPHANED_NODE"
    DEAD_END = "DEAD_END"
    UNCONSUMED_GENERATED_TEXT = "UNCONSUMED_GENERATED_TEXT"


class Violation(BaseModel):
    """One validation problem."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    code: ViolationCode
    message: str
    severity: str = Field("error", description="error or warning")
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    sub_type: Optional[str] = None


class FlowValidationError(Exception):
    """Raised by ``ValidationReport.raise_for_violations``."""

    def __init__(self, violations: List[Violation]) -> None:
        self.violations = violations
        summary = "; ".join(v.message for v in violations[:3])
        more = f" (+{len(violations) - 3} more)" if len(violations) > 3 else ""
        super().__init__(f"Flow failed validation: {summary}{more}")


class ValidationReport(BaseModel):
    """Outcome of validating one flow."""

    plan: Optional[str] = None
    violations: List[Violation] = Field(default_factory=list)
    warnings: List[Violation] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    @property
    def codes(self) -> List[str]:
        return [v.code for v in self.violations]

    def raise_for_violations(self) -> None:
        if self.violations:
            raise FlowValidationError(self.violations)


class FlowValidator:
    """
    Validates flows against the executor set and the plan table.

    Usage:
        validator = FlowValidator(registry, LegacyBridge(registry))
        report = validator.validate(nodes, edges, plan="FREE")
        if not report.ok:
            ...
    """

    def __init__(
        self,
        registry: NodeRegistry,
        legacy_bridge: Optional[LegacyBridge] = None,
        plan_limits: Optional[PlanLimits] = None,
    ):
        self.registry = registry
        self.legacy_bridge = legacy_bridge
        self._plan_limits = plan_limits

    @property
    def plan_limits(self) -> PlanLimits:
        if self._plan_limits is None:
            self._plan_limits = get_plan_limits()
        return self._plan_limits

    def resolve(self, sub_type: str) -> Optional[BaseNode]:
        executor = self.registry.resolve(sub_type)
        if executor is None and self.legacy_bridge is not None:
            executor = self.legacy_bridge.resolve(sub_type)
        return executor

    # ==== Entry point ====

    def validate(
        self,
        nodes: Iterable[Any],
        edges: Iterable[Any],
        plan: Optional[str] = None,
    ) -> ValidationReport:
        """
        Validate a flow.

        Args:
            nodes: FlowNode instances or editor node dicts
            edges: FlowEdge instances or editor edge dicts
            plan: Plan tier (defaults to settings.default_plan)
        """
        plan = (plan or get_settings().default_plan).strip().upper()
        violations: List[Violation] = []
        warnings: List[Violation] = []

        flow_nodes = self._coerce(nodes, FlowNode, "node", violations)
        flow_edges = self._coerce(edges, FlowEdge, "edge", violations)
        graph = FlowGraph(flow_nodes, flow_edges)

        # 1. Structure
        violations.extend(self._check_duplicates(flow_nodes))
        violations.extend(self._check_dangling(graph))
        triggers = graph.triggers()
        if not triggers:
            violations.append(Violation(
                code=ViolationCode.NO_TRIGGER,
                message="Flow has no trigger node",
            ))
        executors, unknown = self._resolve_all(graph)
        violations.extend(unknown)
        violations.extend(self._check_config(graph, executors))

        # 2. Graph
        trigger_ids = [t.id for t in triggers]
        back_edges = graph.back_edges(trigger_ids)
        for edge in back_edges:
            violations.append(Violation(
                code=ViolationCode.CYCLE_DETECTED,
                message=f"Cycle detected: edge {edge.label} ({edge.source} -> {edge.target}) loops back",
                edge_id=edge.id,
                node_id=edge.target,
            ))
        handoff_violations, unconsumed = self._check_handoff(graph, executors, trigger_ids)
        violations.extend(handoff_violations)
        warnings.extend(unconsumed)

        # 3. Plan tier
        violations.extend(self._check_plan(graph, trigger_ids, plan))

        warnings.extend(self._check_reachability(graph, trigger_ids))

        report = ValidationReport(plan=plan, violations=violations, warnings=warnings)
        if not report.ok:
            logger.info(
                "Flow rejected",
                extra={"plan": plan, "violation_codes": report.codes},
            )
        return report

    # ==== Structure ====

    @staticmethod
    def _coerce(
        records: Iterable[Any],
        model: type,
        kind: str,
        violations: List[Violation],
    ) -> List[Any]:
        parsed = []
        for index, record in enumerate(records or []):
            if isinstance(record, model):
                parsed.append(record)
                continue
            try:
                parsed.append(model.model_validate(record))
            except ValidationError as e:
                violations.append(Violation(
                    code=ViolationCode.INVALID_DEFINITION,
                    message=f"Invalid {kind} at index {index}: {e.errors()[0]['msg']}",
                ))
        return parsed

    @staticmethod
    def _check_duplicates(nodes: List[FlowNode]) -> List[Violation]:
        seen: Set[str] = set()
        reported: Set[str] = set()
        out = []
        for node in nodes:
            if node.id in seen and node.id not in reported:
                reported.add(node.id)
                out.append(Violation(
                    code=ViolationCode.DUPLICATE_NODE_ID,
                    message=f"Node ID '{node.id}' is used more than once",
                    node_id=node.id,
                ))
            seen.add(node.id)
        return out

    @staticmethod
    def _check_dangling(graph: FlowGraph) -> List[Violation]:
        out = []
        for edge in graph.dangling_edges():
            missing = [n for n in (edge.source, edge.target) if n not in graph.nodes]
            out.append(Violation(
                code=ViolationCode.DANGLING_EDGE,
                message=f"Edge {edge.label} references missing node(s): {', '.join(missing)}",
                edge_id=edge.id,
            ))
        return out

    def _resolve_all(self, graph: FlowGraph) -> Tuple[Dict[str, BaseNode], List[Violation]]:
        executors: Dict[str, BaseNode] = {}
        unknown = []
        for node in graph.nodes.values():
            executor = self.resolve(node.sub_type)
            if executor is None:
                unknown.append(Violation(
                    code=ViolationCode.UNKNOWN_SUBTYPE,
                    message=f"Node '{node.id}' has unknown subtype '{node.sub_type}'",
                    node_id=node.id,
                    sub_type=node.sub_type,
                ))
            else:
                executors[node.id] = executor
        return executors, unknown

    @staticmethod
    def _check_config(graph: FlowGraph, executors: Dict[str, BaseNode]) -> List[Violation]:
        out = []
        producers = {node_id for node_id, ex in executors.items() if ex.produces_generated_text}
        for node_id, executor in executors.items():
            node = graph.nodes[node_id]
            for problem in executor.validate_config(node.config):
                out.append(Violation(
                    code=ViolationCode.MISSING_CONFIG,
                    message=f"Node '{node_id}' ({node.sub_type}) has invalid config: {problem}",
                    node_id=node_id,
                    sub_type=node.sub_type,
                ))
            if executor.consumes_generated_text and not executor.has_static_text(node.config):
                if not producers & graph.ancestors(node_id):
                    out.append(Violation(
                        code=ViolationCode.MISSING_CONFIG,
                        message=(
                            f"Node '{node_id}' ({node.sub_type}) needs text: configure "
                            f"{' or '.join(executor.text_config_keys)} or connect an AI node upstream"
                        ),
                        node_id=node_id,
                        sub_type=node.sub_type,
                    ))
        return out

    # ==== Graph ====

    @staticmethod
    def _check_handoff(
        graph: FlowGraph,
        executors: Dict[str, BaseNode],
        trigger_ids: List[str],
    ) -> Tuple[List[Violation], List[Violation]]:
        """
        Walk every path from the triggers carrying the pending producer.

        A producer reached while another producer's text is still pending
        is a conflict. States are (node, pending producer), so the walk is
        finite even on cyclic input.
        """
        conflicts: Dict[Tuple[str, str], Violation] = {}
        unconsumed: Dict[str, Violation] = {}
        visited: Set[Tuple[str, Optional[str]]] = set()
        stack: List[Tuple[str, Optional[str]]] = [(t, None) for t in reversed(trigger_ids)]

        while stack:
            node_id, pending = stack.pop()
            if (node_id, pending) in visited:
                continue
            visited.add((node_id, pending))

            executor = executors.get(node_id)
            if executor is not None:
                if executor.consumes_generated_text:
                    pending = None
                if executor.produces_generated_text:
                    if pending is not None and (pending, node_id) not in conflicts:
                        conflicts[(pending, node_id)] = Violation(
                            code=ViolationCode.HANDOFF_CONFLICT,
                            message=(
                                f"Node '{node_id}' generates text while text from "
                                f"'{pending}' has not been sent yet"
                            ),
                            node_id=node_id,
                            sub_type=executor.sub_type,
                        )
                    pending = node_id

            children = graph.outgoing(node_id)
            if not children and pending is not None and pending not in unconsumed:
                unconsumed[pending] = Violation(
                    code=ViolationCode.UNCONSUMED_GENERATED_TEXT,
                    message=f"Text generated by '{pending}' is never sent on some path",
                    severity="warning",
                    node_id=pending,
                )
            for edge in reversed(children):
                stack.append((edge.target, pending))

        return list(conflicts.values()), list(unconsumed.values())

    # ==== Plan tier ====

    def _check_plan(
        self,
        graph: FlowGraph,
        trigger_ids: List[str],
        plan: str,
    ) -> List[Violation]:
        try:
            plan_limits = self.plan_limits
        except PlanLimitsLoadError as e:
            logger.error("Plan limits unavailable", extra={"plan": plan, "error": str(e)})
            return [Violation(
                code=ViolationCode.PLAN_LIMITS_UNAVAILABLE,
                message=f"Plan limits could not be loaded: {e}",
            )]

        limit = plan_limits.get(plan)
        if limit is None:
            return [Violation(
                code=ViolationCode.UNKNOWN_PLAN,
                message=f"Unknown plan '{plan}' (known: {', '.join(plan_limits.plan_names)})",
            )]

        out = []
        disallowed: Dict[str, List[str]] = {}
        for node in graph.nodes.values():
            if not limit.allows(node.sub_type):
                disallowed.setdefault(node.sub_type, []).append(node.id)
        for sub_type, node_ids in disallowed.items():
            out.append(Violation(
                code=ViolationCode.SUBTYPE_NOT_ALLOWED,
                message=(
                    f"Subtype '{sub_type}' is not available on the {plan} plan "
                    f"(nodes: {', '.join(node_ids)})"
                ),
                node_id=node_ids[0],
                sub_type=sub_type,
            ))

        node_count = len(graph.nodes)
        if node_count > limit.max_nodes:
            out.append(Violation(
                code=ViolationCode.NODE_LIMIT_EXCEEDED,
                message=f"Flow has {node_count} nodes; the {plan} plan allows {limit.max_nodes}",
            ))

        depth = graph.longest_path_depth(trigger_ids)
        if depth > limit.max_depth:
            out.append(Violation(
                code=ViolationCode.DEPTH_LIMIT_EXCEEDED,
                message=f"Flow depth is {depth}; the {plan} plan allows {limit.max_depth}",
            ))
        return out

    # ==== Warnings ====

    @staticmethod
    def _check_reachability(graph: FlowGraph, trigger_ids: List[str]) -> List[Violation]:
        out = []
        if trigger_ids:
            reachable = graph.reachable_from(trigger_ids)
            for node in graph.nodes.values():
                if node.id not in reachable:
                    out.append(Violation(
                        code=ViolationCode.ORPHANED_NODE,
                        message=f"Node '{node.id}' is not reachable from any trigger",
                        severity="warning",
                        node_id=node.id,
                    ))
        for node in graph.nodes.values():
            if (
                node.category == NodeCategory.CONDITION
                and node.sub_type not in BRANCH_NODE_LABELS
                and not graph.outgoing(node.id)
            ):
                out.append(Violation(
                    code=ViolationCode.DEAD_END,
                    message=f"Condition node '{node.id}' has no outgoing connections",
                    severity="warning",
                    node_id=node.id,
                ))
        return out

"""
Workflow Runner - Breadth-first interpreter for validated flows.

Starts at the trigger matching the inbound event and drives execution
order, branch routing and result aggregation. The runner never retries
a node; retrying collaborator calls is each executor's job.

Multi-parent nodes: a node runs once, after every incoming edge from
the reachable part of the graph has settled, with the items of all
satisfied parents concatenated in the order those parents completed.
A node no parent delivered to is skipped, and its own outgoing edges
settle empty, so skips propagate downstream.

Generated text is scoped to the producer's descendants: each node is
entered on the context with its ancestors, and text left unsent once
its producer's downstream has settled is dropped.

SYNC-CELERY SAFE: One run is one thread of control; siblings are not
parallelized, and outgoing edges are followed in declaration order.
"""

from __future__ import annotations

import time
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

from flow_engine.node_registry import NodeRegistry
from flow_engine.node_sdk import (
    BaseNode,
    ExecutionContext,
    ExecutionLogEntry,
    Item,
    NodeExecutionResult,
    now_ms,
)
from flow_engine.observability import get_logger

from .graph import FlowGraph
from .legacy import LegacyBridge
from .models import FlowEdge, FlowNode, coerce_edges, coerce_nodes
from .validator import Violation


class RunStatus(str, Enum):
    """Overall run status."""
    SUCCESS = "success"
    PARTIAL = "partial"  # Some branches stopped on a node failure
    FAILED = "failed"  # Aborted by a fatal error
    REJECTED = "rejected"  # Failed validation, nothing ran


class FatalCode(str, Enum):
    MISSING_TRIGGER = "MISSING_TRIGGER"
    UNRESOLVED_SUBTYPE = "UNRESOLVED_SUBTYPE"
    EXECUTOR_RAISED = "EXECUTOR_RAISED"


class FatalRunError(Exception):
    """Runner-level condition that aborts the whole run."""

    def __init__(
        self,
        code: FatalCode,
        message: str,
        node_id: Optional[str] = None,
        sub_type: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.node_id = node_id
        self.sub_type = sub_type
        super().__init__(f"[{code.value}] {message}")

    def to_detail(self) -> "FatalErrorDetail":
        return FatalErrorDetail(
            code=self.code.value,
            message=self.message,
            node_id=self.node_id,
            sub_type=self.sub_type,
        )


class FatalErrorDetail(BaseModel):
    code: str
    message: str
    node_id: Optional[str] = None
    sub_type: Optional[str] = None


class RunLogEntry(BaseModel):
    """A log entry in the run's ordered log, tagged with its node."""
    model_config = ConfigDict(frozen=True)

    node_id: Optional[str] = Field(None, description="None for runner-level entries")
    timestamp: int
    level: str
    message: str
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def from_entry(cls, node_id: Optional[str], entry: ExecutionLogEntry) -> "RunLogEntry":
        return cls(
            node_id=node_id,
            timestamp=entry.timestamp,
            level=entry.level,
            message=entry.message,
            data=entry.data,
        )


class NodeRunResult(BaseModel):
    """Result of running a single node."""

    node_id: str
    sub_type: str
    executor_source: str = Field(..., description="registry or legacy")
    success: bool
    items: List[Item] = Field(default_factory=list)
    message: Optional[str] = None
    logs: List[ExecutionLogEntry] = Field(default_factory=list)
    duration_ms: float = 0

    @property
    def outcome(self) -> Optional[str]:
        return self.items[0].branch if self.items else None


class RunResult(BaseModel):
    """Final result of one run."""

    run_id: str
    status: RunStatus
    trigger_type: Optional[str] = None
    trigger_node_id: Optional[str] = None
    automation_id: Optional[str] = None
    message: str = ""
    node_results: List[NodeRunResult] = Field(default_factory=list)
    logs: List[RunLogEntry] = Field(default_factory=list)
    soft_failures: List[str] = Field(default_factory=list)
    skipped_node_ids: List[str] = Field(default_factory=list)
    fatal_error: Optional[FatalErrorDetail] = None
    violations: List[Violation] = Field(default_factory=list)
    dry_run: bool = False
    duration_ms: float = 0

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCESS

    @property
    def executed_node_ids(self) -> List[str]:
        return [r.node_id for r in self.node_results]

    def result_for(self, node_id: str) -> Optional[NodeRunResult]:
        for result in self.node_results:
            if result.node_id == node_id:
                return result
        return None

    def node_logs(self) -> Dict[str, List[ExecutionLogEntry]]:
        """Per-node logs, keyed by node ID (for the editor's debug view)."""
        return {r.node_id: list(r.logs) for r in self.node_results}

    def to_audit_record(self) -> Dict[str, Any]:
        """JSON-safe dict for audit/analytics storage."""
        record = self.model_dump(mode="json")
        record["success"] = self.success
        record["recorded_at"] = now_ms()
        return record


class _RunState:
    """Mutable bookkeeping for one traversal."""

    def __init__(self, graph: FlowGraph, start_id: str) -> None:
        self.start_id = start_id
        self.reachable = graph.reachable_from([start_id])
        self.pending: Dict[str, int] = {node_id: 0 for node_id in self.reachable}
        for node_id in self.reachable:
            for edge in graph.outgoing(node_id):
                if edge.target not in (start_id, node_id):
                    self.pending[edge.target] += 1
        self.delivered: Dict[str, List[Item]] = {node_id: [] for node_id in self.reachable}
        self.satisfied: Dict[str, bool] = {node_id: False for node_id in self.reachable}
        self.done: Set[str] = {start_id}
        self.queue: Deque[str] = deque()


class WorkflowRunner:
    """
    Executes one validated flow for one inbound event.

    The runner holds no per-run state, so one instance can serve
    concurrent runs.

    Usage:
        runner = WorkflowRunner(registry, LegacyBridge(registry))
        result = runner.run(nodes, edges, "COMMENT", context)
    """

    def __init__(
        self,
        registry: NodeRegistry,
        legacy_bridge: Optional[LegacyBridge] = None,
    ):
        self.registry = registry
        self.legacy_bridge = legacy_bridge

    def resolve(self, sub_type: str) -> Tuple[Optional[BaseNode], Optional[str]]:
        """Find the executor for a subtype: registry first, then the bridge."""
        executor = self.registry.resolve(sub_type)
        if executor is not None:
            return executor, "registry"
        if self.legacy_bridge is not None:
            executor = self.legacy_bridge.resolve(sub_type)
            if executor is not None:
                return executor, "legacy"
        return None, None

    # ==== Entry point ====

    def run(
        self,
        nodes: Iterable[Any],
        edges: Iterable[Any],
        trigger_type: str,
        context: ExecutionContext,
        items: Optional[List[Item]] = None,
    ) -> RunResult:
        """
        Run a flow.

        Args:
            nodes: FlowNode instances or editor node dicts (already validated)
            edges: FlowEdge instances or editor edge dicts
            trigger_type: Inbound event kind (DM, COMMENT, ...)
            context: Run context, shared by every node of the run
            items: Initial items (defaults to ``context.initial_items()``)

        Returns:
            RunResult; never raises for node-level problems
        """
        start_time = time.perf_counter()
        trigger_type = str(getattr(trigger_type, "value", trigger_type)).upper()
        log = get_logger(__name__, run_id=context.run_id, automation_id=context.automation_id)

        graph = FlowGraph(coerce_nodes(list(nodes)), coerce_edges(list(edges)))
        run_logs: List[RunLogEntry] = []
        node_results: List[NodeRunResult] = []
        soft_failures: List[str] = []
        skipped: List[str] = []

        def runner_log(level: str, message: str, node_id: Optional[str] = None, **data: Any) -> None:
            run_logs.append(RunLogEntry(
                node_id=node_id,
                timestamp=now_ms(),
                level=level,
                message=message,
                data=data or None,
            ))

        def finish(status: RunStatus, message: str, fatal: Optional[FatalRunError] = None,
                   trigger: Optional[FlowNode] = None) -> RunResult:
            duration_ms = (time.perf_counter() - start_time) * 1000
            result = RunResult(
                run_id=context.run_id,
                status=status,
                trigger_type=trigger_type,
                trigger_node_id=trigger.id if trigger else None,
                automation_id=context.automation_id,
                message=message,
                node_results=node_results,
                logs=run_logs,
                soft_failures=soft_failures,
                skipped_node_ids=skipped,
                fatal_error=fatal.to_detail() if fatal else None,
                dry_run=context.dry_run,
                duration_ms=duration_ms,
            )
            log.info(
                "Run finished",
                extra={
                    "status": status.value,
                    "nodes_executed": len(node_results),
                    "soft_failures": len(soft_failures),
                    "duration_ms": round(duration_ms, 2),
                },
            )
            return result

        # Find trigger node matching the event
        trigger = graph.find_trigger(trigger_type)
        if trigger is None:
            fatal = FatalRunError(
                FatalCode.MISSING_TRIGGER,
                f"No {trigger_type} trigger found in flow",
            )
            runner_log("error", fatal.message)
            return finish(RunStatus.FAILED, fatal.message, fatal)

        runner_log("info", f"Starting flow from trigger: {trigger.id}", node_id=trigger.id)
        log.info("Run started", extra={"trigger_node_id": trigger.id, "trigger_type": trigger_type})

        state = _RunState(graph, trigger.id)
        initial = list(items) if items is not None else context.initial_items()
        self._settle(graph, state, trigger, initial)

        try:
            while state.queue:
                node_id = state.queue.popleft()
                node = graph.nodes[node_id]

                if not state.satisfied[node_id]:
                    skipped.append(node_id)
                    log.debug("Node skipped", extra={"node_id": node_id})
                    self._settle(graph, state, node, [])
                else:
                    node_result = self._execute_node(graph, node, state.delivered[node_id], context)
                    node_results.append(node_result)
                    run_logs.extend(RunLogEntry.from_entry(node_id, e) for e in node_result.logs)

                    if not node_result.success:
                        soft_failures.append(node_id)
                        runner_log(
                            "warn",
                            f"Node {node.sub_type} failed: {node_result.message or 'no message'}",
                            node_id=node_id,
                        )
                        log.warning(
                            "Node failed",
                            extra={"node_id": node_id, "sub_type": node.sub_type, "reason": node_result.message},
                        )
                        self._settle(graph, state, node, [])
                    else:
                        self._settle(graph, state, node, node_result.items)

                for producer_id in self._stranded_producers(graph, state, context):
                    context.discard_generated_text(producer_id)
                    runner_log("warn", f"Generated text from '{producer_id}' was never sent", node_id=producer_id)
                    log.info("Generated text dropped", extra={"node_id": producer_id})

        except FatalRunError as fatal:
            runner_log("error", fatal.message, node_id=fatal.node_id)
            log.error(
                "Run aborted",
                extra={"node_id": fatal.node_id, "code": fatal.code.value, "reason": fatal.message},
            )
            return finish(RunStatus.FAILED, f"Flow execution failed: {fatal.message}", fatal, trigger)

        if soft_failures:
            return finish(
                RunStatus.PARTIAL,
                f"Flow completed with {len(soft_failures)} failed node(s)",
                trigger=trigger,
            )
        return finish(RunStatus.SUCCESS, "Flow completed", trigger=trigger)

    # ==== Internals ====

    def _execute_node(
        self,
        graph: FlowGraph,
        node: FlowNode,
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeRunResult:
        executor, source = self.resolve(node.sub_type)
        if executor is None:
            raise FatalRunError(
                FatalCode.UNRESOLVED_SUBTYPE,
                f"No executor registered for subtype '{node.sub_type}'",
                node_id=node.id,
                sub_type=node.sub_type,
            )

        started = time.perf_counter()
        context.enter_node(node.id, graph.ancestors(node.id))
        try:
            result = executor.execute(dict(node.config), list(items), context)
        except Exception as e:
            raise FatalRunError(
                FatalCode.EXECUTOR_RAISED,
                f"Executor for {node.sub_type} raised {type(e).__name__}: {e}",
                node_id=node.id,
                sub_type=node.sub_type,
            ) from e
        finally:
            context.enter_node(None)

        if not isinstance(result, NodeExecutionResult):
            raise FatalRunError(
                FatalCode.EXECUTOR_RAISED,
                f"Executor for {node.sub_type} returned {type(result).__name__}",
                node_id=node.id,
                sub_type=node.sub_type,
            )

        return NodeRunResult(
            node_id=node.id,
            sub_type=node.sub_type,
            executor_source=source,
            success=result.success,
            items=result.items if result.success else [],
            message=result.message,
            logs=result.logs,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    @staticmethod
    def _stranded_producers(
        graph: FlowGraph,
        state: _RunState,
        context: ExecutionContext,
    ) -> List[str]:
        """Producers with pending text whose downstream nodes have all settled."""
        stranded = []
        for producer_id in context.pending_producers:
            downstream = graph.reachable_from([producer_id]) - {producer_id, state.start_id}
            if downstream <= state.done:
                stranded.append(producer_id)
        return stranded

    @staticmethod
    def _edge_matches(graph: FlowGraph, edge: FlowEdge, outcome: Optional[str]) -> bool:
        label = graph.effective_branch(edge)
        if label is None or outcome is None:
            return True
        return label == outcome.strip().lower()

    def _settle(
        self,
        graph: FlowGraph,
        state: _RunState,
        node: FlowNode,
        items: List[Item],
    ) -> None:
        """
        Settle every outgoing edge of a finished (or skipped) node.

        Matching edges deliver the node's items, stamped with the node
        as their source; routing labels do not travel past one hop.
        """
        state.done.add(node.id)
        outcome = items[0].branch if items else None
        stamped = [item.evolve(source_node_id=node.id) for item in items]

        for edge in graph.outgoing(node.id):
            target = edge.target
            if target in (state.start_id, node.id):
                continue
            if stamped and self._edge_matches(graph, edge, outcome):
                state.delivered[target].extend(stamped)
                state.satisfied[target] = True
            state.pending[target] -= 1
            if state.pending[target] == 0:
                state.queue.append(target)

"""Flow validation and test-run routes."""
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from flow_engine.engine import build_dry_run_capabilities, run_flow, validate_flow
from flow_engine.node_registry import get_node_registry
from flow_engine.node_sdk import ExecutionContext, TriggerType
from flow_engine.observability import get_logger
from flow_engine.workflow_runtime import LegacyBridge

logger = get_logger(__name__)
router = APIRouter()


class FlowBody(BaseModel):
    """Nodes and edges as stored by the flow editor."""

    nodes: list[dict[str, Any]] = Field(default_factory=list, description="Flow nodes")
    edges: list[dict[str, Any]] = Field(default_factory=list, description="Flow edges")
    plan: str | None = Field(default=None, description="Plan tier to validate against")


class MockInput(BaseModel):
    """Simulated inbound event for a test run."""

    model_config = ConfigDict(populate_by_name=True)

    message_text: str | None = Field(default="Hello", alias="messageText")
    sender_id: str = Field(default="test-sender", alias="senderId")
    page_id: str = Field(default="test-page", alias="pageId")
    comment_id: str | None = Field(default=None, alias="commentId")
    media_id: str | None = Field(default=None, alias="mediaId")
    is_follower: bool = Field(default=False, alias="isFollower")
    ai_responses: list[str] = Field(default_factory=list, alias="aiResponses")


class TestRunRequest(FlowBody):
    """Request model for a dry run."""

    model_config = ConfigDict(populate_by_name=True)

    trigger_type: TriggerType = Field(default=TriggerType.DM, alias="triggerType")
    mock_input: MockInput = Field(default_factory=MockInput, alias="mockInput")


class ValidateResponse(BaseModel):
    """Response model for flow validation."""

    ok: bool = Field(..., description="True when the flow may run")
    plan: str | None = Field(default=None, description="Plan tier checked")
    violations: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)


@router.get("/v1/nodes")
def list_nodes() -> dict:
    """
    List executable subtypes.

    Returns:
        Registered executors plus the subtypes served by the legacy bridge
    """
    registry = get_node_registry()
    definitions = registry.list_nodes() + LegacyBridge(registry).list_nodes()
    return {
        "count": len(definitions),
        "nodes": [d.model_dump(exclude={"config_schema"}) for d in definitions],
    }


@router.post("/v1/flows/validate", response_model=ValidateResponse)
def validate(request: FlowBody) -> ValidateResponse:
    """
    Validate a flow without running it.

    Args:
        request: Flow nodes, edges and plan tier

    Returns:
        Validation report
    """
    report = validate_flow(request.nodes, request.edges, request.plan)
    return ValidateResponse(
        ok=report.ok,
        plan=report.plan,
        violations=[v.model_dump() for v in report.violations],
        warnings=[w.model_dump() for w in report.warnings],
    )


@router.post("/v1/flows/test-run")
def test_run(request: TestRunRequest) -> dict:
    """
    Run a flow against recording collaborators.

    Nothing is sent to the platform; the response lists the outbound
    calls the run would have made.

    Args:
        request: Flow, trigger type and simulated event

    Returns:
        Run result with the recorded outbound calls
    """
    mock = request.mock_input
    services = build_dry_run_capabilities(
        followers=[mock.sender_id] if mock.is_follower else [],
        ai_responses=mock.ai_responses,
    )
    context = ExecutionContext(
        trigger_type=request.trigger_type,
        message_text=mock.message_text,
        sender_id=mock.sender_id,
        page_id=mock.page_id,
        comment_id=mock.comment_id,
        media_id=mock.media_id,
        token="dry-run",
        dry_run=True,
        services=services,
    )

    logger.info(
        "Test run requested",
        extra={"run_id": context.run_id, "trigger_type": context.trigger_type},
    )

    result = run_flow(
        context.trigger_type,
        request.nodes,
        request.edges,
        context,
        plan=request.plan,
    )

    body = result.model_dump(mode="json")
    body["success"] = result.success
    body["dryRun"] = True
    body["outboundCalls"] = [c.model_dump() for c in services.messaging.calls]
    return body

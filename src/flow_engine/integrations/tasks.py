"""Celery tasks for flow execution."""
from typing import Any, Callable

from flow_engine.engine import run_flow as run_flow_sync
from flow_engine.integrations.celery_app import celery_app
from flow_engine.node_sdk import ExecutionContext
from flow_engine.observability import get_logger, setup_logging, with_trace_context
from flow_engine.services import AuditStore, Capabilities

# Setup logging
setup_logging()
logger = get_logger(__name__)

CapabilitiesFactory = Callable[[ExecutionContext], Capabilities]

_capabilities_factory: CapabilitiesFactory | None = None
_audit_store: AuditStore | None = None


def configure_capabilities(
    factory: CapabilitiesFactory | None,
    audit_store: AuditStore | None = None,
) -> None:
    """
    Install the host's collaborators for worker runs.

    Args:
        factory: Builds the Capabilities for one run from its context
        audit_store: Where run records are stored (none when omitted)
    """
    global _capabilities_factory, _audit_store
    _capabilities_factory = factory
    _audit_store = audit_store


def build_capabilities(context: ExecutionContext) -> Capabilities:
    """Capabilities for one run; empty when the host configured none."""
    if _capabilities_factory is None:
        logger.warning(
            "No capabilities configured, actions will fail",
            extra={"run_id": context.run_id},
        )
        return Capabilities()
    return _capabilities_factory(context)


@celery_app.task(name="run_flow", bind=True)
def run_flow(
    self,
    trigger_type: str,
    nodes: list[dict[str, Any]],
    edges: list[dict[str, Any]],
    event: dict[str, Any],
) -> dict:
    """
    Execute one flow for one inbound event.

    Args:
        trigger_type: Inbound event kind (DM, COMMENT, STORY_REPLY, MENTION)
        nodes: Flow nodes as stored by the editor
        edges: Flow edges as stored by the editor
        event: ExecutionContext fields (camelCase aliases accepted)

    Returns:
        Audit record of the run
    """
    context = ExecutionContext.model_validate({**event, "triggerType": trigger_type})
    context.services = build_capabilities(context)

    logger.info(
        "Starting flow task",
        extra=with_trace_context(
            run_id=context.run_id,
            automation_id=context.automation_id,
            task_id=self.request.id,
        ),
    )

    try:
        result = run_flow_sync(trigger_type, nodes, edges, context, audit_store=_audit_store)
    except Exception as e:
        logger.error(
            "Flow task failed",
            extra=with_trace_context(run_id=context.run_id, error=str(e)),
            exc_info=True,
        )
        raise

    logger.info(
        "Flow task finished",
        extra=with_trace_context(run_id=context.run_id, status=result.status.value),
    )
    return result.to_audit_record()

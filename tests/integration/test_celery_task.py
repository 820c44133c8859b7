"""Integration tests for the Celery flow task (run eagerly, no broker)."""
import pytest

from flow_engine.engine import build_dry_run_capabilities
from flow_engine.integrations import tasks
from flow_engine.services import InMemoryAuditStore


NODES = [
    {"nodeId": "t", "type": "trigger", "subType": "DM"},
    {"nodeId": "m", "type": "action", "subType": "MESSAGE", "config": {"message": "Hi there"}},
]
EDGES = [{"sourceNodeId": "t", "targetNodeId": "m"}]
EVENT = {"senderId": "user-1", "pageId": "page-1", "messageText": "hello", "automationId": "auto-9"}


@pytest.fixture
def installed():
    """Install recording collaborators for the worker and remove them afterwards."""
    captured = {}
    store = InMemoryAuditStore()

    def factory(context):
        captured["services"] = build_dry_run_capabilities()
        return captured["services"]

    tasks.configure_capabilities(factory, store)
    yield captured, store
    tasks.configure_capabilities(None)


def test_run_flow_task(installed):
    captured, store = installed

    record = tasks.run_flow.apply(args=("DM", NODES, EDGES, EVENT)).get()

    assert record["status"] == "success"
    assert record["success"] is True
    assert record["automation_id"] == "auto-9"
    assert captured["services"].messaging.sent_texts == ["Hi there"]
    assert store.get(record["run_id"]) is not None


def test_run_flow_task_rejected(installed):
    _, store = installed

    record = tasks.run_flow.apply(args=("DM", NODES[1:], [], EVENT)).get()

    assert record["status"] == "rejected"
    assert record["violations"][0]["code"] == "NO_TRIGGER"


def test_without_capabilities_actions_fail_softly():
    tasks.configure_capabilities(None)

    record = tasks.run_flow.apply(args=("DM", NODES, EDGES, EVENT)).get()

    assert record["status"] == "partial"
    assert record["soft_failures"] == ["m"]

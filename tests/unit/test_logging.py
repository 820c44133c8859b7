"""Tests for structured logging."""
import json
import logging

from flow_engine.observability import get_logger, with_trace_context
from flow_engine.observability.logging import CustomJsonFormatter, TraceContextFilter


def _record(**extra):
    record = logging.LogRecord("node.MESSAGE", logging.INFO, __file__, 1, "DM sent", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_adapter_merges_bound_and_call_extra(caplog):
    """Per-call extra is merged over the bound context."""
    log = get_logger("flow_engine.test", run_id="run-1", automation_id="auto-1")

    with caplog.at_level(logging.INFO, logger="flow_engine.test"):
        log.info("hello", extra={"node_id": "n1", "automation_id": "auto-2"})

    record = caplog.records[-1]
    assert record.run_id == "run-1"
    assert record.node_id == "n1"
    assert record.automation_id == "auto-2"


def test_json_formatter_fields():
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    record = _record(run_id="run-1", node_id=None)
    TraceContextFilter().filter(record)

    data = json.loads(formatter.format(record))

    assert data["message"] == "DM sent"
    assert data["level"] == "INFO"
    assert data["logger"] == "node.MESSAGE"
    assert data["run_id"] == "run-1"
    assert "node_id" not in data
    assert "timestamp" in data


def test_filter_fills_missing_fields():
    record = _record()

    assert TraceContextFilter().filter(record)
    assert record.run_id is None
    assert record.sub_type is None


def test_with_trace_context():
    extra = with_trace_context(run_id="r", node_id="n", status="ok")

    assert extra == {"run_id": "r", "node_id": "n", "status": "ok"}

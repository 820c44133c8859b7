"""Tests for the workflow runner."""
import json

import pytest

from flow_engine.engine import build_dry_run_capabilities
from flow_engine.node_registry import NodeRegistry
from flow_engine.node_sdk import BaseNode, ExecutionContext, Item
from flow_engine.nodes import NODE_EXECUTORS
from flow_engine.services import RecordingMessenger
from flow_engine.workflow_runtime import (
    FatalCode,
    FlowNode,
    RunStatus,
    WorkflowRunner,
)


class ExplodingNode(BaseNode):
    sub_type = "EXPLODE"

    def execute(self, config, items, context):
        raise RuntimeError("kaboom")


class SloppyNode(BaseNode):
    sub_type = "SLOPPY"

    def execute(self, config, items, context):
        return {"success": True}


@pytest.fixture
def test_runner(legacy_bridge):
    registry = NodeRegistry([cls() for cls in NODE_EXECUTORS] + [ExplodingNode(), SloppyNode()])
    return WorkflowRunner(registry.freeze(), legacy_bridge)


@pytest.fixture
def keyword_flow(node, edge):
    nodes = [
        node("t", "COMMENT", "trigger"),
        node("k", "KEYWORDS", "condition", keywords=["price"]),
        node("m", "MESSAGE", message="Thanks! Here's the link."),
    ]
    return nodes, [edge("t", "k"), edge("k", "m")]


class TestKeywordScenarios:
    def test_keyword_match_sends_message(self, runner, make_context, messenger, keyword_flow):
        nodes, edges = keyword_flow
        context = make_context(trigger_type="COMMENT", message_text="PRICE", comment_id="c1")

        result = runner.run(nodes, edges, "COMMENT", context)

        assert result.success
        assert result.status == RunStatus.SUCCESS
        assert result.message == "Flow completed"
        assert result.executed_node_ids == ["k", "m"]
        assert messenger.sent_texts == ["Thanks! Here's the link."]

    def test_keyword_miss_stops_quietly(self, runner, make_context, messenger, keyword_flow):
        nodes, edges = keyword_flow
        context = make_context(trigger_type="COMMENT", message_text="hello", comment_id="c1")

        result = runner.run(nodes, edges, "COMMENT", context)

        assert result.success
        assert result.executed_node_ids == ["k"]
        assert result.skipped_node_ids == ["m"]
        assert result.soft_failures == []
        assert messenger.calls == []
        assert not any(log.node_id == "m" for log in result.logs)

    def test_trigger_is_not_executed(self, runner, make_context, keyword_flow):
        nodes, edges = keyword_flow

        result = runner.run(nodes, edges, "COMMENT", make_context(message_text="price"))

        assert result.trigger_node_id == "t"
        assert "t" not in result.executed_node_ids
        assert result.logs[0].message == "Starting flow from trigger: t"

    def test_accepts_flow_models(self, runner, make_context, messenger, keyword_flow):
        nodes, edges = keyword_flow
        models = [FlowNode.model_validate(n) for n in nodes]

        result = runner.run(models, edges, "COMMENT", make_context(message_text="price"))

        assert result.success
        assert len(messenger.sent_texts) == 1

    def test_initial_items_reach_children(self, runner, make_context, keyword_flow):
        nodes, edges = keyword_flow

        result = runner.run(nodes, edges, "COMMENT", make_context(message_text="price?"))

        output = result.result_for("m").items[0]
        assert output["messageText"] == "price?"
        assert output["keyword_matched_word"] == "price"
        assert output.meta.source_node_id == "k"


class TestBranchRouting:
    @pytest.fixture
    def follower_flow(self, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("f", "IS_FOLLOWER", "condition"),
            node("yes_msg", "MESSAGE", message="Hi follower"),
            node("no_msg", "MESSAGE", message="Please follow us"),
        ]
        edges = [edge("t", "f"), edge("f", "yes_msg", branch="yes"), edge("f", "no_msg", branch="no")]
        return nodes, edges

    def test_only_matching_branch_runs(self, runner, make_context, messenger, follower_flow):
        nodes, edges = follower_flow

        result = runner.run(nodes, edges, "DM", make_context(sender_id="follower-1"))

        assert result.executed_node_ids == ["f", "yes_msg"]
        assert result.skipped_node_ids == ["no_msg"]
        assert messenger.sent_texts == ["Hi follower"]
        assert not any(log.node_id == "no_msg" for log in result.logs)

    def test_other_branch(self, runner, make_context, messenger, follower_flow):
        nodes, edges = follower_flow

        result = runner.run(nodes, edges, "DM", make_context(sender_id="stranger"))

        assert result.executed_node_ids == ["f", "no_msg"]
        assert messenger.sent_texts == ["Please follow us"]

    def test_branch_labels_are_case_insensitive(self, runner, make_context, messenger, node, edge):
        nodes = [node("t", "DM", "trigger"), node("f", "IS_FOLLOWER", "condition"), node("m", "MESSAGE", message="hi")]

        result = runner.run(nodes, [edge("t", "f"), edge("f", "m", branch="YES")], "DM", make_context(sender_id="follower-1"))

        assert result.executed_node_ids == ["f", "m"]

    def test_yes_no_nodes(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("f", "IS_FOLLOWER", "condition"),
            node("y", "YES", "condition"),
            node("n", "NO", "condition"),
            node("m1", "MESSAGE", message="yes path"),
            node("m2", "MESSAGE", message="no path"),
        ]
        edges = [edge("t", "f"), edge("f", "y"), edge("f", "n"), edge("y", "m1"), edge("n", "m2")]

        result = runner.run(nodes, edges, "DM", make_context(sender_id="stranger"))

        assert result.executed_node_ids == ["f", "n", "m2"]
        assert result.skipped_node_ids == ["y", "m1"]
        assert messenger.sent_texts == ["no path"]

    def test_routing_label_does_not_leak_downstream(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("f", "IS_FOLLOWER", "condition"),
            node("m1", "MESSAGE", message="first"),
            node("m2", "MESSAGE", message="second"),
        ]
        edges = [edge("t", "f"), edge("f", "m1", branch="no"), edge("m1", "m2", branch="yes")]

        result = runner.run(nodes, edges, "DM", make_context(sender_id="stranger"))

        assert messenger.sent_texts == ["first", "second"]
        assert result.success

    def test_unlabelled_condition_edge_needs_a_pass(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("f", "IS_FOLLOWER", "condition"),
            node("m", "MESSAGE", message="Thanks for following"),
        ]
        edges = [edge("t", "f"), edge("f", "m")]

        result = runner.run(nodes, edges, "DM", make_context(sender_id="stranger"))

        assert result.success
        assert result.executed_node_ids == ["f"]
        assert result.skipped_node_ids == ["m"]
        assert messenger.calls == []

    def test_unlabelled_condition_edge_runs_on_pass(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("f", "IS_FOLLOWER", "condition"),
            node("m", "MESSAGE", message="Thanks for following"),
        ]

        result = runner.run(nodes, [edge("t", "f"), edge("f", "m")], "DM", make_context(sender_id="follower-1"))

        assert result.executed_node_ids == ["f", "m"]
        assert messenger.sent_texts == ["Thanks for following"]

    def test_has_tag_miss_stops_unlabelled_child(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "COMMENT", "trigger"),
            node("h", "HAS_TAG", "condition", tags=["#sale"]),
            node("r", "REPLY_COMMENT", commentReply="On sale!"),
        ]

        result = runner.run(
            nodes, [edge("t", "h"), edge("h", "r")], "COMMENT",
            make_context(trigger_type="COMMENT", comment_id="c1", message_text="nice #summer"),
        )

        assert result.skipped_node_ids == ["r"]
        assert messenger.calls == []

    def test_skips_propagate(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("k", "KEYWORDS", "condition", keywords=["buy"]),
            node("m1", "MESSAGE", message="one"),
            node("m2", "MARK_SEEN"),
        ]
        edges = [edge("t", "k"), edge("k", "m1"), edge("m1", "m2")]

        result = runner.run(nodes, edges, "DM", make_context(message_text="hello"))

        assert result.skipped_node_ids == ["m1", "m2"]
        assert messenger.calls == []

    def test_only_the_matching_trigger_runs(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("dm", "DM", "trigger"),
            node("c", "COMMENT", "trigger"),
            node("m1", "MESSAGE", message="dm path"),
            node("m2", "REPLY_COMMENT", commentReply="comment path"),
        ]
        edges = [edge("dm", "m1"), edge("c", "m2")]

        result = runner.run(nodes, edges, "COMMENT", make_context(comment_id="c-9"))

        assert result.executed_node_ids == ["m2"]
        assert result.skipped_node_ids == []
        assert messenger.sent_texts == ["comment path"]


class TestMultiParent:
    def test_diamond_runs_join_once_with_all_items(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("a", "TYPING_ON"),
            node("b", "MARK_SEEN"),
            node("c", "MESSAGE", message="done"),
        ]
        edges = [edge("t", "a"), edge("t", "b"), edge("a", "c"), edge("b", "c")]

        result = runner.run(nodes, edges, "DM", make_context())

        assert result.executed_node_ids == ["a", "b", "c"]
        assert messenger.sent_texts == ["done"]
        join = result.result_for("c")
        assert [item.meta.source_node_id for item in join.items] == ["a", "b"]

    def test_join_runs_with_the_satisfied_parent_only(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("f", "IS_FOLLOWER", "condition"),
            node("a", "MESSAGE", message="welcome back"),
            node("b", "MESSAGE", message="welcome"),
            node("c", "MESSAGE", message="anything else?"),
        ]
        edges = [
            edge("t", "f"),
            edge("f", "a", branch="yes"),
            edge("f", "b", branch="no"),
            edge("a", "c"),
            edge("b", "c"),
        ]

        result = runner.run(nodes, edges, "DM", make_context(sender_id="follower-1"))

        assert result.executed_node_ids == ["f", "a", "c"]
        assert result.skipped_node_ids == ["b"]
        assert len(result.result_for("c").items) == 1
        assert messenger.sent_texts == ["welcome back", "anything else?"]

    def test_join_waits_for_longer_branch(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("a", "TYPING_ON"),
            node("a2", "TYPING_OFF"),
            node("b", "MARK_SEEN"),
            node("c", "MESSAGE", message="joined"),
        ]
        edges = [edge("t", "a"), edge("t", "b"), edge("a", "a2"), edge("a2", "c"), edge("b", "c")]

        result = runner.run(nodes, edges, "DM", make_context())

        assert result.executed_node_ids == ["a", "b", "a2", "c"]
        assert messenger.sent_texts == ["joined"]


class TestFailures:
    def test_soft_failure_stops_only_its_branch(self, runner, make_context, services, node, edge):
        services.messaging = RecordingMessenger(fail_kinds={"text"})
        nodes = [
            node("t", "DM", "trigger"),
            node("m1", "MESSAGE", message="will fail"),
            node("after", "MARK_SEEN"),
            node("s", "TYPING_ON"),
        ]
        edges = [edge("t", "m1"), edge("m1", "after"), edge("t", "s")]

        result = runner.run(nodes, edges, "DM", make_context())

        assert result.status == RunStatus.PARTIAL
        assert not result.success
        assert result.soft_failures == ["m1"]
        assert result.executed_node_ids == ["m1", "s"]
        assert result.skipped_node_ids == ["after"]
        assert result.result_for("s").success
        assert result.message == "Flow completed with 1 failed node(s)"
        assert any(
            log.level == "warn" and log.message.startswith("Node MESSAGE failed")
            for log in result.logs
        )

    def test_missing_trigger_is_fatal(self, runner, make_context, keyword_flow):
        nodes, edges = keyword_flow

        result = runner.run(nodes, edges, "MENTION", make_context())

        assert result.status == RunStatus.FAILED
        assert result.fatal_error.code == FatalCode.MISSING_TRIGGER.value
        assert result.node_results == []
        assert result.message == "No MENTION trigger found in flow"

    def test_unresolved_subtype_is_fatal(self, registry, make_context, messenger, node, edge):
        runner = WorkflowRunner(registry)
        nodes = [
            node("t", "DM", "trigger"),
            node("x", "LOG_TO_SHEETS", sheetsConfig={"spreadsheetId": "s", "sheetName": "n"}),
            node("m", "MESSAGE", message="never"),
        ]

        result = runner.run(nodes, [edge("t", "x"), edge("t", "m")], "DM", make_context())

        assert result.status == RunStatus.FAILED
        assert result.fatal_error.code == "UNRESOLVED_SUBTYPE"
        assert result.fatal_error.node_id == "x"
        assert messenger.calls == []

    def test_raising_executor_is_fatal(self, test_runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("boom", "EXPLODE"),
            node("m", "MESSAGE", message="never"),
        ]

        result = test_runner.run(nodes, [edge("t", "boom"), edge("t", "m")], "DM", make_context())

        assert result.status == RunStatus.FAILED
        assert result.fatal_error.code == "EXECUTOR_RAISED"
        assert result.fatal_error.node_id == "boom"
        assert "kaboom" in result.fatal_error.message
        assert result.message.startswith("Flow execution failed")
        assert messenger.calls == []

    def test_wrong_return_type_is_fatal(self, test_runner, make_context, node, edge):
        nodes = [node("t", "DM", "trigger"), node("s", "SLOPPY")]

        result = test_runner.run(nodes, [edge("t", "s")], "DM", make_context())

        assert result.fatal_error.code == "EXECUTOR_RAISED"
        assert "dict" in result.fatal_error.message

    def test_current_node_is_cleared_after_raise(self, test_runner, make_context, node, edge):
        context = make_context()

        test_runner.run([node("t", "DM", "trigger"), node("b", "EXPLODE")], [edge("t", "b")], "DM", context)

        assert context.current_node_id is None


class TestGeneratedTextHandoff:
    def test_message_sends_generated_text_once(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("ai", "SMARTAI", message="Answer politely"),
            node("m1", "MESSAGE"),
            node("m2", "MESSAGE", message="Anything else?"),
        ]
        edges = [edge("t", "ai"), edge("ai", "m1"), edge("m1", "m2")]
        context = make_context(message_text="Where is my order?")

        result = runner.run(nodes, edges, "DM", context)

        assert result.success
        assert messenger.sent_texts == ["Generated reply", "Anything else?"]
        assert not context.has_generated_text

    def test_comment_reply_consumes_generated_text(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "COMMENT", "trigger"),
            node("ai", "SMARTAI", prompt="Reply to comments"),
            node("r", "REPLY_COMMENT"),
        ]
        context = make_context(trigger_type="COMMENT", comment_id="c-1", message_text="Cute!")

        result = runner.run(nodes, [edge("t", "ai"), edge("ai", "r")], "COMMENT", context)

        assert result.success
        assert messenger.calls_of("comment_reply")[0].text == "Generated reply"

    def test_sibling_branch_keeps_its_static_text(self, runner, make_context, messenger, node, edge):
        """A message on a parallel branch does not pick up another branch's generated text."""
        nodes = [
            node("t", "DM", "trigger"),
            node("ai", "SMARTAI", message="Answer politely"),
            node("m1", "MESSAGE", message="Static hello"),
            node("m2", "MESSAGE"),
        ]
        edges = [edge("t", "ai"), edge("t", "m1"), edge("ai", "m2")]
        context = make_context(message_text="hi", subscription="PRO")

        result = runner.run(nodes, edges, "DM", context)

        assert result.success
        assert result.executed_node_ids == ["ai", "m1", "m2"]
        assert messenger.sent_texts == ["Static hello", "Generated reply"]
        assert not context.has_generated_text

    def test_parallel_generators_each_feed_their_branch(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("ai1", "SMARTAI", message="first"),
            node("ai2", "SMARTAI", message="second"),
            node("m1", "MESSAGE"),
            node("m2", "MESSAGE"),
        ]
        edges = [edge("t", "ai1"), edge("t", "ai2"), edge("ai1", "m1"), edge("ai2", "m2")]

        result = runner.run(nodes, edges, "DM", make_context(message_text="hi"))

        assert result.success
        assert result.soft_failures == []
        assert messenger.sent_texts == ["Generated reply", "Generated reply"]

    def test_text_is_dropped_when_its_branch_ends_unsent(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("ai", "SMARTAI", message="Answer politely"),
            node("k", "KEYWORDS", "condition", keywords=["refund"]),
            node("m1", "MESSAGE"),
            node("m2", "MESSAGE", message="Static hello"),
        ]
        edges = [edge("t", "ai"), edge("ai", "k"), edge("k", "m1"), edge("t", "m2")]
        context = make_context(message_text="hello there")

        result = runner.run(nodes, edges, "DM", context)

        assert result.success
        assert result.skipped_node_ids == ["m1"]
        assert messenger.sent_texts == ["Static hello"]
        assert not context.has_generated_text
        dropped = [entry for entry in result.logs if "never sent" in entry.message]
        assert len(dropped) == 1
        assert dropped[0].node_id == "ai"
        assert dropped[0].level == "warn"


class TestLegacyDispatch:
    def test_legacy_subtype_runs_through_bridge(self, runner, make_context, messenger, node, edge):
        nodes = [
            node("t", "DM", "trigger"),
            node("p", "PRODUCT_TEMPLATE", productIds=["sku-1"]),
            node("m", "MESSAGE", message="after products"),
        ]

        result = runner.run(nodes, [edge("t", "p"), edge("p", "m")], "DM", make_context())

        assert result.success
        assert result.result_for("p").executor_source == "legacy"
        assert result.result_for("m").executor_source == "registry"
        assert [c.kind for c in messenger.calls] == ["product_template", "text"]


class TestRunResult:
    def test_labelled_edge_from_action_still_matches(self, runner, make_context, messenger, node, edge):
        nodes = [node("t", "DM", "trigger"), node("m", "MESSAGE", message="x")]

        result = runner.run(nodes, [edge("t", "m", branch="yes")], "DM", make_context())

        assert result.executed_node_ids == ["m"]

    def test_explicit_items(self, runner, make_context, node, edge):
        nodes = [node("t", "DM", "trigger"), node("m", "MESSAGE")]

        result = runner.run(
            nodes, [edge("t", "m")], "DM", make_context(), items=[Item.from_dict({"message": "from caller"})]
        )

        assert result.result_for("m").items[0]["messageSent"] == "from caller"

    def test_audit_record_is_json_safe(self, runner, make_context, keyword_flow):
        nodes, edges = keyword_flow
        result = runner.run(nodes, edges, "COMMENT", make_context(message_text="price"))

        record = result.to_audit_record()

        json.dumps(record)
        assert record["success"] is True
        assert record["status"] == "success"
        assert record["run_id"] == result.run_id
        assert [r["node_id"] for r in record["node_results"]] == ["k", "m"]

    def test_node_logs_keyed_by_node(self, runner, make_context, keyword_flow):
        nodes, edges = keyword_flow
        result = runner.run(nodes, edges, "COMMENT", make_context(message_text="price"))

        logs = result.node_logs()

        assert set(logs) == {"k", "m"}
        assert any(e.message == "Keyword matched" for e in logs["k"])

    def test_runs_are_deterministic(self, runner, keyword_flow, node, edge):
        nodes = keyword_flow[0] + [node("f", "IS_FOLLOWER", "condition"), node("m2", "MESSAGE", message="2")]
        edges = keyword_flow[1] + [edge("t", "f"), edge("f", "m2", branch="no")]

        def run_once():
            context = ExecutionContext(
                run_id="run-1",
                trigger_type="COMMENT",
                message_text="price please",
                sender_id="user-1",
                page_id="page-1",
                services=build_dry_run_capabilities(),
            )
            result = runner.run(nodes, edges, "COMMENT", context)
            return (
                result.executed_node_ids,
                result.skipped_node_ids,
                [(log.node_id, log.level, log.message, log.data) for log in result.logs],
                context.services.messaging.sent_texts,
            )

        assert run_once() == run_once()

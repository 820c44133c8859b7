"""
Flow Engine CLI - Main entry point.

Provides commands for:
- Listing executable node subtypes
- Validating flow files against a plan tier
- Dry-running flows against recording collaborators
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
import yaml


# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("flow_engine")


def load_flow_file(path: str) -> Dict[str, Any]:
    """
    Load a flow from a JSON or YAML file.

    The file holds ``nodes`` and ``edges`` at the top level, or under a
    ``flow`` key as exported by the editor.
    """
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise click.ClickException(f"{path}: expected a mapping with nodes and edges")
    if "flow" in data and isinstance(data["flow"], dict):
        data = data["flow"]
    return {"nodes": data.get("nodes") or [], "edges": data.get("edges") or []}


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("-q", "--quiet", is_flag=True, help="Suppress output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool):
    """Flow Engine - validate and test-run automation flows."""
    ctx.ensure_object(dict)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif quiet:
        logging.getLogger().setLevel(logging.ERROR)

    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


# ==============================================================================
# Node Commands
# ==============================================================================

@cli.command("nodes")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def nodes_list(as_json: bool):
    """List executable node subtypes."""
    from flow_engine.node_registry import get_node_registry
    from flow_engine.workflow_runtime import LegacyBridge

    registry = get_node_registry()
    definitions = registry.list_nodes() + LegacyBridge(registry).list_nodes()

    if as_json:
        click.echo(json.dumps(
            [d.model_dump(exclude={"config_schema"}) for d in definitions],
            indent=2,
        ))
        return

    click.echo(f"Nodes ({len(definitions)}):")
    for d in sorted(definitions, key=lambda d: (d.category, d.sub_type)):
        marker = " [legacy]" if d.source == "legacy" else ""
        click.echo(f"  {d.category:<10} {d.sub_type:<18} {d.description}{marker}")


# ==============================================================================
# Flow Commands
# ==============================================================================

@cli.command("validate")
@click.argument("flow_file", type=click.Path(exists=True))
@click.option("--plan", "-p", default=None, help="Plan tier (default from settings)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def validate(flow_file: str, plan: Optional[str], as_json: bool):
    """
    Validate a flow file.

    FLOW_FILE: JSON or YAML file with nodes and edges

    Examples:

        flow-engine validate ./flow.json --plan PRO
    """
    from flow_engine.engine import validate_flow

    flow = load_flow_file(flow_file)
    report = validate_flow(flow["nodes"], flow["edges"], plan)

    if as_json:
        click.echo(json.dumps(report.model_dump(mode="json") | {"ok": report.ok}, indent=2))
        sys.exit(0 if report.ok else 1)

    click.echo(f"Plan: {report.plan}")
    for v in report.violations:
        click.echo(f"  ERROR   {v.code}: {v.message}")
    for w in report.warnings:
        click.echo(f"  WARNING {w.code}: {w.message}")

    if report.ok:
        click.echo("Flow is valid")
        sys.exit(0)
    click.echo(f"Flow is invalid ({len(report.violations)} violation(s))")
    sys.exit(1)


@cli.command("test-run")
@click.argument("flow_file", type=click.Path(exists=True))
@click.option("--trigger", "-t", "trigger_type", default="DM",
              type=click.Choice(["DM", "COMMENT", "STORY_REPLY", "MENTION"], case_sensitive=False),
              help="Inbound event kind")
@click.option("--message", "-m", default="Hello", help="Simulated message text")
@click.option("--sender", default="test-sender", help="Simulated sender ID")
@click.option("--comment-id", default=None, help="Simulated comment ID")
@click.option("--media-id", default=None, help="Simulated media ID")
@click.option("--follower", is_flag=True, help="Treat the sender as a follower")
@click.option("--ai-response", "ai_responses", multiple=True, help="Scripted AI response (repeatable)")
@click.option("--plan", "-p", default=None, help="Plan tier (default from settings)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def test_run(
    flow_file: str,
    trigger_type: str,
    message: str,
    sender: str,
    comment_id: Optional[str],
    media_id: Optional[str],
    follower: bool,
    ai_responses: Tuple[str, ...],
    plan: Optional[str],
    as_json: bool,
):
    """
    Dry-run a flow: nothing is sent, outbound calls are printed.

    FLOW_FILE: JSON or YAML file with nodes and edges

    Examples:

        flow-engine test-run ./flow.json -t COMMENT -m "price?" --comment-id c1
    """
    from flow_engine.engine import build_dry_run_capabilities, run_flow
    from flow_engine.node_sdk import ExecutionContext

    flow = load_flow_file(flow_file)
    services = build_dry_run_capabilities(
        followers=[sender] if follower else [],
        ai_responses=list(ai_responses),
    )
    context = ExecutionContext(
        trigger_type=trigger_type.upper(),
        message_text=message,
        sender_id=sender,
        page_id="test-page",
        comment_id=comment_id,
        media_id=media_id,
        token="dry-run",
        dry_run=True,
        services=services,
    )

    result = run_flow(context.trigger_type, flow["nodes"], flow["edges"], context, plan=plan)
    calls = services.messaging.calls

    if as_json:
        body = result.model_dump(mode="json")
        body["success"] = result.success
        body["outboundCalls"] = [c.model_dump() for c in calls]
        click.echo(json.dumps(body, indent=2, default=str))
        sys.exit(0 if result.success else 1)

    click.echo(f"Run: {result.run_id}")
    click.echo(f"Status: {result.status.value}")
    click.echo(f"Message: {result.message}")

    for v in result.violations:
        click.echo(f"  VIOLATION {v.code}: {v.message}")

    if result.node_results:
        click.echo("\nNodes:")
        for r in result.node_results:
            mark = "ok" if r.success else "FAILED"
            click.echo(f"  {r.node_id:<16} {r.sub_type:<18} {mark:<7} {r.message or ''}")

    if result.skipped_node_ids:
        click.echo(f"\nSkipped: {', '.join(result.skipped_node_ids)}")

    if calls:
        click.echo("\nOutbound calls:")
        for call in calls:
            detail = call.text if call.text is not None else json.dumps(call.payload, default=str)
            click.echo(f"  {call.kind:<16} {detail}")

    sys.exit(0 if result.success else 1)


# ==============================================================================
# Entry Point
# ==============================================================================

def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

"""
Command-line interface for nexflow.

Usage:
    nexflow run flows/checkout.json --input '{"amount": 750}'
    nexflow run flows/parent.json --flow flows/child.json --connectors connectors.json
    nexflow validate flows/checkout.json

Exit code 0 when the run ends SUCCESS (or the graph is valid), 1 otherwise.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from nexflow.config import EngineConfig
from nexflow.connectors import Connector
from nexflow.errors import InvalidFlowGraphError
from nexflow.graph.edge import FlowGraph, load_flow_graph
from nexflow.nodes.defaults import create_default_registry
from nexflow.observability import configure_logging
from nexflow.runtime import FlowRuntime
from nexflow.storage import ExecutionState, InMemoryConnectorStore, InMemoryFlowStore

logger = logging.getLogger(__name__)


def _parse_input(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("--input must be a JSON object")
    return data


def _load_connectors(path: str | None) -> list[Connector]:
    if not path:
        return []
    with open(path, encoding="utf-8") as f:
        return TypeAdapter(list[Connector]).validate_json(f.read())


async def _run_flow(
    graph: FlowGraph,
    extra_flows: list[FlowGraph],
    connectors: list[Connector],
    payload: dict[str, Any],
    config: EngineConfig,
) -> tuple[ExecutionState, dict[str, Any]]:
    registry = create_default_registry(config, connectors=InMemoryConnectorStore(connectors))
    runtime = FlowRuntime(InMemoryFlowStore([graph, *extra_flows]), registry=registry, config=config)

    execution = await runtime.trigger_flow_sync(graph.id, payload, triggered_by="CLI")
    # ASYNC sub-flows outlive their parent; let them finish before the loop closes
    await runtime.drain()
    return execution.status, execution.snapshot or {}


def cmd_run(args: argparse.Namespace) -> int:
    configure_logging(args.log_level, args.log_format)

    try:
        graph = load_flow_graph(args.graph)
        extra_flows = [load_flow_graph(path) for path in args.flow or []]
        connectors = _load_connectors(args.connectors)
        payload = _parse_input(args.input)
    except (InvalidFlowGraphError, ValidationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    config = EngineConfig()
    if args.max_steps is not None:
        config.max_steps = args.max_steps

    status, snapshot = asyncio.run(_run_flow(graph, extra_flows, connectors, payload, config))
    print(json.dumps(snapshot, indent=2, default=str))
    return 0 if status == ExecutionState.SUCCESS else 1


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        graph = load_flow_graph(args.graph)
    except InvalidFlowGraphError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    registry = create_default_registry(EngineConfig())
    problems = graph.validate(registry.supported_types)
    if not problems:
        print(f"{Path(args.graph).name}: OK ({len(graph.nodes)} nodes, {len(graph.edges)} edges)")
        return 0

    for problem in problems:
        print(f"  - {problem}")
    print(f"{Path(args.graph).name}: {len(problems)} problem(s)")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexflow",
        description="nexflow - Run and validate flow graphs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_cmd = subparsers.add_parser("run", help="Run a flow graph and print its snapshot")
    run_cmd.add_argument("graph", help="Path to the flow graph JSON file")
    run_cmd.add_argument("--input", help="Trigger payload as a JSON object")
    run_cmd.add_argument(
        "--flow",
        action="append",
        help="Additional flow graph a SUB_FLOW node may target (repeatable)",
    )
    run_cmd.add_argument("--connectors", help="JSON file with a list of NEXUS connectors")
    run_cmd.add_argument("--max-steps", type=int, help="Step ceiling for graphs without their own")
    run_cmd.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    run_cmd.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "human", "json"],
        help="Log output format",
    )
    run_cmd.set_defaults(func=cmd_run)

    validate_cmd = subparsers.add_parser("validate", help="Check a flow graph for structural problems")
    validate_cmd.add_argument("graph", help="Path to the flow graph JSON file")
    validate_cmd.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()

"""
Tests for FlowExecutionEngine: walking, routing, cycles, step ceiling,
loops, retries and the failure paths that must never crash a run.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from nexflow.errors import ExecutorNotRegisteredError
from nexflow.graph.context import ExecutionContext, ExecutionStatus
from nexflow.graph.edge import EdgeCondition, EdgeSpec, FlowGraph
from nexflow.graph.executor import FlowExecutionEngine
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.nodes.base import NodeExecutor
from nexflow.nodes.data import MapperExecutor, VariableExecutor
from nexflow.nodes.decision import DecisionExecutor
from nexflow.nodes.lifecycle import FailureExecutor, StartExecutor, SuccessExecutor
from nexflow.nodes.loop import LoopExecutor
from nexflow.nodes.registry import NodeExecutorRegistry
from nexflow.runtime.event_bus import EventBus, EventType


# ---- Fake executors ----
class AlwaysFailsExecutor(NodeExecutor):
    """SCRIPT stand-in that fails every attempt."""

    def __init__(self):
        self.attempts = 0

    def supported_type(self) -> NodeType:
        return NodeType.SCRIPT

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        self.attempts += 1
        return NodeResult.failed(node, f"boom {self.attempts}")


class LoopBodyExecutor(NodeExecutor):
    """SCRIPT stand-in that reports the current loop index as {"v": i}."""

    def __init__(self, loop_node_id: str = "loop"):
        self.loop_node_id = loop_node_id

    def supported_type(self) -> NodeType:
        return NodeType.SCRIPT

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        index = context.get_loop_state(self.loop_node_id).index
        return self._result(node, NodeStatus.SUCCESS, success_output={"v": index})


class CountingExecutor(NodeExecutor):
    """SCRIPT stand-in that reports how many times it has run as {"v": n}."""

    def __init__(self):
        self.calls = 0

    def supported_type(self) -> NodeType:
        return NodeType.SCRIPT

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        self.calls += 1
        return self._result(node, NodeStatus.SUCCESS, success_output={"v": self.calls})


class RaisingExecutor(NodeExecutor):
    def supported_type(self) -> NodeType:
        return NodeType.SCRIPT

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        raise RuntimeError("executor exploded")


def make_registry(*extra: NodeExecutor) -> NodeExecutorRegistry:
    return NodeExecutorRegistry(
        [
            StartExecutor(),
            SuccessExecutor(),
            FailureExecutor(),
            VariableExecutor(),
            MapperExecutor(),
            DecisionExecutor(),
            LoopExecutor(),
            *extra,
        ]
    )


def node(node_id: str, node_type: NodeType, label: str = "", **config) -> NodeSpec:
    return NodeSpec(id=node_id, node_type=node_type, label=label, config=config)


def edge(source: str, target: str, condition: EdgeCondition = EdgeCondition.DEFAULT) -> EdgeSpec:
    return EdgeSpec(source=source, target=target, condition=condition)


@pytest.fixture(autouse=True)
def fast_sleep(monkeypatch):
    """Mock asyncio.sleep to avoid real delays from retry backoff."""
    sleep = AsyncMock()
    monkeypatch.setattr("asyncio.sleep", sleep)
    return sleep


@pytest.mark.asyncio
async def test_linear_flow_succeeds_and_records_order():
    graph = FlowGraph(
        id="linear",
        nodes=[
            node("start", NodeType.START),
            node("vars", NodeType.VARIABLE, variables={"a": "2", "b": "3"}),
            node("done", NodeType.SUCCESS, response={"sum": "{{variables.a + variables.b}}"}),
        ],
        edges=[edge("start", "vars"), edge("vars", "done")],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.SUCCESS
    assert context.node_execution_order == ["start", "vars", "done"]
    assert context.variables == {"a": 2, "b": 3}
    assert context.nodes["done"].output == {"sum": 5}
    assert context.meta.completed_at is not None


@pytest.mark.asyncio
async def test_trigger_payload_is_start_body():
    graph = FlowGraph(
        id="payload",
        nodes=[
            node("start", NodeType.START, label="Start"),
            node("map", NodeType.MAPPER, output={"email": "{{nodes.start.output.body.email}}"}),
            node("done", NodeType.SUCCESS),
        ],
        edges=[edge("start", "map"), edge("map", "done")],
    )

    context = await FlowExecutionEngine(make_registry()).execute(
        graph, "exec-1", trigger_payload={"email": "a@b.c"}
    )

    assert context.nodes["start"].output == {"body": {"email": "a@b.c"}}
    assert context.nodes["map"].output == {"email": "a@b.c"}


@pytest.mark.asyncio
async def test_unconditional_two_node_cycle_is_stopped():
    graph = FlowGraph(
        id="cycle",
        nodes=[
            node("start", NodeType.START),
            node("a", NodeType.MAPPER, label="A"),
            node("b", NodeType.MAPPER, label="B"),
        ],
        edges=[edge("start", "a"), edge("a", "b"), edge("b", "a")],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.FAILURE
    assert "Loop detected" in context.meta.error_message
    assert context.node_execution_order == ["start", "a", "b"]


@pytest.mark.asyncio
async def test_step_ceiling_stops_run():
    graph = FlowGraph(
        id="ceiling",
        max_steps=2,
        nodes=[
            node("start", NodeType.START),
            node("a", NodeType.MAPPER),
            node("b", NodeType.MAPPER),
            node("done", NodeType.SUCCESS),
        ],
        edges=[edge("start", "a"), edge("a", "b"), edge("b", "done")],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.FAILURE
    assert "maximum of 2 steps" in context.meta.error_message
    assert context.node_execution_order == ["start", "a"]


@pytest.mark.asyncio
async def test_decision_routes_success_and_failure_edges():
    graph = FlowGraph(
        id="decision",
        nodes=[
            node("start", NodeType.START),
            node(
                "check",
                NodeType.DECISION,
                left="{{nodes.start.output.body.amount}}",
                operator="GT",
                right="500",
            ),
            node("big", NodeType.SUCCESS, response={"tier": "big"}),
            node("small", NodeType.SUCCESS, response={"tier": "small"}),
        ],
        edges=[
            edge("start", "check"),
            edge("check", "big", EdgeCondition.SUCCESS),
            edge("check", "small", EdgeCondition.FAILURE),
        ],
    )
    engine = FlowExecutionEngine(make_registry())

    big = await engine.execute(graph, "exec-1", {"amount": 750})
    small = await engine.execute(graph, "exec-2", {"amount": 20})

    assert big.node_execution_order[-1] == "big"
    assert small.node_execution_order[-1] == "small"
    # A routed FAILURE is a branch, not a run failure
    assert small.meta.status == ExecutionStatus.SUCCESS


@pytest.mark.asyncio
async def test_unrouted_failure_fails_run():
    graph = FlowGraph(
        id="unrouted",
        nodes=[
            node("start", NodeType.START),
            node("work", NodeType.SCRIPT, label="Work"),
            node("done", NodeType.SUCCESS),
        ],
        edges=[edge("start", "work"), edge("work", "done", EdgeCondition.SUCCESS)],
    )

    context = await FlowExecutionEngine(make_registry(AlwaysFailsExecutor())).execute(graph, "e")

    assert context.meta.status == ExecutionStatus.FAILURE
    assert context.meta.error_message == "boom 1"
    assert "done" not in context.nodes


@pytest.mark.asyncio
async def test_failure_terminal_ends_run_as_failure():
    graph = FlowGraph(
        id="terminal",
        nodes=[
            node("start", NodeType.START),
            node("rejected", NodeType.FAILURE, label="Rejected", response={"reason": "no"}),
        ],
        edges=[edge("start", "rejected")],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.FAILURE
    assert context.meta.error_message == "Flow ended at FAILURE node 'Rejected'"


@pytest.mark.asyncio
async def test_loop_accumulates_body_outputs():
    graph = FlowGraph(
        id="loop",
        nodes=[
            node("start", NodeType.START),
            node("loop", NodeType.LOOP, condition="{{loop.index}} < 3", saveOutputAs="pages"),
            node("body", NodeType.SCRIPT),
            node("done", NodeType.SUCCESS),
        ],
        edges=[
            edge("start", "loop"),
            edge("loop", "body", EdgeCondition.CONTINUE),
            edge("body", "loop"),
            edge("loop", "done", EdgeCondition.SUCCESS),
        ],
    )

    context = await FlowExecutionEngine(make_registry(LoopBodyExecutor())).execute(graph, "e")

    assert context.meta.status == ExecutionStatus.SUCCESS
    summary = context.nodes["loop"].success_output
    assert summary["index"] == 3
    assert summary["accumulated"] == [{"v": 1}, {"v": 2}, {"v": 3}]
    assert summary["iterationCount"] == 4
    assert context.nex["pages"] == summary


@pytest.mark.asyncio
async def test_loop_without_continue_edge_fails():
    graph = FlowGraph(
        id="loop-no-continue",
        nodes=[
            node("start", NodeType.START),
            node("loop", NodeType.LOOP, label="Repeat", condition="true"),
            node("done", NodeType.SUCCESS),
        ],
        edges=[edge("start", "loop"), edge("loop", "done", EdgeCondition.SUCCESS)],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.FAILURE
    assert "no CONTINUE edge" in context.meta.error_message


@pytest.mark.asyncio
async def test_loop_overflow_fails():
    graph = FlowGraph(
        id="loop-forever",
        nodes=[
            node("start", NodeType.START),
            node("loop", NodeType.LOOP, condition="true", maxIterations=2),
            node("body", NodeType.MAPPER),
        ],
        edges=[
            edge("start", "loop"),
            edge("loop", "body", EdgeCondition.CONTINUE),
            edge("body", "loop"),
        ],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.FAILURE
    assert "max iterations (2)" in context.meta.error_message


@pytest.mark.asyncio
async def test_loop_overflow_ends_run_even_with_failure_route():
    graph = FlowGraph(
        id="loop-overflow-routed",
        nodes=[
            node("start", NodeType.START),
            node("loop", NodeType.LOOP, condition="true", maxIterations=2),
            node("body", NodeType.MAPPER),
            node("done", NodeType.SUCCESS),
        ],
        edges=[
            edge("start", "loop"),
            edge("loop", "body", EdgeCondition.CONTINUE),
            edge("body", "loop"),
            edge("loop", "done", EdgeCondition.FAILURE),
        ],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.FAILURE
    assert context.meta.error_message.startswith("Loop exceeded max iterations (2)")
    assert "done" not in context.nodes
    assert context.node_execution_order[-1] == "loop"


@pytest.mark.asyncio
async def test_loop_without_continue_edge_is_not_retried_or_routed(fast_sleep):
    graph = FlowGraph(
        id="loop-no-continue-routed",
        nodes=[
            node("start", NodeType.START),
            node("loop", NodeType.LOOP, condition="true", retry={"maxRetries": 3}),
            node("done", NodeType.SUCCESS),
        ],
        edges=[edge("start", "loop"), edge("loop", "done")],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.FAILURE
    assert "no CONTINUE edge" in context.meta.error_message
    assert "done" not in context.nodes
    fast_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_loop_condition_without_braces():
    graph = FlowGraph(
        id="loop-bare",
        nodes=[
            node("start", NodeType.START),
            node("loop", NodeType.LOOP, condition="loop.index < 3"),
            node("body", NodeType.SCRIPT),
            node("done", NodeType.SUCCESS),
        ],
        edges=[
            edge("start", "loop"),
            edge("loop", "body", EdgeCondition.CONTINUE),
            edge("body", "loop"),
            edge("loop", "done", EdgeCondition.SUCCESS),
        ],
    )

    context = await FlowExecutionEngine(make_registry(LoopBodyExecutor())).execute(graph, "e")

    assert context.meta.status == ExecutionStatus.SUCCESS
    summary = context.nodes["loop"].success_output
    assert summary["index"] == 3
    assert summary["accumulated"] == [{"v": 1}, {"v": 2}, {"v": 3}]


@pytest.mark.asyncio
async def test_loop_after_body_keeps_first_body_output():
    counter = CountingExecutor()
    graph = FlowGraph(
        id="loop-tail",
        nodes=[
            node("start", NodeType.START),
            node("body", NodeType.SCRIPT),
            node("loop", NodeType.LOOP, condition="loop.index < 3"),
            node("done", NodeType.SUCCESS),
        ],
        edges=[
            edge("start", "body"),
            edge("body", "loop"),
            edge("loop", "body", EdgeCondition.CONTINUE),
            edge("loop", "done", EdgeCondition.SUCCESS),
        ],
    )

    context = await FlowExecutionEngine(make_registry(counter)).execute(graph, "e")

    assert context.meta.status == ExecutionStatus.SUCCESS
    assert counter.calls == 4
    summary = context.nodes["loop"].success_output
    assert summary["index"] == 3
    assert summary["accumulated"] == [{"v": 1}, {"v": 2}, {"v": 3}, {"v": 4}]


@pytest.mark.asyncio
async def test_shared_successor_runs_once():
    graph = FlowGraph(
        id="diamond",
        nodes=[
            node("start", NodeType.START),
            node("a", NodeType.MAPPER, output={"side": "a"}),
            node("b", NodeType.MAPPER, output={"side": "b"}),
            node("join", NodeType.MAPPER, output={"joined": True}),
        ],
        edges=[edge("start", "a"), edge("start", "b"), edge("a", "join"), edge("b", "join")],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.SUCCESS
    assert context.node_execution_order == ["start", "a", "b", "join"]


@pytest.mark.asyncio
async def test_retry_backoff_grows_by_multiplier(fast_sleep):
    failing = AlwaysFailsExecutor()
    graph = FlowGraph(
        id="retry",
        nodes=[
            node("start", NodeType.START),
            node(
                "work",
                NodeType.SCRIPT,
                retry={"maxRetries": 2, "backoffMs": 100, "backoffMultiplier": 2.0},
            ),
        ],
        edges=[edge("start", "work")],
    )

    context = await FlowExecutionEngine(make_registry(failing)).execute(graph, "exec-1")

    assert failing.attempts == 3
    assert [call.args[0] for call in fast_sleep.await_args_list] == pytest.approx([0.1, 0.2])
    assert context.nodes["work"].status == NodeStatus.FAILURE
    assert context.meta.status == ExecutionStatus.FAILURE


@pytest.mark.asyncio
async def test_cancelled_backoff_keeps_failure_and_stops(fast_sleep):
    fast_sleep.side_effect = asyncio.CancelledError
    failing = AlwaysFailsExecutor()
    graph = FlowGraph(
        id="retry-cancelled",
        nodes=[
            node("start", NodeType.START),
            node("work", NodeType.SCRIPT, retry={"maxRetries": 3, "backoffMs": 1000}),
            node("recover", NodeType.MAPPER, output={"recovered": True}),
        ],
        edges=[edge("start", "work"), edge("work", "recover", EdgeCondition.FAILURE)],
    )

    context = await FlowExecutionEngine(make_registry(failing)).execute(graph, "exec-1")

    assert failing.attempts == 1
    assert context.nodes["work"].error_message == "boom 1"
    assert "recover" not in context.nodes
    assert context.node_execution_order == ["start", "work"]
    assert context.meta.status == ExecutionStatus.FAILURE
    assert context.meta.error_message.startswith("Run cancelled while node 'work' waited to retry")


@pytest.mark.asyncio
async def test_executor_exception_becomes_failure_result():
    bus = EventBus()
    graph = FlowGraph(
        id="raises",
        nodes=[node("start", NodeType.START), node("work", NodeType.SCRIPT)],
        edges=[edge("start", "work")],
    )

    context = await FlowExecutionEngine(make_registry(RaisingExecutor()), event_bus=bus).execute(
        graph, "exec-1"
    )

    result = context.nodes["work"]
    assert result.status == NodeStatus.FAILURE
    assert result.failure_output == {"error": "executor exploded"}
    errors = bus.get_history(event_type=EventType.NODE_ERROR)
    assert len(errors) == 1
    assert errors[0].node_id == "work"


@pytest.mark.asyncio
async def test_missing_executor_propagates():
    graph = FlowGraph(
        id="missing",
        nodes=[node("start", NodeType.START), node("ai", NodeType.AI)],
        edges=[edge("start", "ai")],
    )

    with pytest.raises(ExecutorNotRegisteredError):
        await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")


@pytest.mark.asyncio
async def test_save_output_as_and_label_alias():
    graph = FlowGraph(
        id="nex",
        nodes=[
            node("start", NodeType.START),
            node("m1", NodeType.MAPPER, label="Build User", output={"name": "ada"}, saveOutputAs="user"),
            node("m2", NodeType.MAPPER, output={"greeting": "hi {{nex.user.name}}"}),
            node("m3", NodeType.MAPPER, output={"again": "{{nodes.buildUser.output.name}}"}),
            node("bad", NodeType.MAPPER, output={"x": 1}, saveOutputAs="1bad"),
        ],
        edges=[edge("start", "m1"), edge("m1", "m2"), edge("m2", "m3"), edge("m3", "bad")],
    )

    context = await FlowExecutionEngine(make_registry()).execute(graph, "exec-1")

    assert context.nex == {"user": {"name": "ada"}}
    assert context.nodes["m2"].output == {"greeting": "hi ada"}
    assert context.nodes["m3"].output == {"again": "ada"}
    snapshot = context.to_snapshot()
    assert "nodeAliases" not in snapshot
    assert set(snapshot) == {"meta", "variables", "nodes", "nex", "nodeExecutionOrder"}


@pytest.mark.asyncio
async def test_node_events_carry_nex_snapshot():
    bus = EventBus()
    graph = FlowGraph(
        id="events",
        nodes=[
            node("start", NodeType.START),
            node("m", NodeType.MAPPER, output={"k": "v"}, saveOutputAs="saved"),
            node("done", NodeType.SUCCESS),
        ],
        edges=[edge("start", "m"), edge("m", "done")],
    )

    await FlowExecutionEngine(make_registry(), event_bus=bus).execute(graph, "exec-1")

    completed = bus.get_history(event_type=EventType.NODE_COMPLETED, execution_id="exec-1")
    by_node = {e.node_id: e for e in completed}
    assert by_node["m"].data == {"status": "SUCCESS", "nex": {"saved": {"k": "v"}}}
    assert by_node["m"].flow_id == "events"
    assert len(bus.get_history(event_type=EventType.NODE_STARTED)) == 3


@pytest.mark.asyncio
async def test_slow_subscriber_does_not_hold_up_run():
    bus = EventBus()
    release = asyncio.Event()
    handled: list[str] = []

    async def slow(event) -> None:
        await release.wait()
        handled.append(event.node_id)

    bus.subscribe([EventType.NODE_STARTED], slow)
    graph = FlowGraph(
        id="slow-observer",
        nodes=[
            node("start", NodeType.START),
            node("m", NodeType.MAPPER, output={"k": "v"}),
            node("done", NodeType.SUCCESS),
        ],
        edges=[edge("start", "m"), edge("m", "done")],
    )

    context = await asyncio.wait_for(
        FlowExecutionEngine(make_registry(), event_bus=bus).execute(graph, "exec-1"),
        timeout=1,
    )

    assert context.meta.status == ExecutionStatus.SUCCESS
    assert handled == []

    release.set()
    await bus.flush()
    assert sorted(handled) == ["done", "m", "start"]


@pytest.mark.asyncio
async def test_failing_event_bus_never_fails_run():
    bus = AsyncMock()
    bus.emit_node_started.side_effect = RuntimeError("bus down")
    bus.emit_node_completed.side_effect = RuntimeError("bus down")
    graph = FlowGraph(
        id="bus-down",
        nodes=[node("start", NodeType.START), node("done", NodeType.SUCCESS)],
        edges=[edge("start", "done")],
    )

    context = await FlowExecutionEngine(make_registry(), event_bus=bus).execute(graph, "exec-1")

    assert context.meta.status == ExecutionStatus.SUCCESS

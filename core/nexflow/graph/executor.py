"""
Flow Execution Engine - Walks a flow graph to produce one run.

The engine:
1. Builds a fresh ExecutionContext and seeds START with the trigger payload
2. Pulls nodes from a FIFO queue and runs each through the retry wrapper
3. Records results (by id, by label alias, and under "save output as" names)
4. Resolves successors from the outcome and the outgoing edges
5. Stops on a terminal node, a detected cycle, the step ceiling, or a
   halting failure (LOOP misconfiguration or overflow, cancelled retry)
6. Returns the final context for persistence

Node failures, cycles and overflow never raise; they end up in
meta.status / meta.error_message. Only a node type with no registered
executor propagates, since that is a deployment bug rather than a flow bug.
"""

import asyncio
import copy
import logging
from collections import deque
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from nexflow.graph.context import ExecutionContext, ExecutionStatus, alias_for_label
from nexflow.graph.edge import EdgeCondition, FlowGraph
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType, is_valid_save_key
from nexflow.graph.retry import RetryConfig
from nexflow.observability import reset_trace_context, set_trace_context

if TYPE_CHECKING:
    from nexflow.nodes.base import NodeExecutor
    from nexflow.nodes.registry import NodeExecutorRegistry
    from nexflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 5000

# Node types whose "save output as" handling is done by the executor itself
_SELF_SAVING_TYPES = (NodeType.VARIABLE, NodeType.LOOP)


class FlowExecutionEngine:
    """
    Interprets flow graphs.

    Example:
        engine = FlowExecutionEngine(registry=create_default_registry(...))

        context = await engine.execute(
            graph=flow_graph,
            execution_id="exec_123",
            trigger_payload={"amount": 750},
        )
        context.meta.status  # ExecutionStatus.SUCCESS
    """

    def __init__(
        self,
        registry: "NodeExecutorRegistry",
        event_bus: "EventBus | None" = None,
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        """
        Args:
            registry: Node type -> executor dispatch table
            event_bus: Optional EventBus for live node events
            max_steps: Default step ceiling; a graph's own max_steps wins
        """
        self.registry = registry
        self._event_bus = event_bus
        self.max_steps = max_steps

    async def execute(
        self,
        graph: FlowGraph,
        execution_id: str,
        trigger_payload: dict[str, Any] | None = None,
    ) -> ExecutionContext:
        """Run the graph to completion and return the final context."""
        context = ExecutionContext.create(graph.id, execution_id)
        token = set_trace_context(flow_id=graph.id, execution_id=execution_id)
        try:
            await self._run(graph, context, trigger_payload or {})
        finally:
            reset_trace_context(token)
        return context

    async def _run(
        self,
        graph: FlowGraph,
        context: ExecutionContext,
        trigger_payload: dict[str, Any],
    ) -> None:
        meta = context.meta
        max_steps = graph.max_steps or self.max_steps

        start_node = graph.find_start_node()
        if start_node is None:
            logger.warning(f"Flow '{graph.id}' has no START node; using an empty default")
            start_node = NodeSpec(id="start", node_type=NodeType.START, label="Start")
        self._inject_trigger_payload(start_node, context, trigger_payload)

        for node in graph.nodes:
            if node.node_type == NodeType.LOOP:
                meta.loop_node_has_continue_edge[node.id] = graph.has_continue_edge(node.id)
                meta.loop_body_nodes[node.id] = graph.loop_body(node.id)

        queue: deque[NodeSpec] = deque([start_node])
        queued: set[str] = {start_node.id}
        executed: set[str] = set()
        run_failed = False

        logger.info(f"🚀 Starting flow '{graph.name or graph.id}'")

        while queue:
            node = queue.popleft()
            queued.discard(node.id)
            meta.current_node_id = node.id
            set_trace_context(node_id=node.id)

            if len(context.node_execution_order) >= max_steps:
                meta.error_message = (
                    f"Execution exceeded the maximum of {max_steps} steps at node "
                    f"'{node.display_name}'. Check for an unbounded loop."
                )
                logger.error(meta.error_message)
                run_failed = True
                break

            step = len(context.node_execution_order) + 1
            logger.info(f"▶ Step {step}: {node.display_name} ({node.node_type})")
            await self._emit("emit_node_started", context, node_id=node.id)

            executor = self.registry.get(node.node_type, node.id)
            result = await self._execute_with_retry(executor, node, context)

            if node.node_type != NodeType.START:
                self._record_result(node, result, context)

            await self._emit(
                "emit_node_completed",
                context,
                node_id=node.id,
                status=result.status.value,
                nex=copy.deepcopy(context.nex),
            )

            context.node_execution_order.append(node.id)
            executed.add(node.id)

            if node.node_type.is_terminal:
                if result.status == NodeStatus.FAILURE:
                    run_failed = True
                    if meta.error_message is None:
                        meta.error_message = result.error_message or (
                            f"Flow ended at FAILURE node '{node.display_name}'"
                        )
                logger.info(f"■ Reached terminal node {node.display_name} ({node.node_type})")
                break

            if result.halts_run:
                run_failed = True
                if meta.error_message is None:
                    meta.error_message = result.error_message or (
                        f"Node '{node.display_name}' stopped the run"
                    )
                logger.error(f"✗ Run stopped at {node.display_name}: {meta.error_message}")
                break

            successors = self._resolve_successors(graph, node.id, result.status)

            if result.status == NodeStatus.FAILURE and not successors:
                run_failed = True
                if meta.error_message is None:
                    meta.error_message = result.error_message or (
                        f"Node '{node.display_name}' failed"
                    )
                logger.error(f"✗ Node {node.display_name} failed with no FAILURE route")

            # Non-terminal successors run before terminal ones
            successors.sort(key=lambda n: n.node_type.is_terminal)

            cycle = False
            for successor in successors:
                if successor.id in executed:
                    reentry_allowed = (
                        result.status == NodeStatus.CONTINUE
                        or successor.node_type == NodeType.LOOP
                    )
                    if not reentry_allowed:
                        meta.error_message = (
                            f"Loop detected: node '{successor.display_name}' was already "
                            f"executed and is reached again from '{node.display_name}'. "
                            "Use a LOOP node with a CONTINUE edge to iterate."
                        )
                        logger.error(meta.error_message)
                        cycle = True
                        break
                if successor.id in queued:
                    continue
                queue.append(successor)
                queued.add(successor.id)

            if cycle:
                run_failed = True
                break

        meta.completed_at = datetime.now(UTC)
        meta.status = ExecutionStatus.FAILURE if run_failed else ExecutionStatus.SUCCESS
        logger.info(
            f"{'✓' if not run_failed else '✗'} Flow finished with {meta.status} "
            f"after {len(context.node_execution_order)} steps"
        )

    # === PAYLOAD AND RECORDING ===

    def _inject_trigger_payload(
        self,
        start_node: NodeSpec,
        context: ExecutionContext,
        payload: dict[str, Any],
    ) -> None:
        """START output is {"body": payload}; written once, never by the main loop."""
        result = NodeResult(
            node_id=start_node.id,
            node_type=NodeType.START.value,
            status=NodeStatus.SUCCESS,
            output={"body": payload},
        )
        context.set_node_output(start_node.id, result)
        alias = alias_for_label(start_node.label)
        if alias:
            context.set_node_alias(alias, result)

        save_as = start_node.save_output_as
        if save_as and is_valid_save_key(save_as):
            context.nex[save_as] = copy.deepcopy(result.output)

    def _record_result(self, node: NodeSpec, result: NodeResult, context: ExecutionContext) -> None:
        context.set_node_output(node.id, result)

        alias = alias_for_label(node.label)
        if alias:
            context.set_node_alias(alias, result)

        save_as = node.save_output_as
        if save_as is None or node.node_type in _SELF_SAVING_TYPES:
            return
        if not is_valid_save_key(save_as):
            logger.warning(
                f"Ignoring saveOutputAs '{save_as}' on node '{node.display_name}': "
                "use letters, digits and underscores, not starting with a digit"
            )
            return
        if save_as in context.nex:
            logger.warning(
                f"saveOutputAs '{save_as}' on node '{node.display_name}' "
                "overwrites an existing nex entry"
            )
        value = result.primary_output
        context.nex[save_as] = copy.deepcopy(value) if value is not None else {}

    # === RETRY ===

    async def _execute_with_retry(
        self,
        executor: "NodeExecutor",
        node: NodeSpec,
        context: ExecutionContext,
    ) -> NodeResult:
        """
        Run a node, retrying FAILURE results per its retry config.

        Delays grow by backoff_multiplier after each failed attempt:
        backoffMs=100, multiplier=2.0 sleeps 0.1s then 0.2s. Halting
        failures are returned at once. If the backoff sleep is cancelled the
        last failure comes back marked as halting, so the run stops there.
        """
        policy = RetryConfig.from_config(node.config)
        delay = policy.initial_delay_seconds
        attempt = 0

        while True:
            result = await self._attempt(executor, node, context)
            if (
                result.status != NodeStatus.FAILURE
                or result.halts_run
                or attempt >= policy.max_retries
            ):
                return result

            attempt += 1
            logger.info(
                f"   ↻ Retrying {node.display_name} ({attempt}/{policy.max_retries}) "
                f"in {delay:.3f}s: {result.error_message}"
            )
            await self._emit(
                "emit_node_retrying",
                context,
                node_id=node.id,
                attempt=attempt,
                max_retries=policy.max_retries,
                delay_seconds=delay,
                error=result.error_message,
            )
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                logger.warning(f"Retry backoff for {node.display_name} cancelled; keeping last failure")
                context.meta.error_message = (
                    f"Run cancelled while node '{node.display_name}' waited to retry "
                    f"(attempt {attempt} of {policy.max_retries}): {result.error_message}"
                )
                return result.model_copy(update={"halts_run": True})
            delay *= policy.backoff_multiplier

    async def _attempt(
        self,
        executor: "NodeExecutor",
        node: NodeSpec,
        context: ExecutionContext,
    ) -> NodeResult:
        try:
            return await executor.execute(node, context)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Node {node.display_name} raised: {message}")
            await self._emit("emit_node_error", context, node_id=node.id, error=message)
            return NodeResult.failed(node, message)

    # === ROUTING ===

    def _resolve_successors(
        self,
        graph: FlowGraph,
        node_id: str,
        status: NodeStatus,
    ) -> list[NodeSpec]:
        """Targets of every outgoing edge eligible for this outcome, in edge order."""
        required = EdgeCondition.required_for(status)
        nodes = graph.node_map()
        successors = []
        for edge in graph.get_outgoing_edges(node_id):
            if not edge.should_traverse(required):
                continue
            target = nodes.get(edge.target)
            if target is None:
                logger.warning(f"Edge {edge.source} -> {edge.target} points at a missing node")
                continue
            successors.append(target)
        return successors

    # === EVENTS ===

    async def _emit(self, method: str, context: ExecutionContext, **kwargs: Any) -> None:
        """Publish on the event bus; delivery problems never affect the run."""
        if self._event_bus is None:
            return
        try:
            await getattr(self._event_bus, method)(
                execution_id=context.meta.execution_id,
                flow_id=context.meta.flow_id,
                **kwargs,
            )
        except Exception as e:
            logger.warning(f"Event delivery failed for {method}: {e}")

"""
LOOP executor - Bounded iteration over a loop body.

A LOOP node sits at the end (or the head) of its body. Each visit it:
1. Checks it has a CONTINUE edge back into the body
2. Fails once index reaches maxIterations
3. Appends the body's output to `accumulated` (one entry per body pass)
4. Evaluates its condition with loop.index / loop.accumulated in scope
5. Returns CONTINUE (index += 1) while true, SUCCESS with the summary once false

Loop state lives in meta.loop_states and survives re-entries for the rest of
the run.
"""

import copy
import logging
import math
from typing import Any

from nexflow.graph.conditions import compare_loop_operands, split_loop_condition
from nexflow.graph.context import DEFAULT_LOOP_MAX_ITERATIONS, ExecutionContext, LoopState
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType, is_valid_save_key
from nexflow.graph.resolver import stringify, to_float
from nexflow.nodes.base import ResolvingExecutor

logger = logging.getLogger(__name__)

MAX_ITERATIONS_CEILING = 1000

# Operands starting with these are looked up even without {{ }}
_BARE_PATH_PREFIXES = ("loop.", "variables.", "nex.", "nodes.", "meta.")


class LoopExecutor(ResolvingExecutor):
    """
    Config:
        {
            "condition": "{{loop.index}} < 3",
            "maxIterations": 50,
            "saveOutputAs": "pages"
        }
    """

    def supported_type(self) -> NodeType:
        return NodeType.LOOP

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        meta = context.meta

        if not meta.loop_node_has_continue_edge.get(node.id):
            meta.error_message = (
                f"LOOP node '{node.display_name}' has no CONTINUE edge. "
                "Draw an edge from the CONTINUE handle back to the loop body."
            )
            return NodeResult.failed(node, meta.error_message, halts_run=True)

        condition = node.config.get("condition")
        condition = "false" if condition is None else str(condition)
        max_iterations = _max_iterations(node.config.get("maxIterations"))
        state = context.ensure_loop_state(node.id, max_iterations)

        if state.index >= state.max_iterations:
            meta.error_message = (
                f"Loop exceeded max iterations ({max_iterations}) at node "
                f"'{node.display_name}'. Increase max or fix the exit condition."
            )
            return NodeResult.failed(node, meta.error_message, halts_run=True)

        self._accumulate(node, context, state)

        if self._evaluate(condition, context, state):
            state.index += 1
            logger.debug(f"Loop {node.display_name} continuing, index={state.index}")
            return self._result(
                node,
                NodeStatus.CONTINUE,
                output={"index": state.index, "continuing": True},
            )

        summary = {
            "index": state.index,
            "accumulated": copy.deepcopy(state.accumulated),
            "iterationCount": state.index + 1,
        }
        save_as = node.save_output_as
        if save_as and is_valid_save_key(save_as):
            context.nex[save_as] = copy.deepcopy(summary)

        logger.info(f"Loop {node.display_name} finished after {state.index} iterations")
        return self._result(node, NodeStatus.SUCCESS, output=summary, success_output=summary)

    def _accumulate(self, node: NodeSpec, context: ExecutionContext, state: LoopState) -> None:
        """
        Copy the output of the node that ran just before this visit.

        On the first visit that node only counts when it belongs to the loop
        body, so a LOOP at the head of its body does not collect whatever led
        into it, while a LOOP at the tail keeps the first body output.
        """
        last_id = context.last_executed_node_id
        if last_id is None or last_id == node.id:
            return
        if state.index == 0 and last_id not in context.meta.loop_body_nodes.get(node.id, ()):
            return
        previous = context.get_node_output(last_id)
        if previous is None:
            return
        body_output = (
            previous.success_output if previous.success_output is not None else previous.output
        )
        state.accumulated.append(copy.deepcopy(body_output))

    def _evaluate(self, condition: str, context: ExecutionContext, state: LoopState) -> bool:
        resolved = (self.resolver.resolve(condition, context, state) or "").strip()
        parts = split_loop_condition(resolved)
        if parts is None:
            return self._operand(resolved, context, state).lower() == "true"
        left, op, right = parts
        return compare_loop_operands(
            self._operand(left, context, state),
            op,
            self._operand(right, context, state),
        )

    def _operand(self, text: str, context: ExecutionContext, state: LoopState) -> str:
        if text.startswith(_BARE_PATH_PREFIXES):
            value = self.resolver.resolve_path(text, context, state)
            if value is not None:
                return stringify(value)
        return text


def _max_iterations(raw: Any) -> int:
    value = to_float(raw)
    if not math.isfinite(value):
        return DEFAULT_LOOP_MAX_ITERATIONS
    return min(MAX_ITERATIONS_CEILING, max(1, int(value)))

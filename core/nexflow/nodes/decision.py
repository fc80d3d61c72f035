"""DECISION executor: two-way branch on a comparison or a script's truthiness."""

import logging

from nexflow.graph.conditions import compare_decision, is_truthy
from nexflow.graph.context import ExecutionContext
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.graph.resolver import ReferenceResolver, stringify
from nexflow.nodes.base import ResolvingExecutor
from nexflow.nodes.script import DEFAULT_LANGUAGE, build_script_input
from nexflow.sandbox import ScriptRunner

logger = logging.getLogger(__name__)


class DecisionExecutor(ResolvingExecutor):
    """
    Routes SUCCESS edges on true and FAILURE edges on false.

    Simple mode:
        {"left": "{{variables.amount}}", "operator": "GT", "right": "500"}

    Code mode:
        {"mode": "code", "language": "python", "code": "result = input['variables']['x'] > 3"}

    output.result always holds the boolean, so a false branch is a routing
    signal, not an error.
    """

    def __init__(
        self,
        resolver: ReferenceResolver | None = None,
        runner: ScriptRunner | None = None,
    ):
        super().__init__(resolver)
        self.runner = runner or ScriptRunner()

    def supported_type(self) -> NodeType:
        return NodeType.DECISION

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        mode = str(node.config.get("mode") or "simple").strip().lower()
        if mode == "code":
            return await self._execute_code(node, context)
        return self._execute_simple(node, context)

    def _execute_simple(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        operator = node.config.get("operator")
        if not operator:
            return NodeResult.failed(node, f"DECISION node '{node.display_name}' has no operator")

        left = self.resolver.resolve(_as_text(node.config.get("left")), context)
        right = self.resolver.resolve(_as_text(node.config.get("right")), context)
        result = compare_decision(left, str(operator), right)
        logger.debug(f"Decision {left!r} {operator} {right!r} -> {result}")

        return self._result(
            node,
            NodeStatus.SUCCESS if result else NodeStatus.FAILURE,
            output={"result": result, "left": left, "operator": operator, "right": right},
        )

    async def _execute_code(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        language = str(node.config.get("language") or DEFAULT_LANGUAGE)
        code = node.config.get("code") or ""
        if not isinstance(code, str) or not code.strip():
            return NodeResult.failed(node, f"DECISION node '{node.display_name}' has no code")

        outcome = await self.runner.run(language, code, build_script_input(context))
        if not outcome.success:
            return NodeResult.failed(node, f"Decision script failed: {outcome.error}")

        result = is_truthy(outcome.output)
        return self._result(
            node,
            NodeStatus.SUCCESS if result else NodeStatus.FAILURE,
            output={"result": result, "raw": outcome.output, "language": language},
        )


def _as_text(value) -> str | None:
    return None if value is None else stringify(value)

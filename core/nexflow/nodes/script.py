"""SCRIPT executor: run user code and publish its result."""

import logging
from typing import Any

from nexflow.graph.context import ExecutionContext
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.nodes.base import NodeExecutor
from nexflow.sandbox import ScriptRunner

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "javascript"


def build_script_input(context: ExecutionContext) -> dict[str, Any]:
    """
    The `input` object a script sees.

    variables  every run variable
    nodes      every earlier result, keyed by node id and by label alias
    trigger    the START output ({"body": payload})
    nex        every "save output as" value
    """
    return {
        "variables": dict(context.variables),
        "nodes": context.nodes_for_script_input(),
        "trigger": context.start_output(),
        "nex": dict(context.nex),
    }


class ScriptExecutor(NodeExecutor):
    """
    Config:
        {"language": "python", "code": "result = input['variables']['n'] * 2"}

    Python scripts assign `result`; JavaScript scripts `return` a value.
    SUCCESS puts it in successOutput.result; FAILURE puts the error in
    failureOutput.error.
    """

    def __init__(self, runner: ScriptRunner | None = None):
        self.runner = runner or ScriptRunner()

    def supported_type(self) -> NodeType:
        return NodeType.SCRIPT

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        language = str(node.config.get("language") or DEFAULT_LANGUAGE)
        code = node.config.get("code") or ""
        if not isinstance(code, str) or not code.strip():
            return NodeResult.failed(
                node, "SCRIPT node has no code. Open the node and write your script."
            )

        outcome = await self.runner.run(language, code, build_script_input(context))
        if not outcome.success:
            logger.info(f"Script in {node.display_name} failed: {outcome.error}")
            return NodeResult.failed(node, outcome.error or "Script failed")

        return self._result(
            node,
            NodeStatus.SUCCESS,
            input={"language": language, "codeLength": len(code)},
            success_output={"result": outcome.output, "language": language},
        )

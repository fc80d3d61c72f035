"""START and the terminal SUCCESS / FAILURE executors."""

import logging

from nexflow.graph.context import ExecutionContext
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.nodes.base import NodeExecutor, ResolvingExecutor

logger = logging.getLogger(__name__)


class StartExecutor(NodeExecutor):
    """Marks the run as started. The trigger payload is injected by the engine."""

    def supported_type(self) -> NodeType:
        return NodeType.START

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        return self._result(node, NodeStatus.SUCCESS)


class TerminalExecutor(ResolvingExecutor):
    """
    Ends the run with a resolved response.

    Config:
        {"response": {"message": "Flow completed", "userId": "{{variables.userId}}"}}
    """

    terminal_type: NodeType

    def supported_type(self) -> NodeType:
        return self.terminal_type

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        response = self.resolver.resolve_map(self._config_map(node, "response"), context)
        status = NodeStatus.SUCCESS if self.terminal_type == NodeType.SUCCESS else NodeStatus.FAILURE
        return self._result(node, status, output=response)


class SuccessExecutor(TerminalExecutor):
    terminal_type = NodeType.SUCCESS


class FailureExecutor(TerminalExecutor):
    terminal_type = NodeType.FAILURE

"""Node executor contract: one implementation per node type."""

from abc import ABC, abstractmethod
from typing import Any

from nexflow.graph.context import ExecutionContext
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.graph.resolver import ReferenceResolver


class NodeExecutor(ABC):
    """
    Executes every node of one type.

    Implementations should:
    - Report configuration problems as FAILURE results, not exceptions
    - Never write to the context except where their node type says so
      (VARIABLE writes variables, LOOP writes loop state)

    Exceptions that do escape are turned into FAILURE results by the
    engine's retry wrapper.
    """

    @abstractmethod
    def supported_type(self) -> NodeType:
        """The node type this executor handles."""
        pass

    @abstractmethod
    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        """Run one node against the current context."""
        pass

    def _result(
        self,
        node: NodeSpec,
        status: NodeStatus,
        output: dict[str, Any] | None = None,
        success_output: dict[str, Any] | None = None,
        failure_output: dict[str, Any] | None = None,
        input: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> NodeResult:
        return NodeResult(
            node_id=node.id,
            node_type=node.node_type.value,
            status=status,
            input=input,
            output=output,
            success_output=success_output,
            failure_output=failure_output,
            error_message=error_message,
        )


class ResolvingExecutor(NodeExecutor):
    """Base for executors that only need the reference resolver."""

    def __init__(self, resolver: ReferenceResolver | None = None):
        self.resolver = resolver or ReferenceResolver()

    def _config_map(self, node: NodeSpec, key: str) -> dict[str, Any]:
        value = node.config.get(key)
        return value if isinstance(value, dict) else {}

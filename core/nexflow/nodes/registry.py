"""
Node Executor Registry - Dispatch from node type to executor.

Built once, before any run, and never changed afterwards. Two executors for
the same type are a wiring bug and are rejected at build time; asking for a
type nobody handles is a deployment bug and raises ExecutorNotRegisteredError.
"""

import logging
from collections.abc import Iterable
from types import MappingProxyType

from nexflow.errors import DuplicateExecutorError, ExecutorNotRegisteredError
from nexflow.graph.node import NodeType
from nexflow.nodes.base import NodeExecutor

logger = logging.getLogger(__name__)


class NodeExecutorRegistry:
    """
    Immutable node type -> executor map.

    Example:
        registry = NodeExecutorRegistry([StartExecutor(), SuccessExecutor(), ...])
        executor = registry.get(NodeType.START)
    """

    def __init__(self, executors: Iterable[NodeExecutor]):
        table: dict[NodeType, NodeExecutor] = {}
        for executor in executors:
            node_type = executor.supported_type()
            if node_type in table:
                raise DuplicateExecutorError(
                    f"Duplicate executor for node type {node_type}: "
                    f"{type(table[node_type]).__name__} and {type(executor).__name__}"
                )
            table[node_type] = executor
        self._executors = MappingProxyType(table)
        logger.debug(f"Executor registry built for {sorted(self._executors)}")

    def get(self, node_type: NodeType, node_id: str | None = None) -> NodeExecutor:
        executor = self._executors.get(node_type)
        if executor is None:
            raise ExecutorNotRegisteredError(str(node_type), node_id)
        return executor

    def is_supported(self, node_type: NodeType) -> bool:
        return node_type in self._executors

    @property
    def supported_types(self) -> set[NodeType]:
        return set(self._executors)

    def __len__(self) -> int:
        return len(self._executors)

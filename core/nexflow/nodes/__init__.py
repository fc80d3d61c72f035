"""Node executors, one per node type, and the registry that dispatches to them."""

from nexflow.nodes.base import NodeExecutor, ResolvingExecutor
from nexflow.nodes.registry import NodeExecutorRegistry

__all__ = ["NodeExecutor", "NodeExecutorRegistry", "ResolvingExecutor"]

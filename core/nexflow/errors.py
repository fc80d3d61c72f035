"""Exception types raised by the nexflow package.

Node-level problems never surface as exceptions: executors return FAILURE
results and the engine routes them. The types here are reserved for faults
that belong to the caller (bad graph files, unknown flows) or to the
deployment itself (a node type with no executor).
"""


class NexflowError(Exception):
    """Base class for all nexflow errors."""


class ExecutorNotRegisteredError(NexflowError, RuntimeError):
    """A graph uses a node type the engine has no executor for."""

    def __init__(self, node_type: str, node_id: str | None = None):
        self.node_type = node_type
        self.node_id = node_id
        where = f" (node '{node_id}')" if node_id else ""
        super().__init__(f"No executor registered for node type {node_type}{where}")


class DuplicateExecutorError(NexflowError, ValueError):
    """Two executors claim the same node type."""


class FlowNotFoundError(NexflowError, KeyError):
    """The requested flow id is not known to the flow store."""

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")

    def __str__(self) -> str:
        return self.args[0]


class InvalidFlowGraphError(NexflowError, ValueError):
    """A flow graph document could not be parsed."""

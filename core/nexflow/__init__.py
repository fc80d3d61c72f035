"""
nexflow - A flow execution engine.

A flow is a directed graph of typed nodes (START, SCRIPT, NEXUS, DECISION,
LOOP, AI, SUB_FLOW, ...). A run walks the graph from START, records every
node's result in an execution context, and ends at a SUCCESS or FAILURE node.

    from nexflow import FlowRuntime, InMemoryFlowStore, load_flow_graph

    runtime = FlowRuntime(InMemoryFlowStore([load_flow_graph("checkout.json")]))
    execution = await runtime.trigger_flow_sync("checkout", {"amount": 750})
"""

from nexflow.errors import (
    DuplicateExecutorError,
    ExecutorNotRegisteredError,
    FlowNotFoundError,
    InvalidFlowGraphError,
    NexflowError,
)
from nexflow.graph import (
    ExecutionContext,
    ExecutionStatus,
    FlowExecutionEngine,
    FlowGraph,
    NodeResult,
    NodeStatus,
    NodeType,
    load_flow_graph,
)
from nexflow.nodes.defaults import create_default_registry
from nexflow.runtime import EventBus, FlowRuntime
from nexflow.storage import Execution, ExecutionState, InMemoryFlowStore

__version__ = "0.1.0"

__all__ = [
    # Errors
    "NexflowError",
    "DuplicateExecutorError",
    "ExecutorNotRegisteredError",
    "FlowNotFoundError",
    "InvalidFlowGraphError",
    # Graph and engine
    "FlowGraph",
    "NodeType",
    "NodeStatus",
    "NodeResult",
    "ExecutionContext",
    "ExecutionStatus",
    "FlowExecutionEngine",
    "load_flow_graph",
    "create_default_registry",
    # Runtime
    "EventBus",
    "FlowRuntime",
    "Execution",
    "ExecutionState",
    "InMemoryFlowStore",
]

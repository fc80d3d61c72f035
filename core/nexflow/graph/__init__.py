"""Graph structures: nodes, edges, execution context, references, and the engine."""

from nexflow.graph.context import (
    ExecutionContext,
    ExecutionStatus,
    LoopState,
    RunMeta,
    alias_for_label,
)
from nexflow.graph.edge import EdgeCondition, EdgeSpec, FlowGraph, load_flow_graph
from nexflow.graph.executor import DEFAULT_MAX_STEPS, FlowExecutionEngine
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.graph.resolver import ReferenceResolver
from nexflow.graph.retry import RetryConfig

__all__ = [
    # Graph
    "FlowGraph",
    "NodeSpec",
    "NodeType",
    "EdgeSpec",
    "EdgeCondition",
    "load_flow_graph",
    # Run state
    "ExecutionContext",
    "ExecutionStatus",
    "RunMeta",
    "LoopState",
    "NodeResult",
    "NodeStatus",
    "alias_for_label",
    # Evaluation
    "ReferenceResolver",
    "RetryConfig",
    # Engine
    "FlowExecutionEngine",
    "DEFAULT_MAX_STEPS",
]

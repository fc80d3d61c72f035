"""
Execution Context - The memory of a single run.

One ExecutionContext is created per run, mutated by the engine and the
executors as nodes complete, and serialized into a snapshot once the run
ends. It is owned by exactly one run; sub-flows get a fresh context of their
own and only their final snapshot crosses back into the parent.

Layout:
    meta                  run identity, status, loop bookkeeping
    variables             flat map written by VARIABLE nodes
    nodes                 node id -> NodeResult, in completion order (persisted)
    node_aliases          label-derived key -> NodeResult (transient)
    nex                   "save output as" name -> value
    node_execution_order  node ids in the order they actually ran
"""

import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from nexflow.graph.node import NodeResult, NodeType

_ALIAS_SPLIT = re.compile(r"[^A-Za-z0-9]+")

DEFAULT_LOOP_MAX_ITERATIONS = 100


class ExecutionStatus(StrEnum):
    """Overall status of a run."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class LoopState(BaseModel):
    """Per-LOOP-node iteration bookkeeping, keyed by loop node id in the run meta."""

    loop_node_id: str
    index: int = 0
    accumulated: list[Any] = Field(default_factory=list)
    max_iterations: int = DEFAULT_LOOP_MAX_ITERATIONS

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunMeta(BaseModel):
    """Identity and status of a run."""

    flow_id: str
    execution_id: str
    current_node_id: str | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    status: ExecutionStatus = ExecutionStatus.RUNNING
    # Set when a run stops on a cycle, the step ceiling or an unrouted failure
    error_message: str | None = None
    loop_states: dict[str, LoopState] = Field(default_factory=dict)
    loop_node_has_continue_edge: dict[str, bool] = Field(default_factory=dict)
    # LOOP id -> ids of the nodes between its CONTINUE edge and the way back
    loop_body_nodes: dict[str, list[str]] = Field(default_factory=dict, exclude=True)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def alias_for_label(label: str | None) -> str | None:
    """
    Derive the expression-friendly key for a node label.

    "Calculate Discount" -> "calculateDiscount", "fetch-user v2" -> "fetchUserV2".
    Returns None when the label has no usable characters.
    """
    if not label:
        return None
    words = [w for w in _ALIAS_SPLIT.split(label.strip()) if w]
    if not words:
        return None
    head, *rest = words
    return head[0].lower() + head[1:] + "".join(w[0].upper() + w[1:] for w in rest)


class ExecutionContext(BaseModel):
    """The mutable state of one run (the "NCO")."""

    meta: RunMeta
    variables: dict[str, Any] = Field(default_factory=dict)
    nodes: dict[str, NodeResult] = Field(default_factory=dict)
    node_aliases: dict[str, NodeResult] = Field(default_factory=dict, exclude=True)
    nex: dict[str, Any] = Field(default_factory=dict)
    node_execution_order: list[str] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def create(cls, flow_id: str, execution_id: str) -> "ExecutionContext":
        return cls(meta=RunMeta(flow_id=flow_id, execution_id=execution_id))

    # === NODE RESULTS ===

    def set_node_output(self, node_id: str, result: NodeResult) -> None:
        """Store by durable node id; only this map is persisted."""
        self.nodes[node_id] = result

    def set_node_alias(self, alias: str, result: NodeResult) -> None:
        self.node_aliases[alias] = result

    def get_node_output(self, key: str) -> NodeResult | None:
        """Resolve by node id first, then by label alias."""
        result = self.nodes.get(key)
        if result is not None:
            return result
        return self.node_aliases.get(key)

    def find_start_node_id(self) -> str | None:
        for node_id, result in self.nodes.items():
            if result.node_type == NodeType.START.value:
                return node_id
        return None

    def start_output(self) -> dict[str, Any] | None:
        start_id = self.find_start_node_id()
        if start_id is None:
            return None
        return self.nodes[start_id].output

    def nodes_for_script_input(self) -> dict[str, dict[str, Any]]:
        """Durable results merged with alias keys, for script input."""
        merged = {key: result.to_snapshot() for key, result in self.nodes.items()}
        for alias, result in self.node_aliases.items():
            merged[alias] = result.to_snapshot()
        return merged

    @property
    def last_executed_node_id(self) -> str | None:
        if not self.node_execution_order:
            return None
        return self.node_execution_order[-1]

    # === VARIABLES ===

    def set_variable(self, key: str, value: Any) -> None:
        self.variables[key] = value

    def get_variable(self, key: str) -> Any:
        return self.variables.get(key)

    # === LOOPS ===

    def get_loop_state(self, loop_node_id: str) -> LoopState | None:
        return self.meta.loop_states.get(loop_node_id)

    def ensure_loop_state(self, loop_node_id: str, max_iterations: int) -> LoopState:
        """Create the loop state on first visit; later visits refresh max_iterations only."""
        state = self.meta.loop_states.get(loop_node_id)
        if state is None:
            state = LoopState(loop_node_id=loop_node_id, max_iterations=max_iterations)
            self.meta.loop_states[loop_node_id] = state
        else:
            state.max_iterations = max_iterations
        return state

    # === SNAPSHOT ===

    def to_snapshot(self) -> dict[str, Any]:
        """Persistable form: meta, variables, nodes, nex, nodeExecutionOrder."""
        return self.model_dump(mode="json", by_alias=True)

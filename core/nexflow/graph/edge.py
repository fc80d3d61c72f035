"""
Edge Protocol - How nodes connect in a flow graph.

Edges define:
1. Source and target nodes
2. The outcome of the source that permits traversal

Edge Types:
- SUCCESS: Traverse only if the source succeeded (or a DECISION evaluated true)
- FAILURE: Traverse only if the source failed (or a DECISION evaluated false)
- CONTINUE: Traverse when a LOOP node asks for another iteration
- DEFAULT: Always traverse, whatever the outcome (non-branching nodes)
- CUSTOM: Reserved for expression-based routing. condition_expr is carried
  through but nothing evaluates it, so CUSTOM edges never fire.
"""

import json
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from nexflow.errors import InvalidFlowGraphError
from nexflow.graph.node import NodeSpec, NodeStatus, NodeType


class EdgeCondition(StrEnum):
    """When an edge should be traversed."""

    SUCCESS = "SUCCESS"  # Source node succeeded
    FAILURE = "FAILURE"  # Source node failed
    CONTINUE = "CONTINUE"  # LOOP node routes back into its body
    DEFAULT = "DEFAULT"  # Always follow
    CUSTOM = "CUSTOM"  # Expression based, currently inert

    @classmethod
    def _missing_(cls, value: object) -> "EdgeCondition | None":
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @classmethod
    def required_for(cls, status: NodeStatus) -> "EdgeCondition":
        """Map a node outcome to the edge condition it activates."""
        if status == NodeStatus.SUCCESS:
            return cls.SUCCESS
        if status == NodeStatus.FAILURE:
            return cls.FAILURE
        if status == NodeStatus.CONTINUE:
            return cls.CONTINUE
        return cls.DEFAULT


class EdgeSpec(BaseModel):
    """
    Specification for an edge between nodes.

    Examples:
        # Follow when the decision evaluates true
        EdgeSpec(
            source="check-amount",
            target="approve",
            condition=EdgeCondition.SUCCESS,
        )

        # Loop back into the body
        EdgeSpec(
            source="repeat",
            target="fetch-page",
            condition=EdgeCondition.CONTINUE,
        )
    """

    id: str | None = None
    source: str = Field(
        validation_alias=AliasChoices("source", "sourceNodeId", "source_node_id"),
        description="Source node ID",
    )
    target: str = Field(
        validation_alias=AliasChoices("target", "targetNodeId", "target_node_id"),
        description="Target node ID",
    )
    condition: EdgeCondition = Field(
        default=EdgeCondition.DEFAULT,
        validation_alias=AliasChoices("condition", "conditionType", "condition_type"),
    )
    condition_expr: str | None = Field(
        default=None,
        validation_alias=AliasChoices("condition_expr", "conditionExpr"),
        description="Expression for CUSTOM edges; stored but never evaluated",
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def should_traverse(self, required: EdgeCondition) -> bool:
        """DEFAULT edges always fire; everything else must match the outcome."""
        return self.condition == required or self.condition == EdgeCondition.DEFAULT


class FlowGraph(BaseModel):
    """
    Complete definition of a flow.

    Contains all nodes and edges needed to execute. The graph is treated as
    read-only for the duration of a run.

        FlowGraph(
            id="order-flow",
            name="Order intake",
            nodes=[...],
            edges=[...],
        )
    """

    id: str
    name: str = ""
    description: str = ""
    nodes: list[NodeSpec] = Field(default_factory=list)
    edges: list[EdgeSpec] = Field(default_factory=list)

    # Per-flow override of the engine step ceiling
    max_steps: int | None = Field(
        default=None,
        validation_alias=AliasChoices("max_steps", "maxSteps"),
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_map(self) -> dict[str, NodeSpec]:
        return {node.id: node for node in self.nodes}

    def find_start_node(self) -> NodeSpec | None:
        for node in self.nodes:
            if node.node_type == NodeType.START:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges leaving a node, in declaration order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges entering a node."""
        return [e for e in self.edges if e.target == node_id]

    def has_continue_edge(self, node_id: str) -> bool:
        return any(e.condition == EdgeCondition.CONTINUE for e in self.get_outgoing_edges(node_id))

    def loop_body(self, loop_id: str) -> list[str]:
        """Nodes reachable from the LOOP's CONTINUE edges without passing the LOOP again."""
        pending = [
            e.target
            for e in self.get_outgoing_edges(loop_id)
            if e.condition == EdgeCondition.CONTINUE
        ]
        body: list[str] = []
        while pending:
            node_id = pending.pop(0)
            if node_id == loop_id or node_id in body:
                continue
            body.append(node_id)
            pending.extend(e.target for e in self.get_outgoing_edges(node_id))
        return body

    def validate(self, supported_types: set[NodeType] | None = None) -> list[str]:
        """Validate the graph structure. Returns human-readable problems."""
        errors = []

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id: '{node.id}'")
            seen.add(node.id)

        starts = [n for n in self.nodes if n.node_type == NodeType.START]
        if len(starts) > 1:
            errors.append(f"Flow has {len(starts)} START nodes; only the first is used")

        for edge in self.edges:
            label = edge.id or f"{edge.source}->{edge.target}"
            if edge.source not in seen:
                errors.append(f"Edge '{label}' references missing source '{edge.source}'")
            if edge.target not in seen:
                errors.append(f"Edge '{label}' references missing target '{edge.target}'")
            if edge.condition == EdgeCondition.CUSTOM:
                errors.append(f"Edge '{label}' uses CUSTOM condition, which is never followed")

        for node in self.nodes:
            if node.node_type == NodeType.LOOP and not self.has_continue_edge(node.id):
                errors.append(
                    f"LOOP node '{node.display_name}' has no outgoing CONTINUE edge"
                )
            if supported_types is not None and node.node_type not in supported_types:
                errors.append(
                    f"Node '{node.display_name}' has type {node.node_type} "
                    "which has no registered executor"
                )

        return errors

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def load_flow_graph(path: str | Path) -> FlowGraph:
    """Read a flow graph from a JSON file."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidFlowGraphError(f"Cannot read flow graph '{path}': {e}") from e

    if isinstance(data, dict) and "id" not in data:
        data["id"] = path.stem

    try:
        return FlowGraph.model_validate(data)
    except ValidationError as e:
        raise InvalidFlowGraphError(f"Invalid flow graph '{path}': {e}") from e

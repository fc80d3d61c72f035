"""
Node Protocol - The typed units of work in a flow graph.

A node is pure data: an id, a type, a human label and an untyped config map
whose meaning depends on the type. Behaviour lives in the executor registered
for that type (see nexflow.nodes).

Every executor answers with a NodeResult. Branching nodes (DECISION, LOOP)
signal their branch through the result status, so a FAILURE result is a
routing signal first and an error second.
"""

import re
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SAVE_OUTPUT_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class NodeType(StrEnum):
    """Closed set of node types a flow graph may contain."""

    START = "START"
    NEXUS = "NEXUS"  # HTTP / SQL connector call
    SUB_FLOW = "SUB_FLOW"  # SYNC (waits for child) or ASYNC (fire and forget)
    SCRIPT = "SCRIPT"  # user-written Python or JavaScript
    VARIABLE = "VARIABLE"
    MAPPER = "MAPPER"
    DECISION = "DECISION"
    LOOP = "LOOP"
    AI = "AI"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

    # Reserved, no executor ships for these yet
    KAFKA_PRODUCER = "KAFKA_PRODUCER"
    KAFKA_CONSUMER = "KAFKA_CONSUMER"
    DELAY = "DELAY"
    TRANSFORM = "TRANSFORM"

    @classmethod
    def _missing_(cls, value: object) -> "NodeType | None":
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def is_terminal(self) -> bool:
        return self in (NodeType.SUCCESS, NodeType.FAILURE)


class NodeStatus(StrEnum):
    """Outcome of a single node execution."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    CONTINUE = "CONTINUE"  # LOOP node: follow the CONTINUE edge back into the body
    SKIPPED = "SKIPPED"
    RETRYING = "RETRYING"


class NodeSpec(BaseModel):
    """
    Static definition of one node in a flow graph.

    Example:
        NodeSpec(
            id="calc",
            node_type=NodeType.MAPPER,
            label="Calculate Discount",
            config={
                "output": {"total": "{{variables.price * variables.qty}}"},
                "saveOutputAs": "pricing",
            },
        )
    """

    id: str
    node_type: NodeType = Field(
        validation_alias=AliasChoices("node_type", "nodeType", "type"),
    )
    label: str = ""
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @property
    def display_name(self) -> str:
        return self.label or self.id

    @property
    def save_output_as(self) -> str | None:
        """The "save output as" name, trimmed, or None when not configured."""
        value = self.config.get("saveOutputAs")
        if value is None:
            return None
        name = str(value).strip()
        return name or None


def is_valid_save_key(name: str) -> bool:
    """Whether a "save output as" name can be used as a nex key."""
    return bool(SAVE_OUTPUT_KEY_PATTERN.match(name))


class NodeResult(BaseModel):
    """
    What a node produced.

    Connector-style nodes write either success_output or failure_output;
    simple nodes write output. The two shapes are mutually exclusive by
    convention, never enforced.
    """

    node_id: str
    node_type: str
    status: NodeStatus
    input: dict[str, Any] | None = None
    output: dict[str, Any] | None = None
    success_output: dict[str, Any] | None = None
    failure_output: dict[str, Any] | None = None
    error_message: str | None = None
    # Structural failure: the run ends here whatever edges leave the node
    halts_run: bool = Field(default=False, exclude=True)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @property
    def primary_output(self) -> dict[str, Any] | None:
        """success_output when present, else output, else failure_output."""
        if self.success_output is not None:
            return self.success_output
        if self.output is not None:
            return self.output
        return self.failure_output

    def output_section(self, name: str) -> dict[str, Any] | None:
        """Look up one of the three output maps by its path name."""
        if name == "output":
            return self.output
        if name == "successOutput":
            return self.success_output
        if name == "failureOutput":
            return self.failure_output
        return None

    def to_snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def failed(
        cls,
        node: NodeSpec,
        error: str,
        input: dict[str, Any] | None = None,
        failure_output: dict[str, Any] | None = None,
        halts_run: bool = False,
    ) -> "NodeResult":
        """Build a FAILURE result whose failure_output carries the error."""
        payload = {"error": error}
        if failure_output:
            payload.update(failure_output)
        return cls(
            node_id=node.id,
            node_type=node.node_type.value,
            status=NodeStatus.FAILURE,
            input=input if input is not None else {},
            failure_output=payload,
            error_message=error,
            halts_run=halts_run,
        )

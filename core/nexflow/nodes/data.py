"""VARIABLE and MAPPER executors: resolve a configured map into the run."""

import logging
import re
from typing import Any

from nexflow.graph.context import ExecutionContext
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.nodes.base import ResolvingExecutor

logger = logging.getLogger(__name__)

_INTEGER = re.compile(r"^-?\d+$")
_DECIMAL = re.compile(r"^-?(\d+\.\d*|\d*\.\d+)$")


def normalize_variable_value(value: Any) -> Any:
    """
    Turn numeric-looking strings into numbers so arithmetic references work.

    "10" -> 10, "20.5" -> 20.5, "-3" -> -3; anything else is returned as is.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return value
    if _INTEGER.match(text):
        return int(text)
    if _DECIMAL.match(text):
        return float(text)
    return value


class VariableExecutor(ResolvingExecutor):
    """
    Writes run variables.

    Config:
        {
            "variables": {
                "userId": "static-value",
                "userPlan": "{{nodes.fetchUser.successOutput.body.plan}}"
            }
        }
    """

    def supported_type(self) -> NodeType:
        return NodeType.VARIABLE

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        resolved = self.resolver.resolve_map(self._config_map(node, "variables"), context)
        output = {}
        for key, value in resolved.items():
            normalized = normalize_variable_value(value)
            context.set_variable(key, normalized)
            output[key] = normalized
        logger.debug(f"Set variables {sorted(output)}")
        return self._result(node, NodeStatus.SUCCESS, output=output)


class MapperExecutor(ResolvingExecutor):
    """
    Reshapes data for the next node.

    Config:
        {"output": {"email": "{{variables.email}}", "plan": "premium"}}
    """

    def supported_type(self) -> NodeType:
        return NodeType.MAPPER

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        output = self.resolver.resolve_map(self._config_map(node, "output"), context)
        return self._result(node, NodeStatus.SUCCESS, output=output)

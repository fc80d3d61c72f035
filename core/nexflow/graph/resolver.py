"""
Reference Resolver - Evaluates {{...}} references in node config.

Supported forms inside the braces:
    variables.<name>
    meta.<flowId|executionId|startedAt>
    nodes.<id|alias|start>.<output|successOutput|failureOutput>.<path>
    nex.<name>.<path>            (maps and numeric list indices)
    loop.<index|accumulated>     (only while a LoopState is supplied)
    <path> <op> <path>           (op is one of + - * /, surrounded by spaces)

A leading "input." prefix is stripped. Missing references resolve to None and
render as an empty string; nothing here raises.
"""

import json
import logging
import math
import re
from datetime import datetime
from typing import Any

from nexflow.graph.context import ExecutionContext, LoopState
from nexflow.graph.node import NodeType

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(r"\{\{([^}]+)}}")

# Checked in this order; the first one found splits the expression
_OPERATORS = (" + ", " - ", " * ", " / ")

_INDEX_SEGMENT = re.compile(r"^\d+$")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_float(value: Any) -> float:
    """Coerce to float, NaN when the value is not numeric."""
    if value is None or isinstance(value, bool):
        return math.nan
    if is_number(value):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return math.nan


def whole_number(value: float) -> int | float:
    """Normalize integral results (5.0 -> 5)."""
    if math.isfinite(value) and value == math.floor(value):
        return int(value)
    return value


def stringify(value: Any) -> str:
    """String form used when a reference is embedded in surrounding text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def get_nested(root: Any, path: str) -> Any:
    """Walk dicts and lists by dotted path ("user.items.0.id"). None when any step is missing."""
    if root is None or not path or not path.strip():
        return None
    current = root
    for raw in path.split("."):
        if current is None:
            return None
        segment = raw.strip()
        if not segment:
            return None
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and _INDEX_SEGMENT.match(segment):
            idx = int(segment)
            if idx >= len(current):
                return None
            current = current[idx]
        else:
            return None
    return current


class ReferenceResolver:
    """
    Resolves references against one ExecutionContext.

    Stateless; a single instance is shared by every executor.
    """

    def resolve(
        self,
        template: str | None,
        context: ExecutionContext,
        loop_state: LoopState | None = None,
    ) -> str | None:
        """Substitute the string form of every {{...}} token in template."""
        if template is None or "{{" not in template:
            return template

        def _replace(match: re.Match) -> str:
            path = match.group(1).strip()
            value = self._resolve_expression(path, context, loop_state)
            if value is None and (path.startswith("nodes.") or path.startswith("variables.")):
                logger.warning(
                    f"Reference resolved to null: {{{{{path}}}}} "
                    "- check the path and that START output.body is set"
                )
            return stringify(value)

        return REFERENCE_PATTERN.sub(_replace, template)

    def resolve_map(
        self,
        config: dict[str, Any] | None,
        context: ExecutionContext,
        loop_state: LoopState | None = None,
    ) -> dict[str, Any]:
        """
        Resolve every string value of a map.

        A value that is exactly one {{...}} token becomes the native resolved
        object ({"x": "{{variables.n}}"} with n=42 gives {"x": 42}); mixed text
        gets string substitution. Non-string values are copied as they are.
        """
        if config is None:
            return {}

        resolved: dict[str, Any] = {}
        for key, value in config.items():
            if isinstance(value, str):
                trimmed = value.strip()
                if len(trimmed) >= 5 and trimmed.startswith("{{") and trimmed.endswith("}}"):
                    inner = trimmed[2:-2].strip()
                    obj = self._resolve_expression(inner, context, loop_state)
                    resolved[key] = obj if obj is not None else ""
                else:
                    resolved[key] = self.resolve(value, context, loop_state)
            else:
                resolved[key] = value
        return resolved

    def resolve_to_object(self, path_or_template: str | None, context: ExecutionContext) -> Any:
        """Resolve a bare path or a single {{path}} to its native value (AI input bindings)."""
        path = path_or_template
        if path and "{{" in path and "}}" in path:
            start = path.index("{{")
            end = path.find("}}", start)
            if end > start:
                path = path[start + 2 : end].strip()
        if not path or not path.strip():
            return None
        return self.resolve_path(path, context)

    def resolve_path(
        self,
        path: str,
        context: ExecutionContext,
        loop_state: LoopState | None = None,
    ) -> Any:
        """Resolve a single dotted path, no operators."""
        if path.startswith("input."):
            path = path[len("input.") :].strip()
        if not path or not path.strip():
            return None

        parts = path.split(".")
        namespace = parts[0]

        # nex keys are case-sensitive ("user" != "User")
        if namespace == "nex" and len(parts) >= 2:
            return get_nested(context.nex, path[len("nex.") :])

        if namespace == "loop" and len(parts) >= 2 and loop_state is not None:
            if parts[1] == "index":
                return loop_state.index
            if parts[1] == "accumulated":
                return loop_state.accumulated
            return None

        if namespace == "variables" and len(parts) == 2:
            return context.get_variable(parts[1])

        if namespace == "meta" and len(parts) == 2:
            return self._resolve_meta(parts[1], context)

        if namespace == "nodes" and len(parts) >= 3:
            return self._resolve_node_path(parts, context)

        return None

    # === INTERNALS ===

    def _resolve_expression(
        self,
        path: str,
        context: ExecutionContext,
        loop_state: LoopState | None,
    ) -> Any:
        for candidate in _OPERATORS:
            idx = path.find(candidate)
            if idx >= 0:
                left = self.resolve_path(path[:idx].strip(), context, loop_state)
                right = self.resolve_path(path[idx + len(candidate) :].strip(), context, loop_state)
                return self._evaluate(candidate.strip(), left, right)
        return self.resolve_path(path, context, loop_state)

    @staticmethod
    def _evaluate(op: str, left: Any, right: Any) -> Any:
        if op == "+":
            if is_number(left) and is_number(right):
                return whole_number(float(left) + float(right))
            return stringify(left) + stringify(right)

        lhs = to_float(left)
        rhs = to_float(right)
        if math.isnan(lhs) or math.isnan(rhs):
            return ""
        if op == "-":
            result = lhs - rhs
        elif op == "*":
            result = lhs * rhs
        elif op == "/":
            if rhs == 0:
                return ""
            result = lhs / rhs
        else:
            return ""
        return "" if math.isnan(result) else whole_number(result)

    @staticmethod
    def _resolve_meta(field: str, context: ExecutionContext) -> Any:
        if field == "flowId":
            return context.meta.flow_id
        if field == "executionId":
            return context.meta.execution_id
        if field == "startedAt":
            return context.meta.started_at
        return None

    @staticmethod
    def _resolve_node_path(parts: list[str], context: ExecutionContext) -> Any:
        node_key = parts[1]
        if node_key.lower() == NodeType.START.value.lower():
            node_key = context.find_start_node_id()
            if node_key is None:
                return None

        result = context.get_node_output(node_key)
        if result is None:
            return None

        current: Any = result.output_section(parts[2])
        for segment in parts[3:]:
            if not isinstance(current, dict):
                return None
            current = current.get(segment)
        return current

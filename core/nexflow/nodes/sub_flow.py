"""
SUB_FLOW executor - Runs another flow from inside this one.

Config:
    {
        "targetFlowId": "billing-flow",
        "mode": "SYNC",                          # or "ASYNC"
        "payload": {"userId": "{{variables.userId}}"}
    }

SYNC waits for the child, embeds its final snapshot under `nco` and lifts
the child's last `successOutput.result` to `result`, so the parent can read
{{nodes.callBilling.successOutput.result}}. A child that ends in FAILURE
makes this node FAILURE.

ASYNC starts the child in the background and succeeds immediately with
status TRIGGERED; nothing from the child is visible to the parent.

When no payload is configured the parent's own trigger body is passed on.
"""

import logging
from typing import Any, Protocol

from nexflow.graph.context import ExecutionContext
from nexflow.graph.edge import FlowGraph
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.graph.resolver import ReferenceResolver
from nexflow.nodes.base import ResolvingExecutor

logger = logging.getLogger(__name__)


class SubFlowLauncher(Protocol):
    """What SUB_FLOW needs from the run trigger service (FlowRuntime)."""

    def get_flow(self, flow_id: str) -> FlowGraph | None: ...

    async def trigger_flow_sync(
        self, flow_id: str, payload: dict[str, Any], triggered_by: str = ...
    ) -> Any: ...

    async def trigger_flow_async(
        self, flow_id: str, payload: dict[str, Any], triggered_by: str = ...
    ) -> None: ...


def extract_child_result(snapshot: dict[str, Any] | None) -> Any:
    """
    The last non-null successOutput.result in the child's execution order.

    A value shaped {"result": x} is unwrapped to x.
    """
    if not isinstance(snapshot, dict):
        return None
    order = snapshot.get("nodeExecutionOrder")
    nodes = snapshot.get("nodes")
    if not isinstance(order, list) or not isinstance(nodes, dict):
        return None

    for node_id in reversed(order):
        node = nodes.get(node_id)
        if not isinstance(node, dict):
            continue
        success_output = node.get("successOutput")
        if not isinstance(success_output, dict):
            continue
        result = success_output.get("result")
        if result is None:
            continue
        if isinstance(result, dict) and "result" in result:
            return result["result"]
        return result
    return None


class SubFlowExecutor(ResolvingExecutor):
    def __init__(
        self,
        launcher: SubFlowLauncher | None = None,
        resolver: ReferenceResolver | None = None,
    ):
        super().__init__(resolver)
        self.launcher = launcher

    def supported_type(self) -> NodeType:
        return NodeType.SUB_FLOW

    def bind(self, launcher: SubFlowLauncher) -> None:
        """Attach the launcher once the runtime that owns this executor exists."""
        self.launcher = launcher

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        target_flow_id = str(node.config.get("targetFlowId") or "").strip()
        if not target_flow_id:
            return NodeResult.failed(node, "SUB_FLOW node has no targetFlowId configured")

        if target_flow_id == context.meta.flow_id:
            return NodeResult.failed(
                node,
                "Circular reference: flow cannot call itself. Use a different target flow.",
            )

        if self.launcher is None:
            return NodeResult.failed(node, "SUB_FLOW is not available: no flow runtime configured")

        target = self.launcher.get_flow(target_flow_id)
        if target is None:
            return NodeResult.failed(node, f"Target flow not found: {target_flow_id}")

        mode = str(node.config.get("mode") or "SYNC").strip().upper()
        payload = self.resolver.resolve_map(self._config_map(node, "payload"), context)
        if not payload:
            start_output = context.start_output() or {}
            body = start_output.get("body")
            if isinstance(body, dict):
                payload = dict(body)
                logger.info("Empty SUB_FLOW payload; passing the parent trigger body to the child")

        triggered_by = f"SUB_FLOW:{context.meta.execution_id}"
        target_name = target.name or target.id
        node_input = {
            "targetFlowId": target_flow_id,
            "targetFlowName": target_name,
            "mode": mode,
            "payload": payload,
        }
        logger.info(f"Triggering child flow {target_flow_id} ({mode})")

        if mode == "ASYNC":
            await self.launcher.trigger_flow_async(target_flow_id, payload, triggered_by)
            return self._result(
                node,
                NodeStatus.SUCCESS,
                input=node_input,
                success_output={
                    "status": "TRIGGERED",
                    "mode": "ASYNC",
                    "targetFlowId": target_flow_id,
                    "targetFlowName": target_name,
                },
            )

        try:
            child = await self.launcher.trigger_flow_sync(target_flow_id, payload, triggered_by)
        except Exception as e:
            logger.error(f"Child flow {target_flow_id} raised: {e}")
            return NodeResult.failed(node, f"Child flow execution threw: {e}", input=node_input)

        child_status = str(child.status)
        output = {
            "executionId": child.id,
            "status": child_status,
            "mode": "SYNC",
            "targetFlowId": target_flow_id,
            "targetFlowName": target_name,
            "nco": child.snapshot,
            "result": extract_child_result(child.snapshot),
        }

        if child_status == NodeStatus.SUCCESS.value:
            return self._result(node, NodeStatus.SUCCESS, input=node_input, success_output=output)
        return self._result(
            node,
            NodeStatus.FAILURE,
            input=node_input,
            failure_output=output,
            error_message=f"Child flow ended with status: {child_status}",
        )

"""
Flow Runtime - The run trigger boundary.

Turns "run flow X with this payload" into a persisted Execution:

    runtime = FlowRuntime(InMemoryFlowStore([graph]))
    execution = await runtime.trigger_flow_sync("checkout", {"amount": 750})
    execution.status      # ExecutionState.SUCCESS
    execution.snapshot    # {"meta": ..., "variables": ..., "nodes": ..., ...}

The runtime owns the engine and binds itself as the SUB_FLOW launcher, so a
parent run starts its children through the same trigger methods. Engine
faults are caught here and recorded as FAILURE; nothing below this layer
reaches the caller as an exception except an unknown flow id.
"""

import asyncio
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from nexflow.config import EngineConfig
from nexflow.errors import FlowNotFoundError
from nexflow.graph.context import ExecutionStatus
from nexflow.graph.edge import FlowGraph
from nexflow.graph.executor import FlowExecutionEngine
from nexflow.graph.node import NodeType
from nexflow.nodes.defaults import create_default_registry
from nexflow.nodes.registry import NodeExecutorRegistry
from nexflow.nodes.sub_flow import SubFlowExecutor
from nexflow.runtime.event_bus import EventBus
from nexflow.storage import (
    Execution,
    ExecutionState,
    ExecutionStore,
    FlowStore,
    InMemoryExecutionStore,
)

logger = logging.getLogger(__name__)

# Flow ids of the runs enclosing the current task, outermost first
_run_chain: ContextVar[tuple[str, ...]] = ContextVar("nexflow_run_chain", default=())


def current_run_chain() -> tuple[str, ...]:
    return _run_chain.get()


def minimal_snapshot(error: str) -> dict[str, Any]:
    """Snapshot stored when a run never produced a context."""
    return {"nodes": {}, "nodeExecutionOrder": [], "error": error}


class FlowRuntime:
    """
    Triggers, tracks and persists flow runs.

    trigger_flow        returns a RUNNING Execution, the run continues in the background
    trigger_flow_sync   awaits the run and returns the final Execution
    trigger_flow_async  fire-and-forget, used by ASYNC sub-flows
    """

    def __init__(
        self,
        flow_store: FlowStore,
        registry: NodeExecutorRegistry | None = None,
        execution_store: ExecutionStore | None = None,
        event_bus: EventBus | None = None,
        config: EngineConfig | None = None,
    ):
        self.config = config or EngineConfig()
        self.flow_store = flow_store
        self.execution_store = execution_store or InMemoryExecutionStore()
        self.event_bus = event_bus
        self.registry = registry or create_default_registry(self.config)
        self.engine = FlowExecutionEngine(self.registry, event_bus, max_steps=self.config.max_steps)
        self._tasks: dict[str, asyncio.Task] = {}

        if self.registry.is_supported(NodeType.SUB_FLOW):
            sub_flow = self.registry.get(NodeType.SUB_FLOW)
            if isinstance(sub_flow, SubFlowExecutor) and sub_flow.launcher is None:
                sub_flow.bind(self)

    # === LOOKUP ===

    def get_flow(self, flow_id: str) -> FlowGraph | None:
        return self.flow_store.get_flow(flow_id)

    def get_execution(self, execution_id: str) -> Execution | None:
        return self.execution_store.get(execution_id)

    def _require_flow(self, flow_id: str) -> FlowGraph:
        flow = self.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)
        return flow

    # === TRIGGERS ===

    async def trigger_flow(
        self,
        flow_id: str,
        payload: dict[str, Any] | None = None,
        triggered_by: str = "API",
    ) -> Execution:
        """
        Start a run in the background.

        Raises:
            FlowNotFoundError: no flow with this id
        """
        flow = self._require_flow(flow_id)
        execution = self._new_execution(flow_id, triggered_by)

        task = asyncio.create_task(self._run(flow, execution, payload))
        self._tasks[execution.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution.id, None))

        logger.info(f"Triggered flow {flow_id} as execution {execution.id}")
        return execution.model_copy(deep=True)

    async def trigger_flow_sync(
        self,
        flow_id: str,
        payload: dict[str, Any] | None = None,
        triggered_by: str = "API",
    ) -> Execution:
        """
        Run to completion and return the final Execution.

        A flow already running further up this call chain, or a chain deeper
        than max_sub_flow_depth, gives a FAILURE Execution without running.

        Raises:
            FlowNotFoundError: no flow with this id
        """
        flow = self._require_flow(flow_id)
        chain = current_run_chain()

        refusal = None
        if flow_id in chain:
            path = " -> ".join((*chain, flow_id))
            refusal = f"Circular reference: flow '{flow_id}' is already running in this chain ({path})"
        elif len(chain) >= self.config.max_sub_flow_depth:
            refusal = (
                f"Sub-flow depth exceeded: more than {self.config.max_sub_flow_depth} nested flows"
            )

        if refusal is not None:
            return await self._refuse(flow_id, triggered_by, refusal)

        execution = self._new_execution(flow_id, triggered_by)
        return await self._run(flow, execution, payload)

    async def trigger_flow_async(
        self,
        flow_id: str,
        payload: dict[str, Any] | None = None,
        triggered_by: str = "API",
    ) -> None:
        """Start a detached run. Problems are logged, never raised."""
        if len(current_run_chain()) >= self.config.max_sub_flow_depth:
            logger.error(f"Not triggering flow {flow_id}: sub-flow depth exceeded")
            return
        try:
            await self.trigger_flow(flow_id, payload, triggered_by)
        except FlowNotFoundError as e:
            logger.error(f"Async trigger of flow {flow_id} failed: {e}")

    # === WAITING ===

    async def wait_for(self, execution_id: str, timeout: float | None = None) -> Execution | None:
        """
        Wait for a background run to finish.

        Returns:
            The stored Execution (final unless the timeout hit), None if unknown
        """
        task = self._tasks.get(execution_id)
        if task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
            except TimeoutError:
                logger.debug(f"Timed out waiting for execution {execution_id}")
        return self.execution_store.get(execution_id)

    async def drain(self) -> None:
        """Wait until every background run, including ones they start, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
        if self.event_bus is not None:
            await self.event_bus.flush()

    def get_active_count(self) -> int:
        return len(self._tasks)

    # === INTERNALS ===

    def _new_execution(self, flow_id: str, triggered_by: str) -> Execution:
        execution = Execution(
            id=str(uuid.uuid4()),
            flow_id=flow_id,
            status=ExecutionState.RUNNING,
            triggered_by=triggered_by,
        )
        self.execution_store.save(execution)
        return execution

    async def _refuse(self, flow_id: str, triggered_by: str, error: str) -> Execution:
        logger.warning(f"Refusing to run flow {flow_id}: {error}")
        now = datetime.now(UTC)
        execution = Execution(
            id=str(uuid.uuid4()),
            flow_id=flow_id,
            status=ExecutionState.FAILURE,
            triggered_by=triggered_by,
            started_at=now,
            completed_at=now,
            snapshot=minimal_snapshot(error),
        )
        self.execution_store.save(execution)
        await self._publish("emit_execution_failed", flow_id, execution.id, error=error)
        return execution

    async def _run(
        self,
        flow: FlowGraph,
        execution: Execution,
        payload: dict[str, Any] | None,
    ) -> Execution:
        token = _run_chain.set((*current_run_chain(), flow.id))
        await self._publish("emit_execution_started", flow.id, execution.id, payload=payload)

        error = None
        try:
            context = await self.engine.execute(flow, execution.id, payload)
            status = (
                ExecutionState.SUCCESS
                if context.meta.status == ExecutionStatus.SUCCESS
                else ExecutionState.FAILURE
            )
            snapshot = context.to_snapshot()
        except Exception as e:
            logger.exception(f"Execution {execution.id} of flow {flow.id} crashed")
            error = str(e) or type(e).__name__
            status = ExecutionState.FAILURE
            snapshot = minimal_snapshot(error)
        finally:
            _run_chain.reset(token)

        execution.status = status
        execution.completed_at = datetime.now(UTC)
        execution.snapshot = snapshot
        self.execution_store.save(execution)

        if error is not None:
            await self._publish("emit_execution_failed", flow.id, execution.id, error=error)
        else:
            await self._publish(
                "emit_execution_completed", flow.id, execution.id, status=status.value
            )

        logger.info(f"Execution {execution.id} of flow {flow.id} finished: {status}")
        return execution

    async def _publish(self, method: str, flow_id: str, execution_id: str, **kwargs: Any) -> None:
        if self.event_bus is None:
            return
        try:
            await getattr(self.event_bus, method)(flow_id=flow_id, execution_id=execution_id, **kwargs)
        except Exception as e:
            logger.warning(f"Event {method} for execution {execution_id} was not delivered: {e}")

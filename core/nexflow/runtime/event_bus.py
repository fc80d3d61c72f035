"""
Event Bus - Pub/sub fan-out of run and node events.

Lets observers (live dashboards, log shippers, tests):
- Follow a run node by node as it executes
- Wait for a specific run to finish
- Inspect recent history for debugging

Publishing never blocks or fails the publisher: handlers run as background
tasks and their errors are logged and dropped. Use flush() to wait for them.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_RETRYING = "node_retrying"
    NODE_COMPLETED = "node_completed"
    NODE_ERROR = "node_error"

    # Custom events
    CUSTOM = "custom"


@dataclass
class FlowEvent:
    """An event raised while a flow runs."""

    type: EventType
    flow_id: str | None = None
    execution_id: str | None = None
    node_id: str | None = None  # Which node emitted this event
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "flow_id": self.flow_id,
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Type for event handlers
EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_flow: str | None = None
    filter_node: str | None = None
    filter_execution: str | None = None


class EventBus:
    """
    Pub/sub event bus for run observability.

    Example:
        bus = EventBus()

        async def on_node_done(event: FlowEvent):
            print(f"{event.node_id} -> {event.data['status']}")

        bus.subscribe(
            event_types=[EventType.NODE_COMPLETED],
            handler=on_node_done,
            filter_execution="exec_123",
        )
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()
        # Strong references so running handler tasks are not garbage collected
        self._handler_tasks: set[asyncio.Task] = set()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_flow: str | None = None,
        filter_node: str | None = None,
        filter_execution: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_flow=filter_flow,
            filter_node=filter_node,
            filter_execution=filter_execution,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """
        Record an event and hand it to all matching subscribers.

        Returns as soon as the event is in history; handlers run in their
        own tasks so a slow subscriber never holds up the publisher.
        """
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        for sub in list(self._subscriptions.values()):
            if self._matches(sub, event):
                task = asyncio.create_task(self._run_handler(sub.handler, event))
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_tasks.discard)

    async def flush(self) -> None:
        """Wait until every dispatched handler, including ones they trigger, has finished."""
        while self._handler_tasks:
            await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)

    def pending_handlers(self) -> int:
        return len(self._handler_tasks)

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_flow and subscription.filter_flow != event.flow_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        if subscription.filter_execution and subscription.filter_execution != event.execution_id:
            return False
        return True

    async def _run_handler(self, handler: EventHandler, event: FlowEvent) -> None:
        """Run one handler under the concurrency limit."""
        async with self._semaphore:
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Handler error for {event.type}: {e}")

    # === RUN PUBLISHERS ===

    async def emit_execution_started(
        self,
        flow_id: str,
        execution_id: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_STARTED,
                flow_id=flow_id,
                execution_id=execution_id,
                data={"input": payload or {}},
            )
        )

    async def emit_execution_completed(
        self,
        flow_id: str,
        execution_id: str,
        status: str,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_COMPLETED,
                flow_id=flow_id,
                execution_id=execution_id,
                data={"status": status},
            )
        )

    async def emit_execution_failed(
        self,
        flow_id: str,
        execution_id: str,
        error: str,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_FAILED,
                flow_id=flow_id,
                execution_id=execution_id,
                data={"error": error},
            )
        )

    # === NODE PUBLISHERS ===

    async def emit_node_started(
        self,
        execution_id: str,
        node_id: str,
        flow_id: str | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_STARTED,
                flow_id=flow_id,
                execution_id=execution_id,
                node_id=node_id,
            )
        )

    async def emit_node_retrying(
        self,
        execution_id: str,
        node_id: str,
        attempt: int,
        max_retries: int,
        delay_seconds: float,
        error: str | None = None,
        flow_id: str | None = None,
    ) -> None:
        """Emit before sleeping ahead of retry number `attempt` (1-based)."""
        await self.publish(
            FlowEvent(
                type=EventType.NODE_RETRYING,
                flow_id=flow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "delay_seconds": delay_seconds,
                    "error": error or "",
                },
            )
        )

    async def emit_node_completed(
        self,
        execution_id: str,
        node_id: str,
        status: str,
        nex: dict[str, Any] | None = None,
        flow_id: str | None = None,
    ) -> None:
        """Carries a copy of nex as it stood when the node finished."""
        await self.publish(
            FlowEvent(
                type=EventType.NODE_COMPLETED,
                flow_id=flow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={"status": status, "nex": nex or {}},
            )
        )

    async def emit_node_error(
        self,
        execution_id: str,
        node_id: str,
        error: str,
        flow_id: str | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_ERROR,
                flow_id=flow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={"error": error},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        execution_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """Most recent first."""
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if execution_id:
            events = [e for e in events if e.execution_id == execution_id]
        return events[:limit]

    def get_stats(self) -> dict:
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1
        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        execution_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> FlowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: FlowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: FlowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_node=node_id,
            filter_execution=execution_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()
            return result
        finally:
            self.unsubscribe(sub_id)

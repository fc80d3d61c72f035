"""Run trigger service and the event bus that reports on runs."""

from nexflow.runtime.event_bus import EventBus, EventType, FlowEvent
from nexflow.runtime.flow_runtime import FlowRuntime, current_run_chain

__all__ = ["EventBus", "EventType", "FlowEvent", "FlowRuntime", "current_run_chain"]

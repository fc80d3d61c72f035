"""Persistence for flows, executions and NEXUS connectors."""

from nexflow.storage.connector_store import ConnectorStore, InMemoryConnectorStore
from nexflow.storage.execution_store import (
    Execution,
    ExecutionState,
    ExecutionStore,
    FileExecutionStore,
    InMemoryExecutionStore,
)
from nexflow.storage.flow_store import FlowStore, InMemoryFlowStore

__all__ = [
    "ConnectorStore",
    "Execution",
    "ExecutionState",
    "ExecutionStore",
    "FileExecutionStore",
    "FlowStore",
    "InMemoryConnectorStore",
    "InMemoryExecutionStore",
    "InMemoryFlowStore",
]

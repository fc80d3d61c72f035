"""Lookup of flow graphs by id."""

import logging
from typing import Protocol

from nexflow.graph.edge import FlowGraph

logger = logging.getLogger(__name__)


class FlowStore(Protocol):
    def get_flow(self, flow_id: str) -> FlowGraph | None: ...


class InMemoryFlowStore:
    """Flow graphs held in a dict, keyed by FlowGraph.id."""

    def __init__(self, flows: list[FlowGraph] | None = None):
        self._flows: dict[str, FlowGraph] = {}
        for flow in flows or []:
            self.add(flow)

    def add(self, flow: FlowGraph) -> None:
        if flow.id in self._flows:
            logger.warning(f"Replacing flow '{flow.id}'")
        self._flows[flow.id] = flow

    def get_flow(self, flow_id: str) -> FlowGraph | None:
        return self._flows.get(flow_id)

    def list_flows(self) -> list[FlowGraph]:
        return list(self._flows.values())

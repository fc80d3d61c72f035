"""Lookup of NEXUS connectors by id."""

import logging
from typing import Protocol

from nexflow.connectors.models import Connector

logger = logging.getLogger(__name__)


class ConnectorStore(Protocol):
    def get_connector(self, connector_id: str) -> Connector | None: ...


class InMemoryConnectorStore:
    """Connectors held in a dict; enough for the CLI, tests and embedding."""

    def __init__(self, connectors: list[Connector] | None = None):
        self._connectors: dict[str, Connector] = {}
        for connector in connectors or []:
            self.add(connector)

    def add(self, connector: Connector) -> None:
        if connector.id in self._connectors:
            logger.warning(f"Replacing connector '{connector.id}'")
        self._connectors[connector.id] = connector

    def get_connector(self, connector_id: str) -> Connector | None:
        return self._connectors.get(connector_id)

    def list_connectors(self) -> list[Connector]:
        return list(self._connectors.values())

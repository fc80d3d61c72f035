"""Outbound calls made by NEXUS nodes: REST over httpx, SQL over SQLAlchemy."""

from nexflow.connectors.http import HttpConnectorClient
from nexflow.connectors.models import AuthType, Connector, ConnectorType
from nexflow.connectors.sql import SqlConnectorClient

__all__ = [
    "AuthType",
    "Connector",
    "ConnectorType",
    "HttpConnectorClient",
    "SqlConnectorClient",
]

"""
NEXUS executor - One call to an external system through a stored connector.

REST config:
    {
        "connectorId": "stripe",
        "path": "/v1/customers/{{variables.customerId}}",
        "method": "GET",
        "headers": {"Idempotency-Key": "{{meta.executionId}}"},
        "body": {"email": "{{nodes.start.output.body.email}}"}
    }

SQL config:
    {"connectorId": "orders-db", "query": "SELECT * FROM orders WHERE id = {{variables.id}}",
     "queryType": "SELECT"}
"""

import logging
from typing import Any

from nexflow.connectors import Connector, ConnectorType, HttpConnectorClient, SqlConnectorClient
from nexflow.graph.context import ExecutionContext
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.graph.resolver import ReferenceResolver
from nexflow.nodes.base import ResolvingExecutor
from nexflow.storage.connector_store import ConnectorStore, InMemoryConnectorStore

logger = logging.getLogger(__name__)


class NexusExecutor(ResolvingExecutor):
    def __init__(
        self,
        connectors: ConnectorStore | None = None,
        http_client: HttpConnectorClient | None = None,
        sql_client: SqlConnectorClient | None = None,
        resolver: ReferenceResolver | None = None,
    ):
        super().__init__(resolver)
        self.connectors = connectors or InMemoryConnectorStore()
        self.http_client = http_client or HttpConnectorClient()
        self.sql_client = sql_client or SqlConnectorClient()

    def supported_type(self) -> NodeType:
        return NodeType.NEXUS

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        connector_id = str(node.config.get("connectorId") or "").strip()
        if not connector_id:
            return NodeResult.failed(node, "NEXUS node has no connectorId configured")

        connector = self.connectors.get_connector(connector_id)
        if connector is None:
            return NodeResult.failed(node, f"Connector not found: {connector_id}")

        if connector.connector_type == ConnectorType.SQL:
            return await self._execute_sql(node, connector, context)
        return await self._execute_rest(node, connector, context)

    async def _execute_rest(
        self,
        node: NodeSpec,
        connector: Connector,
        context: ExecutionContext,
    ) -> NodeResult:
        path = self.resolver.resolve(str(node.config.get("path") or ""), context)
        method = str(node.config.get("method") or "GET").upper()
        headers = self.resolver.resolve_map(self._config_map(node, "headers"), context)
        body = self.resolver.resolve_map(self._config_map(node, "body"), context)

        response = await self.http_client.call(connector, method, path, headers, body)
        node_input: dict[str, Any] = {"path": path, "method": method, "body": body}

        if response.get("success"):
            return self._result(
                node,
                NodeStatus.SUCCESS,
                input=node_input,
                success_output={
                    "statusCode": response.get("statusCode"),
                    "body": response.get("body"),
                    "headers": response.get("headers", {}),
                },
            )

        error = response.get("error") or "HTTP call failed"
        failure_output = {"statusCode": response.get("statusCode"), "body": response.get("body")}
        return NodeResult.failed(
            node,
            error,
            input=node_input,
            failure_output={k: v for k, v in failure_output.items() if v is not None},
        )

    async def _execute_sql(
        self,
        node: NodeSpec,
        connector: Connector,
        context: ExecutionContext,
    ) -> NodeResult:
        raw_query = str(node.config.get("query") or "")
        query_type = str(node.config.get("queryType") or "SELECT").upper()
        query = self.resolver.resolve(raw_query, context) or ""
        if not query.strip():
            return NodeResult.failed(
                node, "NEXUS SQL node has no query configured", input={"query": raw_query}
            )

        node_input = {"query": query, "queryType": query_type}
        response = await self.sql_client.execute(connector, query, query_type)
        if not response.get("success"):
            return NodeResult.failed(node, response.get("error") or "SQL error", input=node_input)

        if query_type == "SELECT":
            success_output = {
                "rows": response.get("rows", []),
                "rowCount": response.get("rowCount", 0),
                "query": query,
            }
        else:
            success_output = {
                "rowsAffected": response.get("rowsAffected", 0),
                "query": query,
                "queryType": query_type,
            }
        return self._result(node, NodeStatus.SUCCESS, input=node_input, success_output=success_output)

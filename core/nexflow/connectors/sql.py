"""SQL connector calls over SQLAlchemy."""

import asyncio
import logging
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from nexflow.connectors.models import Connector

logger = logging.getLogger(__name__)


class SqlConnectorClient:
    """
    Runs one statement per NEXUS node against the connector's database.

    Engines are created lazily per connector and reused. SQLAlchemy is
    synchronous, so statements run in a worker thread.

    Returns a dict, never raises:
        SELECT  {"success": True, "rows": [...], "rowCount": n}
        other   {"success": True, "rowsAffected": n}
        error   {"success": False, "error": "SQL error: ..."}
    """

    def __init__(self):
        self._engines: dict[str, Engine] = {}

    async def execute(self, connector: Connector, query: str, query_type: str = "SELECT") -> dict[str, Any]:
        try:
            engine = self._engine_for(connector)
        except (ArgumentError, SQLAlchemyError, ValueError) as e:
            return {"success": False, "error": f"Invalid database connection for '{connector.id}': {e}"}

        try:
            return await asyncio.to_thread(self._run, engine, query, query_type)
        except SQLAlchemyError as e:
            logger.error(f"SQL connector {connector.id} failed: {e}")
            return {"success": False, "error": f"SQL error: {getattr(e, 'orig', None) or e}"}

    def dispose(self) -> None:
        for engine in self._engines.values():
            engine.dispose()
        self._engines.clear()

    def _engine_for(self, connector: Connector) -> Engine:
        engine = self._engines.get(connector.id)
        if engine is not None:
            return engine
        if not connector.database_url:
            raise ValueError("connector has no databaseUrl")

        url = make_url(connector.database_url)
        if connector.db_username:
            url = url.set(username=connector.db_username)
        if connector.db_password:
            url = url.set(password=connector.db_password)

        engine = create_engine(url, pool_pre_ping=True)
        self._engines[connector.id] = engine
        return engine

    @staticmethod
    def _run(engine: Engine, query: str, query_type: str) -> dict[str, Any]:
        with engine.begin() as connection:
            result = connection.execute(text(query))
            if query_type.upper() == "SELECT":
                rows = [dict(row) for row in result.mappings()]
                return {"success": True, "rows": rows, "rowCount": len(rows)}
            return {"success": True, "rowsAffected": result.rowcount}

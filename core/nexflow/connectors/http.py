"""REST connector calls over httpx."""

import base64
import json
import logging
from typing import Any

import httpx

from nexflow.connectors.models import AuthType, Connector

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def build_url(base_url: str | None, path: str | None) -> str:
    """Join base and path with exactly one slash between them."""
    path = path or ""
    if not base_url:
        return path
    base = base_url.rstrip("/")
    if not path.strip():
        return base
    return f"{base}{path if path.startswith('/') else '/' + path}"


def apply_auth(connector: Connector, headers: dict[str, str]) -> None:
    """Add the connector's auth header on top of the merged headers."""
    auth = connector.auth_config
    if connector.auth_type == AuthType.NONE or not auth:
        return

    if connector.auth_type == AuthType.BEARER:
        token = auth.get("token")
        if token:
            headers["Authorization"] = f"Bearer {token}"
    elif connector.auth_type == AuthType.API_KEY:
        key = auth.get("key")
        if key:
            headers[auth.get("headerName") or "X-API-Key"] = key
    elif connector.auth_type == AuthType.BASIC:
        raw = f"{auth.get('username', '')}:{auth.get('password', '')}".encode()
        headers["Authorization"] = f"Basic {base64.b64encode(raw).decode()}"


def parse_body(text: str | None) -> Any:
    """JSON when the body parses, the raw text otherwise, None when empty."""
    if text is None or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class HttpConnectorClient:
    """
    Makes one outbound call per NEXUS node.

    Returns a dict, never raises:
        {"success": True, "statusCode": 200, "body": ..., "headers": {...}}
        {"success": False, "statusCode": 404, "body": ..., "error": "..."}
        {"success": False, "error": "..."}            # transport failure
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self._transport = transport

    async def call(
        self,
        connector: Connector,
        method: str,
        path: str | None,
        headers: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = build_url(connector.base_url, path)
        merged: dict[str, str] = {"Content-Type": "application/json"}
        merged.update(connector.default_headers)
        merged.update({k: str(v) for k, v in (headers or {}).items()})
        apply_auth(connector, merged)

        method = (method or "GET").upper()
        send_body = method not in ("GET", "HEAD") and body

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    headers=merged,
                    json=body if send_body else None,
                )
        except httpx.TimeoutException:
            return {"success": False, "error": f"Request to {url} timed out after {self.timeout:g}s"}
        except httpx.HTTPError as e:
            logger.error(f"HTTP call to {url} failed: {e}")
            return {"success": False, "error": str(e) or type(e).__name__}

        parsed = parse_body(response.text)
        if response.status_code >= 400:
            return {
                "success": False,
                "statusCode": response.status_code,
                "body": parsed,
                "error": f"HTTP {response.status_code} {response.reason_phrase} from {method} {url}",
            }
        return {
            "success": True,
            "statusCode": response.status_code,
            "body": parsed,
            "headers": dict(response.headers),
        }

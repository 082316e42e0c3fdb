"""HTTP client for the Composio integrations account service.

Lists, links and unlinks a user's connected apps, and fetches and executes
the tools the assistant may call. Only this module knows the service's
endpoints and payload shapes.

Listing never fails the caller: an unreachable service reads as "no
connections". Tool execution failures come back as an error result so the
model can explain them to the user.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

from src.errors.domain import IntegrationError
from src.services.toolkit_catalog import ACTIVE_STATUS, normalize_toolkit_id
from src.utils.redaction import preview_payload, sanitize_error_message

logger = logging.getLogger(__name__)

COMPOSIO_BASE_URL = os.environ.get("COMPOSIO_BASE_URL", "https://backend.composio.dev")

CONNECTED_ACCOUNTS_PATH = "/api/v3/connected_accounts"
TOOL_ROUTER_SESSION_PATH = "/api/v3/tool_router/session"
TOOLS_PATH = "/api/v3/tools"
EXECUTE_PATH = "/api/v3/tools/execute/{slug}"

# Meta-tools exposed to the model; they search, link and batch-execute the
# underlying app tools on the user's behalf.
DEFAULT_AGENT_TOOLS = (
    "COMPOSIO_SEARCH_TOOLS",
    "COMPOSIO_MULTI_EXECUTE_TOOL",
    "COMPOSIO_MANAGE_CONNECTIONS",
    "COMPOSIO_REMOTE_WORKBENCH",
)

CONNECTION_POLL_INTERVAL_SECONDS = 2.0
CONNECTION_POLL_TIMEOUT_SECONDS = 30.0


def validate_integrations_config() -> None:
    """Warn at startup when the integrations service is not configured."""
    if not os.environ.get("COMPOSIO_API_KEY", "").strip():
        logger.warning(
            "COMPOSIO_API_KEY is not set; connected apps and tools are unavailable"
        )


@dataclass(frozen=True)
class Connection:
    """A connected account as reported by the integrations service."""

    id: str
    toolkit_id: str
    status: str
    created_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status.upper() == ACTIVE_STATUS

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "Connection":
        toolkit = item.get("toolkit")
        if isinstance(toolkit, dict):
            slug = toolkit.get("slug") or ""
        else:
            slug = item.get("toolkit_slug") or item.get("integrationId") or item.get("appName") or ""
        return cls(
            id=str(item.get("id") or item.get("nanoid") or ""),
            toolkit_id=normalize_toolkit_id(str(slug)),
            status=str(item.get("status") or ""),
            created_at=item.get("created_at") or item.get("createdAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "toolkit_id": self.toolkit_id,
            "status": self.status,
            "created_at": self.created_at,
        }


def is_toolkit_connected(connections: list[Connection], toolkit_id: str) -> bool:
    """True if any ACTIVE connection matches toolkit_id case-insensitively."""
    wanted = normalize_toolkit_id(toolkit_id)
    return any(c.toolkit_id == wanted and c.is_active for c in connections)


class IntegrationsClient:
    """Async client for the integrations account service.

    Args:
        api_key: Service API key (defaults to COMPOSIO_API_KEY).
        base_url: Service base URL (defaults to COMPOSIO_BASE_URL).
        transport: Optional httpx transport (tests use httpx.MockTransport).
        poll_interval: Seconds between connection status checks.
        poll_timeout: Seconds to wait for a new connection to become active.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        poll_interval: float = CONNECTION_POLL_INTERVAL_SECONDS,
        poll_timeout: float = CONNECTION_POLL_TIMEOUT_SECONDS,
    ) -> None:
        if api_key is None:
            api_key = os.environ.get("COMPOSIO_API_KEY", "").strip()
        self._client = httpx.AsyncClient(
            base_url=base_url or COMPOSIO_BASE_URL,
            headers={"x-api-key": api_key} if api_key else {},
            timeout=30.0,
            transport=transport,
        )
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    async def __aenter__(self) -> "IntegrationsClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and return decoded JSON.

        Raises:
            IntegrationError: Transport failure or non-2xx response.
        """
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise IntegrationError(f"Integrations service unreachable: {e}") from e

        if resp.status_code >= 400:
            detail = resp.text
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                error = body.get("error")
                if isinstance(error, dict):
                    error = error.get("message")
                detail = error or body.get("message") or resp.text
            raise IntegrationError(
                sanitize_error_message(str(detail)) or "request failed",
                status_code=resp.status_code,
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise IntegrationError("Integrations service returned invalid JSON") from e

    async def list_connections(self, user_id: str) -> list[Connection]:
        """List a user's connected accounts. Returns [] on any failure."""
        try:
            data = await self._request(
                "GET", CONNECTED_ACCOUNTS_PATH, params={"user_ids": user_id}
            )
        except IntegrationError as e:
            logger.error("Error fetching connections for user %s: %s", user_id, e)
            return []
        items = data.get("items", []) if isinstance(data, dict) else []
        return [Connection.from_api(item) for item in items if isinstance(item, dict)]

    async def _tool_router_session(self, user_id: str) -> str:
        data = await self._request("POST", TOOL_ROUTER_SESSION_PATH, json={"user_id": user_id})
        session_id = data.get("session_id") or data.get("id")
        if not session_id:
            raise IntegrationError("Integrations service returned no session id")
        return str(session_id)

    async def initiate_connection(self, user_id: str, toolkit_id: str) -> dict[str, Any]:
        """Start linking a toolkit for a user.

        Returns:
            {"success": True, "redirect_url", "connection_id"} or
            {"success": False, "error"}.
        """
        toolkit = normalize_toolkit_id(toolkit_id)
        if not toolkit:
            return {"success": False, "error": "Toolkit is required"}
        try:
            session_id = await self._tool_router_session(user_id)
            data = await self._request(
                "POST",
                f"{TOOL_ROUTER_SESSION_PATH}/{session_id}/link",
                json={"toolkit": toolkit},
            )
        except IntegrationError as e:
            logger.error("Error initiating %s connection for user %s: %s", toolkit, user_id, e)
            return {"success": False, "error": str(e) or "Failed to initiate connection"}

        redirect_url = data.get("redirect_url") or data.get("redirectUrl")
        connection_id = data.get("connected_account_id") or data.get("id")
        if not redirect_url:
            return {"success": False, "error": "Failed to initiate connection"}
        logger.info("Initiated %s connection %s for user %s", toolkit, connection_id, user_id)
        return {"success": True, "redirect_url": redirect_url, "connection_id": connection_id}

    async def delete_connection(self, connection_id: str) -> dict[str, Any]:
        """Unlink a connected account.

        Returns:
            {"success": True} or {"success": False, "error"}.
        """
        try:
            await self._request("DELETE", f"{CONNECTED_ACCOUNTS_PATH}/{connection_id}")
        except IntegrationError as e:
            logger.error("Error deleting connection %s: %s", connection_id, e)
            return {"success": False, "error": str(e) or "Failed to delete connection"}
        return {"success": True}

    async def is_toolkit_connected(self, user_id: str, toolkit_id: str) -> bool:
        return is_toolkit_connected(await self.list_connections(user_id), toolkit_id)

    async def wait_for_connection(self, user_id: str, toolkit_id: str) -> bool:
        """Poll until toolkit_id is ACTIVE for the user or poll_timeout passes.

        Returns:
            True if the connection became active in time.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_timeout
        while True:
            if await self.is_toolkit_connected(user_id, toolkit_id):
                return True
            if loop.time() + self.poll_interval > deadline:
                return False
            await asyncio.sleep(self.poll_interval)

    async def list_tools(
        self,
        user_id: str,
        tool_slugs: tuple[str, ...] = DEFAULT_AGENT_TOOLS,
    ) -> list[dict[str, Any]]:
        """Fetch tool definitions the assistant may call.

        Returns:
            Dicts with name, description and input_schema keys.

        Raises:
            IntegrationError: The service could not be reached.
        """
        data = await self._request(
            "GET",
            TOOLS_PATH,
            params={"tool_slugs": ",".join(tool_slugs), "user_id": user_id},
        )
        items = data.get("items", []) if isinstance(data, dict) else []
        tools = []
        for item in items:
            if not isinstance(item, dict) or not item.get("slug"):
                continue
            tools.append({
                "name": item["slug"],
                "description": (item.get("description") or item["slug"])[:1024],
                "input_schema": item.get("input_parameters")
                or {"type": "object", "properties": {}},
            })
        return tools

    async def execute_tool(
        self,
        user_id: str,
        tool_slug: str,
        arguments: dict[str, Any],
    ) -> dict[str, Any]:
        """Execute one tool for a user.

        Failures are returned as {"successful": False, "error": ...} rather
        than raised, so the model sees them as the tool's result.
        """
        logger.info("Executing %s args=%s", tool_slug, preview_payload(arguments))
        try:
            data = await self._request(
                "POST",
                EXECUTE_PATH.format(slug=tool_slug),
                json={"user_id": user_id, "arguments": arguments},
            )
        except IntegrationError as e:
            logger.warning("Tool %s failed: %s", tool_slug, e)
            return {"successful": False, "error": str(e)}
        if not isinstance(data, dict):
            data = {"data": data}
        if data.get("successful") is False or data.get("error"):
            logger.warning(
                "Tool %s reported error: %s",
                tool_slug, sanitize_error_message(str(data.get("error"))),
            )
        else:
            logger.info("Tool %s result=%s", tool_slug, preview_payload(data))
        return data

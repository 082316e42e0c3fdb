"""API routes for connected third-party apps.

Lists the signed-in user's connections against the fixed toolkit catalog,
starts linking a toolkit (returning the provider's redirect URL) and
unlinks a connection. The integrations service itself is reached only
through IntegrationsClient.

Endpoints:
    GET  /connections/            - Connections + catalog with connected flags
    POST /connections/connect     - Start linking a toolkit
    POST /connections/disconnect  - Unlink a connection
    GET  /connections/{toolkit}/status - Wait briefly for a new link to activate
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.middleware.auth import CurrentUser, get_current_user
from src.errors.domain import IntegrationError, NotFoundError, ValidationError
from src.services.integrations_client import (
    Connection,
    IntegrationsClient,
    is_toolkit_connected,
)
from src.services.toolkit_catalog import (
    TOOLKIT_CATALOG,
    normalize_toolkit_id,
    toolkit_logo,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])

# Module-level client, created on first use and closed at shutdown.
_integrations_client: IntegrationsClient | None = None


def get_integrations_client() -> IntegrationsClient:
    """FastAPI dependency returning the shared integrations client."""
    global _integrations_client
    if _integrations_client is None:
        _integrations_client = IntegrationsClient()
    return _integrations_client


async def shutdown_integrations_client() -> None:
    """Close the shared integrations client, if one was created."""
    global _integrations_client
    if _integrations_client is not None:
        await _integrations_client.aclose()
        _integrations_client = None


# --- Pydantic request models ---


class ConnectRequest(BaseModel):
    """Request body for linking a toolkit."""

    toolkit: str = Field(..., min_length=1, description="Toolkit id, e.g. 'gmail'")


class DisconnectRequest(BaseModel):
    """Request body for unlinking a connection."""

    connection_id: str = Field(..., min_length=1)


def _catalog_with_status(connections: list[Connection]) -> list[dict[str, Any]]:
    active_by_toolkit = {c.toolkit_id: c for c in connections if c.is_active}
    categories = []
    for category in TOOLKIT_CATALOG:
        toolkits = []
        for entry in category.toolkits:
            connection = active_by_toolkit.get(entry.id)
            toolkits.append({
                "id": entry.id,
                "name": entry.name,
                "description": entry.description,
                "logo": toolkit_logo(entry.id),
                "connected": is_toolkit_connected(connections, entry.id),
                "connection_id": connection.id if connection else None,
            })
        categories.append({"name": category.name, "toolkits": toolkits})
    return categories


@router.get("/")
async def list_connections(
    user: CurrentUser = Depends(get_current_user),
    client: IntegrationsClient = Depends(get_integrations_client),
) -> dict[str, Any]:
    """List the user's connections and the catalog with connected flags."""
    connections = await client.list_connections(user.id)
    return {
        "connections": [c.to_dict() for c in connections],
        "catalog": _catalog_with_status(connections),
    }


@router.post("/connect")
async def connect_toolkit(
    body: ConnectRequest,
    user: CurrentUser = Depends(get_current_user),
    client: IntegrationsClient = Depends(get_integrations_client),
) -> dict[str, Any]:
    """Start linking a toolkit; the client follows redirect_url to authorize."""
    toolkit = normalize_toolkit_id(body.toolkit)
    if not toolkit:
        raise ValidationError("Toolkit is required")
    result = await client.initiate_connection(user.id, toolkit)
    if not result.get("success"):
        raise IntegrationError(result.get("error") or "Failed to initiate connection")
    return result


@router.post("/disconnect")
async def disconnect(
    body: DisconnectRequest,
    user: CurrentUser = Depends(get_current_user),
    client: IntegrationsClient = Depends(get_integrations_client),
) -> dict[str, Any]:
    """Unlink one of the user's connections.

    Only connections listed for the user may be removed.
    """
    connections = await client.list_connections(user.id)
    if not any(c.id == body.connection_id for c in connections):
        raise NotFoundError("Connection", body.connection_id)
    result = await client.delete_connection(body.connection_id)
    if not result.get("success"):
        raise IntegrationError(
            result.get("error") or "Failed to delete connection", error_code="E-2002"
        )
    return result


@router.get("/{toolkit}/status")
async def connection_status(
    toolkit: str,
    wait: bool = False,
    user: CurrentUser = Depends(get_current_user),
    client: IntegrationsClient = Depends(get_integrations_client),
) -> dict[str, Any]:
    """Report whether a toolkit is connected, optionally polling until it is."""
    toolkit_id = normalize_toolkit_id(toolkit)
    if wait:
        connected = await client.wait_for_connection(user.id, toolkit_id)
    else:
        connected = await client.is_toolkit_connected(user.id, toolkit_id)
    return {"toolkit": toolkit_id, "connected": connected}

"""In-memory stand-in for the integrations account service.

Serves the REST paths IntegrationsClient calls through an
``httpx.MockTransport`` so routes exercise the real client code.
"""

import json
from typing import Any

import httpx

from src.services.integrations_client import IntegrationsClient


class FakeIntegrationsService:
    """Holds connected accounts per user and answers client requests.

    Attributes:
        accounts: Connected-account items as the service reports them.
        deleted: Ids removed through DELETE.
        executed: (slug, body) pairs of executed tools.
        fail_link: When set, linking a toolkit responds with this error.
    """

    def __init__(self) -> None:
        self.accounts: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.fail_link: str | None = None

    def add_account(self, account_id: str, user_id: str, toolkit: str, status: str = "ACTIVE") -> None:
        self.accounts.append({
            "id": account_id,
            "user_id": user_id,
            "toolkit": {"slug": toolkit},
            "status": status,
        })

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/v3/connected_accounts" and request.method == "GET":
            user_id = request.url.params.get("user_ids")
            items = [a for a in self.accounts if a["user_id"] == user_id]
            return httpx.Response(200, json={"items": items})
        if path.startswith("/api/v3/connected_accounts/") and request.method == "DELETE":
            account_id = path.rsplit("/", 1)[-1]
            self.deleted.append(account_id)
            self.accounts = [a for a in self.accounts if a["id"] != account_id]
            return httpx.Response(200, json={})
        if path == "/api/v3/tool_router/session":
            return httpx.Response(200, json={"session_id": "trs_test"})
        if path.endswith("/link"):
            if self.fail_link:
                return httpx.Response(400, json={"error": {"message": self.fail_link}})
            toolkit = json.loads(request.content)["toolkit"]
            return httpx.Response(200, json={
                "redirect_url": f"https://auth.example/{toolkit}",
                "connected_account_id": f"ca_{toolkit}",
            })
        if path == "/api/v3/tools":
            return httpx.Response(200, json={"items": []})
        if path.startswith("/api/v3/tools/execute/"):
            self.executed.append((path.rsplit("/", 1)[-1], json.loads(request.content)))
            return httpx.Response(200, json={"successful": True, "data": {}})
        return httpx.Response(404, json={"message": f"no route {path}"})

    def client(self) -> IntegrationsClient:
        return IntegrationsClient(
            api_key="test-key",
            base_url="https://integrations.test",
            transport=httpx.MockTransport(self.handler),
            poll_interval=0.01,
            poll_timeout=0.05,
        )

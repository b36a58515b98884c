"""HTTP client for the runbook hub."""

from __future__ import annotations

from typing import Any

import httpx

from engine.sync.config import settings


class HttpResponseError(Exception):
    """The hub answered with an error status."""

    def __init__(self, status_code: int, detail: Any = None):
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class HubClient:
    """
    Remote delivery calls, one per operation kind.

    Error statuses raise HttpResponseError. Network failures surface as
    httpx.TransportError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.HUB_URL).rstrip("/")
        self.token = token if token is not None else settings.HUB_TOKEN
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, body: dict | None = None) -> Any:
        res = await self.client.request(method, path, json=body, headers=self._headers())
        if res.status_code >= 400:
            try:
                payload = res.json()
            except ValueError:
                payload = res.text
            detail = payload.get("detail") if isinstance(payload, dict) else payload
            raise HttpResponseError(res.status_code, detail)
        if res.status_code == 204 or not res.content:
            return None
        return res.json()

    async def create_workspace(self, workspace_id: str, name: str, org_id: str | None = None) -> dict:
        return await self._request("POST", "/api/workspaces", {"id": workspace_id, "name": name, "org_id": org_id})

    async def rename_workspace(self, workspace_id: str, name: str) -> dict:
        return await self._request("PUT", f"/api/workspaces/{workspace_id}", {"name": name})

    async def delete_workspace(self, workspace_id: str) -> None:
        await self._request("DELETE", f"/api/workspaces/{workspace_id}")

    async def get_folder(self, workspace_id: str) -> dict:
        """{"version": n, "data": {...}, "tree": [...]}"""
        return await self._request("GET", f"/api/workspaces/{workspace_id}/folder")

    async def update_folder(self, workspace_id: str, operation: dict[str, Any]) -> dict:
        """
        Deliver one folder operation.

        Returns {"version": n, "status": "applied" | "duplicate" | "rejected"}.
        """
        return await self._request("PUT", f"/api/workspaces/{workspace_id}/folder", operation)

    async def delete_runbook(self, runbook_id: str) -> None:
        await self._request("DELETE", f"/api/runbooks/{runbook_id}")

    async def close(self) -> None:
        await self.client.aclose()

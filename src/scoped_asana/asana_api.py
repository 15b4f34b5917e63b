"""
Thin async client for the Asana REST API.

One method per endpoint the scoping layer needs. No authorization logic lives
here: this module only knows how to talk to Asana. Every call goes through
`_request`, which

- sends the bearer token on a shared httpx.AsyncClient
- wraps request bodies in Asana's {"data": ...} envelope
- unwraps the "data" member of the response
- turns HTTP and transport errors into UpstreamFailure (no retries)

List endpoints that paginate are followed to the end by `_collect`.
"""

import logging
from typing import Any

import httpx

from scoped_asana.config import ASANA_API_BASE_URL
from scoped_asana.errors import UpstreamFailure

logger = logging.getLogger("scoped-asana.api")

PAGE_SIZE = 100


def _clean_params(params: dict | None) -> dict:
    return {k: v for k, v in (params or {}).items() if v is not None}


def _decode(response: httpx.Response) -> dict:
    """Decode an Asana response body; anything but a JSON object is an upstream failure."""
    try:
        payload = response.json()
    except ValueError as e:
        raise UpstreamFailure(
            f"Asana returned a non-JSON body (HTTP {response.status_code})",
            status_code=response.status_code,
        ) from e
    if not isinstance(payload, dict):
        raise UpstreamFailure(
            f"Asana returned an unexpected body (HTTP {response.status_code})",
            status_code=response.status_code,
        )
    return payload


def _error_message(response: httpx.Response) -> str:
    try:
        errors = _decode(response).get("errors") or []
    except UpstreamFailure:
        errors = []
    if errors and isinstance(errors[0], dict) and errors[0].get("message"):
        return errors[0]["message"]
    return f"Asana API returned HTTP {response.status_code}"


class AsanaApi:
    """
    Async wrapper over the Asana endpoints used by the server.

    Args:
        access_token: Asana personal access token
        base_url: API root, overridable for tests
        timeout: Per-request timeout in seconds (cancellation is left to httpx)
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = ASANA_API_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, params: dict | None = None, body: Any = None) -> httpx.Response:
        logger.debug("Asana %s %s", method, path)
        try:
            response = await self._client.request(method, path, params=_clean_params(params), json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamFailure(_error_message(e.response), status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Asana request failed: {e}") from e
        return response

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        data: Any = None,
    ) -> Any:
        body = {"data": data} if data is not None else None
        response = await self._send(method, path, params, body)
        if not response.content:
            return {}
        return _decode(response).get("data")

    async def _collect(self, path: str, params: dict | None = None) -> list[dict]:
        """Fetch every page of a paginated list endpoint."""
        params = {"limit": PAGE_SIZE, **_clean_params(params)}
        items: list[dict] = []
        while True:
            response = await self._send("GET", path, params)
            payload = _decode(response)
            items.extend(payload.get("data") or [])
            next_page = payload.get("next_page")
            if not isinstance(next_page, dict) or not next_page.get("offset"):
                return items
            params = {**params, "offset": next_page["offset"]}

    # --- Workspaces & projects ---

    async def get_workspaces(self, opt_fields: str | None = None) -> list[dict]:
        return await self._collect("/workspaces", {"opt_fields": opt_fields})

    async def get_projects_for_workspace(
        self, workspace_gid: str, archived: bool = False, opt_fields: str | None = None
    ) -> list[dict]:
        return await self._collect(
            f"/workspaces/{workspace_gid}/projects",
            {"archived": archived, "opt_fields": opt_fields},
        )

    async def get_project(self, project_gid: str, opt_fields: str | None = None) -> dict:
        return await self._request("GET", f"/projects/{project_gid}", {"opt_fields": opt_fields})

    async def get_task_counts_for_project(self, project_gid: str, opt_fields: str | None = None) -> dict:
        return await self._request("GET", f"/projects/{project_gid}/task_counts", {"opt_fields": opt_fields})

    async def get_sections_for_project(self, project_gid: str, opt_fields: str | None = None) -> list[dict]:
        return await self._collect(f"/projects/{project_gid}/sections", {"opt_fields": opt_fields})

    async def get_custom_field_settings_for_project(
        self, project_gid: str, opt_fields: str | None = None
    ) -> list[dict]:
        return await self._collect(
            f"/projects/{project_gid}/custom_field_settings", {"opt_fields": opt_fields}
        )

    # --- Project statuses ---

    async def get_project_statuses_for_project(
        self, project_gid: str, opt_fields: str | None = None
    ) -> list[dict]:
        return await self._collect(f"/projects/{project_gid}/project_statuses", {"opt_fields": opt_fields})

    async def create_project_status_for_project(self, project_gid: str, data: dict) -> dict:
        return await self._request("POST", f"/projects/{project_gid}/project_statuses", data=data)

    async def get_project_status(self, status_gid: str, opt_fields: str | None = None) -> dict:
        return await self._request("GET", f"/project_statuses/{status_gid}", {"opt_fields": opt_fields})

    async def delete_project_status(self, status_gid: str) -> dict:
        return await self._request("DELETE", f"/project_statuses/{status_gid}")

    # --- Tasks ---

    async def search_tasks_for_workspace(self, workspace_gid: str, params: dict) -> list[dict]:
        # The search endpoint does not paginate; it caps results with `limit`.
        return await self._request("GET", f"/workspaces/{workspace_gid}/tasks/search", params) or []

    async def get_task(self, task_gid: str, opt_fields: str | None = None) -> dict:
        return await self._request("GET", f"/tasks/{task_gid}", {"opt_fields": opt_fields})

    async def create_task(self, data: dict, opt_fields: str | None = None) -> dict:
        return await self._request("POST", "/tasks", {"opt_fields": opt_fields}, data=data)

    async def update_task(self, task_gid: str, data: dict, opt_fields: str | None = None) -> dict:
        return await self._request("PUT", f"/tasks/{task_gid}", {"opt_fields": opt_fields}, data=data)

    async def create_subtask_for_task(self, task_gid: str, data: dict, opt_fields: str | None = None) -> dict:
        return await self._request("POST", f"/tasks/{task_gid}/subtasks", {"opt_fields": opt_fields}, data=data)

    async def set_parent_for_task(self, task_gid: str, data: dict, opt_fields: str | None = None) -> dict:
        return await self._request("POST", f"/tasks/{task_gid}/setParent", {"opt_fields": opt_fields}, data=data)

    async def add_dependencies_for_task(self, task_gid: str, dependencies: list[str]) -> dict:
        return await self._request(
            "POST", f"/tasks/{task_gid}/addDependencies", data={"dependencies": dependencies}
        )

    async def add_dependents_for_task(self, task_gid: str, dependents: list[str]) -> dict:
        return await self._request(
            "POST", f"/tasks/{task_gid}/addDependents", data={"dependents": dependents}
        )

    # --- Stories ---

    async def get_stories_for_task(self, task_gid: str, opt_fields: str | None = None) -> list[dict]:
        return await self._collect(f"/tasks/{task_gid}/stories", {"opt_fields": opt_fields})

    async def create_story_for_task(self, task_gid: str, data: dict, opt_fields: str | None = None) -> dict:
        return await self._request("POST", f"/tasks/{task_gid}/stories", {"opt_fields": opt_fields}, data=data)

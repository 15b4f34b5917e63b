"""
Project-scoped Asana MCP server built on FastMCP v2.

This module wires the pieces together:
- AsanaApi (raw HTTP) -> AccessScopedClient (scope enforcement) -> tool functions
- ScopeGuardMiddleware: optional JWT authentication plus PolicyGate admission
  for tools/list (filtering) and tools/call (rejection)
- a resource describing the allowed project
- /health and /ready HTTP endpoints (streamable-http transport only)
- structured JSON logging to stderr (stdout belongs to the stdio transport)

Request flow for tools/call:

    1. ScopeGuardMiddleware authenticates the caller (if a JWT secret is set)
    2. PolicyGate admits or rejects the tool for the current mode
    3. The tool function calls AccessScopedClient, which pins/verifies scope
    4. Any AccessError is returned as {"error": <kind>, "message": ...} with isError

Running the server:
    ASANA_ACCESS_TOKEN=... ASANA_PROJECT_GID=... ASANA_WORKSPACE_GID=... \\
        python -m scoped_asana.server
"""

import asyncio
import json
import logging
import sys
import uuid
from typing import Any, Awaitable, Sequence

from fastmcp import FastMCP
from fastmcp.exceptions import ResourceError, ToolError
from fastmcp.server.dependencies import get_http_request
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import Tool, ToolResult
from mcp.types import CallToolRequestParams, ListToolsRequest
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from scoped_asana.asana_api import AsanaApi
from scoped_asana.auth import AuthError, validate_token
from scoped_asana.client import AccessScopedClient
from scoped_asana.config import ConfigurationError, Settings
from scoped_asana.errors import AccessError, NotSupportedInMode
from scoped_asana.policy import PolicyGate
from scoped_asana.resources import PROJECT_URI_TEMPLATE, project_uri, read_project_resource

logger = logging.getLogger("scoped-asana")


# ---------------------------------------------------------------------------
# Structured JSON Logging
# ---------------------------------------------------------------------------


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-02-06 10:30:00,000", "level": "WARNING", "logger": "scoped-asana",
         "message": "Tool call denied", "tool": "asana_get_tasks_for_tag", "decision": "denied"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Structured fields passed via logger.info("msg", extra={"audit": {...}})
        if hasattr(record, "audit"):
            log_entry.update(record.audit)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONLogFormatter())
    logging.basicConfig(level=getattr(logging, level.upper()), handlers=[handler], force=True)


# ---------------------------------------------------------------------------
# Authentication & Policy Middleware
# ---------------------------------------------------------------------------


class ScopeGuardMiddleware(Middleware):
    """
    Gates every tools/list and tools/call request.

    - tools/list responses only contain tools the PolicyGate admits
    - tools/call requests for any other tool are rejected before the tool runs

    Both hooks ask the same PolicyGate, so what is listed is exactly what can be
    called. When `jwt_secret_key` is set, both hooks first require a valid
    bearer token.
    """

    def __init__(self, gate: PolicyGate, jwt_secret_key: str | None = None, jwt_algorithm: str = "HS256"):
        self.gate = gate
        self.jwt_secret_key = jwt_secret_key
        self.jwt_algorithm = jwt_algorithm

    def _get_auth_header(self) -> str | None:
        """Authorization header of the current HTTP request, or None outside HTTP (stdio)."""
        try:
            request = get_http_request()
            return request.headers.get("authorization")
        except RuntimeError:
            return None

    def _authenticate(self, request_id: str) -> str | None:
        """Return the caller subject, or None when authentication is not configured."""
        if not self.jwt_secret_key:
            return None
        try:
            caller = validate_token(self._get_auth_header(), self.jwt_secret_key, self.jwt_algorithm)
        except AuthError as e:
            logger.warning(
                "Authentication failed",
                extra={
                    "audit": {
                        "request_id": request_id,
                        "decision": "rejected",
                        "reason": e.message,
                    }
                },
            )
            raise
        return caller.subject

    async def on_list_tools(
        self,
        context: MiddlewareContext[ListToolsRequest],
        call_next: CallNext[ListToolsRequest, Sequence[Tool]],
    ) -> Sequence[Tool]:
        request_id = str(uuid.uuid4())[:8]
        subject = self._authenticate(request_id)

        all_tools = await call_next(context)
        advertised = [tool for tool in all_tools if self.gate.is_advertised(tool.name)]

        logger.info(
            "Tool list filtered by policy",
            extra={
                "audit": {
                    "request_id": request_id,
                    "subject": subject,
                    "read_only": self.gate.mode.read_only,
                    "project_restricted": self.gate.mode.project_restricted,
                    "total_tools": len(all_tools),
                    "advertised_tools": [t.name for t in advertised],
                    "decision": "filtered",
                }
            },
        )
        return advertised

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        request_id = str(uuid.uuid4())[:8]
        tool_name = context.message.name
        subject = self._authenticate(request_id)

        try:
            self.gate.check(tool_name)
        except NotSupportedInMode as e:
            logger.warning(
                "Tool call denied by policy",
                extra={
                    "audit": {
                        "request_id": request_id,
                        "subject": subject,
                        "tool": tool_name,
                        "decision": "denied",
                        "reason": e.message,
                    }
                },
            )
            raise ToolError(json.dumps(e.to_payload())) from e

        logger.info(
            "Tool call admitted",
            extra={
                "audit": {
                    "request_id": request_id,
                    "subject": subject,
                    "tool": tool_name,
                    "decision": "allowed",
                }
            },
        )
        return await call_next(context)


# ---------------------------------------------------------------------------
# Tool result handling
# ---------------------------------------------------------------------------


async def _invoke(call: Awaitable[Any]) -> str:
    """Await a client call and render it as JSON; AccessErrors become tagged tool errors."""
    try:
        result = await call
    except AccessError as e:
        logger.warning("Tool call failed: %s", e.message, extra={"audit": {"error": e.kind.value}})
        raise ToolError(json.dumps(e.to_payload())) from e
    return json.dumps(result)


def _compact(**fields: Any) -> dict:
    return {k: v for k, v in fields.items() if v is not None}


def _split_ids(task_ids: list[str] | str) -> list[str]:
    if isinstance(task_ids, str):
        task_ids = task_ids.split(",")
    return [gid.strip() for gid in task_ids if gid and gid.strip()]


# ---------------------------------------------------------------------------
# Server factory
# ---------------------------------------------------------------------------


def create_server(settings: Settings, api: AsanaApi, gate: PolicyGate | None = None) -> FastMCP:
    """
    Build the MCP server for the configured project.

    Args:
        settings: Loaded configuration; the scope and mode are frozen from it here
        api: Raw Asana API client (owned by the caller, which closes it)
        gate: Optional PolicyGate override; defaults to the build's tool catalog

    Raises:
        ConfigurationError: If the token, project or workspace is missing
    """
    scope = settings.allowed_scope()
    gate = gate or PolicyGate(settings.access_mode())
    client = AccessScopedClient(api, scope)
    # stdio carries no Authorization header; the caller is whoever launched the process.
    jwt_secret_key = settings.jwt_secret_key if settings.transport == "streamable-http" else None

    mcp = FastMCP(
        name="scoped-asana",
        instructions=(
            f"Asana access restricted to project {scope.project_gid} in workspace "
            f"{scope.workspace_gid}. Project ids default to that project; other ids are denied."
        ),
        middleware=[ScopeGuardMiddleware(gate, jwt_secret_key, settings.jwt_algorithm)],
    )

    # --- Workspaces & projects -------------------------------------------

    @mcp.tool(description="List the Asana workspace this server is scoped to.")
    async def asana_list_workspaces(opt_fields: str | None = None) -> str:
        return await _invoke(client.list_workspaces(opt_fields))

    @mcp.tool(description="Search projects by name pattern (regular expression, case-insensitive).")
    async def asana_search_projects(
        name_pattern: str,
        archived: bool = False,
        opt_fields: str | None = None,
    ) -> str:
        return await _invoke(client.search_projects(name_pattern, archived, opt_fields))

    @mcp.tool(description="Get details of the allowed project.")
    async def asana_get_project(project_id: str | None = None, opt_fields: str | None = None) -> str:
        return await _invoke(client.get_project(project_id or scope.project_gid, opt_fields))

    @mcp.tool(description="Get the number of tasks in the allowed project.")
    async def asana_get_project_task_counts(
        project_id: str | None = None,
        opt_fields: str | None = None,
    ) -> str:
        return await _invoke(client.get_project_task_counts(project_id or scope.project_gid, opt_fields))

    @mcp.tool(description="Get the sections of the allowed project.")
    async def asana_get_project_sections(project_id: str | None = None, opt_fields: str | None = None) -> str:
        return await _invoke(client.get_project_sections(project_id or scope.project_gid, opt_fields))

    # --- Project statuses --------------------------------------------------

    @mcp.tool(description="Get a project status update by its gid.")
    async def asana_get_project_status(project_status_gid: str, opt_fields: str | None = None) -> str:
        return await _invoke(client.get_project_status(project_status_gid, opt_fields))

    @mcp.tool(description="Get the status updates of the allowed project.")
    async def asana_get_project_statuses(project_gid: str | None = None, opt_fields: str | None = None) -> str:
        return await _invoke(client.get_project_statuses_for_project(project_gid or scope.project_gid, opt_fields))

    @mcp.tool(description="Create a status update on the allowed project.")
    async def asana_create_project_status(
        text: str,
        project_gid: str | None = None,
        color: str | None = None,
        title: str | None = None,
        html_text: str | None = None,
    ) -> str:
        data = _compact(text=text, color=color, title=title, html_text=html_text)
        return await _invoke(client.create_project_status(project_gid or scope.project_gid, data))

    @mcp.tool(description="Delete a status update of the allowed project.")
    async def asana_delete_project_status(project_status_gid: str) -> str:
        return await _invoke(client.delete_project_status(project_status_gid))

    # --- Tasks -------------------------------------------------------------

    @mcp.tool(
        description=(
            "Search tasks in the allowed project. Filters use Asana's search names with "
            "underscores (assignee_any, due_on_before, ...). custom_fields maps a field gid to a value."
        )
    )
    async def asana_search_tasks(
        text: str | None = None,
        resource_subtype: str | None = None,
        completed: bool | None = None,
        is_subtask: bool | None = None,
        has_attachment: bool | None = None,
        is_blocked: bool | None = None,
        is_blocking: bool | None = None,
        assignee_any: str | None = None,
        assignee_not: str | None = None,
        sections_any: str | None = None,
        sections_all: str | None = None,
        tags_any: str | None = None,
        tags_all: str | None = None,
        due_on: str | None = None,
        due_on_before: str | None = None,
        due_on_after: str | None = None,
        start_on_before: str | None = None,
        start_on_after: str | None = None,
        created_at_before: str | None = None,
        created_at_after: str | None = None,
        modified_at_before: str | None = None,
        modified_at_after: str | None = None,
        sort_by: str | None = None,
        sort_ascending: bool | None = None,
        custom_fields: dict[str, Any] | None = None,
        opt_fields: str | None = None,
        limit: int | None = None,
    ) -> str:
        search_opts = _compact(
            text=text,
            resource_subtype=resource_subtype,
            completed=completed,
            is_subtask=is_subtask,
            has_attachment=has_attachment,
            is_blocked=is_blocked,
            is_blocking=is_blocking,
            assignee_any=assignee_any,
            assignee_not=assignee_not,
            sections_any=sections_any,
            sections_all=sections_all,
            tags_any=tags_any,
            tags_all=tags_all,
            due_on=due_on,
            due_on_before=due_on_before,
            due_on_after=due_on_after,
            start_on_before=start_on_before,
            start_on_after=start_on_after,
            created_at_before=created_at_before,
            created_at_after=created_at_after,
            modified_at_before=modified_at_before,
            modified_at_after=modified_at_after,
            sort_by=sort_by,
            sort_ascending=sort_ascending,
            custom_fields=custom_fields,
            opt_fields=opt_fields,
            limit=limit,
        )
        return await _invoke(client.search_tasks(search_opts))

    @mcp.tool(description="Get a task of the allowed project.")
    async def asana_get_task(task_id: str, opt_fields: str | None = None, project_id: str | None = None) -> str:
        return await _invoke(client.get_task(task_id, opt_fields, project_id))

    @mcp.tool(description="Get up to 25 tasks by gid (list or comma-separated string).")
    async def asana_get_multiple_tasks_by_gid(task_ids: list[str] | str, opt_fields: str | None = None) -> str:
        return await _invoke(client.get_multiple_tasks_by_gid(_split_ids(task_ids), opt_fields))

    @mcp.tool(description="Create a task in the allowed project.")
    async def asana_create_task(
        name: str,
        project_id: str | None = None,
        notes: str | None = None,
        html_notes: str | None = None,
        due_on: str | None = None,
        assignee: str | None = None,
        followers: list[str] | None = None,
        parent: str | None = None,
        projects: list[str] | None = None,
        resource_subtype: str | None = None,
        custom_fields: dict[str, Any] | None = None,
    ) -> str:
        data = _compact(
            name=name,
            notes=notes,
            html_notes=html_notes,
            due_on=due_on,
            assignee=assignee,
            followers=followers,
            parent=parent,
            projects=projects,
            resource_subtype=resource_subtype,
            custom_fields=custom_fields,
        )
        return await _invoke(client.create_task(data, project_gid=project_id))

    @mcp.tool(description="Update a task of the allowed project.")
    async def asana_update_task(
        task_id: str,
        name: str | None = None,
        notes: str | None = None,
        html_notes: str | None = None,
        due_on: str | None = None,
        assignee: str | None = None,
        completed: bool | None = None,
        resource_subtype: str | None = None,
        custom_fields: dict[str, Any] | None = None,
    ) -> str:
        data = _compact(
            name=name,
            notes=notes,
            html_notes=html_notes,
            due_on=due_on,
            assignee=assignee,
            completed=completed,
            resource_subtype=resource_subtype,
            custom_fields=custom_fields,
        )
        return await _invoke(client.update_task(task_id, data))

    @mcp.tool(description="Create a subtask under a task of the allowed project.")
    async def asana_create_subtask(
        parent_task_id: str,
        name: str,
        notes: str | None = None,
        html_notes: str | None = None,
        due_on: str | None = None,
        assignee: str | None = None,
        opt_fields: str | None = None,
    ) -> str:
        data = _compact(name=name, notes=notes, html_notes=html_notes, due_on=due_on, assignee=assignee)
        return await _invoke(client.create_subtask(parent_task_id, data, opt_fields))

    @mcp.tool(description="Set the parent of a task and position it among its siblings.")
    async def asana_set_parent_for_task(task_id: str, data: dict[str, Any], opt_fields: str | None = None) -> str:
        return await _invoke(client.set_parent_for_task(task_id, data, opt_fields))

    @mcp.tool(description="Mark a task as depending on other tasks.")
    async def asana_add_task_dependencies(task_id: str, dependencies: list[str]) -> str:
        return await _invoke(client.add_task_dependencies(task_id, dependencies))

    @mcp.tool(description="Mark other tasks as depending on a task.")
    async def asana_add_task_dependents(task_id: str, dependents: list[str]) -> str:
        return await _invoke(client.add_task_dependents(task_id, dependents))

    # --- Stories -----------------------------------------------------------

    @mcp.tool(description="Get the comments and activity of a task.")
    async def asana_get_task_stories(task_id: str, opt_fields: str | None = None) -> str:
        return await _invoke(client.get_stories_for_task(task_id, opt_fields))

    @mcp.tool(description="Comment on a task. Provide either text or html_text.")
    async def asana_create_task_story(
        task_id: str,
        text: str | None = None,
        html_text: str | None = None,
        opt_fields: str | None = None,
    ) -> str:
        return await _invoke(client.create_task_story(task_id, text, html_text, opt_fields))

    # --- Tags --------------------------------------------------------------

    @mcp.tool(description="Get the tasks carrying a tag.")
    async def asana_get_tasks_for_tag(tag_gid: str, opt_fields: str | None = None) -> str:
        return await _invoke(client.get_tasks_for_tag(tag_gid, opt_fields))

    @mcp.tool(description="Get the tags of a workspace.")
    async def asana_get_tags_for_workspace(workspace_gid: str, opt_fields: str | None = None) -> str:
        return await _invoke(client.get_tags_for_workspace(workspace_gid, opt_fields))

    # --- Resources ---------------------------------------------------------

    async def _read_project(project_gid: str) -> str:
        try:
            summary = await read_project_resource(client, project_gid)
        except AccessError as e:
            logger.warning("Resource read failed: %s", e.message, extra={"audit": {"error": e.kind.value}})
            raise ResourceError(json.dumps(e.to_payload())) from e
        return json.dumps(summary, indent=2)

    @mcp.resource(
        project_uri(scope.project_gid),
        name=f"Asana project {scope.project_gid}",
        description=f"Restricted Asana project ({scope.project_gid})",
        mime_type="application/json",
    )
    async def allowed_project() -> str:
        return await _read_project(scope.project_gid)

    @mcp.resource(
        PROJECT_URI_TEMPLATE,
        name="Asana Allowed Project",
        description="Access to the configured Asana project only",
        mime_type="application/json",
    )
    async def project_by_gid(project_gid: str) -> str:
        return await _read_project(project_gid)

    # --- Health and readiness (HTTP transport only) --------------------------

    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> Response:
        """Liveness probe: is the server process alive and responsive?"""
        return JSONResponse({"status": "healthy"})

    @mcp.custom_route("/ready", methods=["GET"])
    async def readiness_check(request: Request) -> Response:
        """Readiness probe: reports the scope this instance serves."""
        return JSONResponse(
            {
                "status": "ready",
                "project_gid": scope.project_gid,
                "workspace_gid": scope.workspace_gid,
                "read_only": gate.mode.read_only,
            }
        )

    return mcp


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------


async def serve(settings: Settings) -> None:
    api = AsanaApi(settings.access_token, settings.api_base_url, settings.timeout_seconds)
    try:
        mcp = create_server(settings, api)
        scope = settings.allowed_scope()
        logger.info(
            "Starting Asana MCP server restricted to project %s in workspace %s (transport=%s, read_only=%s, auth=%s)",
            scope.project_gid,
            scope.workspace_gid,
            settings.transport,
            settings.read_only_mode,
            "enabled" if settings.jwt_secret_key and settings.transport == "streamable-http" else "disabled",
        )
        if settings.transport == "stdio":
            await mcp.run_async(transport="stdio")
        else:
            await mcp.run_async(
                transport="streamable-http",
                host=settings.host,
                port=settings.port,
                log_level=settings.log_level,
            )
    finally:
        await api.aclose()


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    try:
        settings.validate_required()
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()

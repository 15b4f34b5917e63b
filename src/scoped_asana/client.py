"""
Project-scoped access to the Asana API.

AccessScopedClient is the only path through which the server talks to Asana.
Asana's endpoints accept any workspace/project gid and many return
workspace-wide data, so every method here enforces two rules:

1. Outbound: any workspace or project gid sent to Asana is the configured one.
   Callers that *name* a project (get_project, get_project_sections, ...) are
   compared and rejected on mismatch instead of silently redirected; calls that
   merely need a scope (search_tasks, create_task, ...) get it substituted.

2. Inbound: any task returned to the caller, or targeted by a mutation, is
   verified to belong to the allowed project, directly or through its parent.

Verification is fail-closed: a lookup that errors out denies access. The one
place errors are absorbed locally is batch verification (search_tasks parent
checks, get_multiple_tasks_by_gid), where the offending item is dropped and the
rest of the batch is returned.

Endpoints whose results can't be narrowed to one project (status by id, tag
listings) are refused outright.
"""

import asyncio
import logging
import re
from typing import Iterable

from scoped_asana.asana_api import AsanaApi
from scoped_asana.config import AllowedScope
from scoped_asana.errors import AuthorizationDenied, InvalidRequest, NotSupportedInMode, UpstreamFailure
from scoped_asana.models import Project, ProjectStatus, Task, Workspace
from scoped_asana.transform import transform_task, transform_tasks

logger = logging.getLogger("scoped-asana.client")

# Upper bound on get_multiple_tasks_by_gid fan-out.
MAX_BATCH_TASKS = 25

# Fields the search safety net needs on every returned task.
SEARCH_REQUIRED_FIELDS = ("projects", "parent")

DEFAULT_CUSTOM_FIELD_SETTINGS_FIELDS = (
    "custom_field,custom_field.name,custom_field.gid,custom_field.resource_type,"
    "custom_field.type,custom_field.description,custom_field.precision,"
    "custom_field.enum_options,custom_field.enum_options.name,"
    "custom_field.enum_options.gid,custom_field.enum_options.enabled"
)

_FILTER_SUFFIXES = ("_any", "_not", "_all", "_before", "_after")


def merge_opt_fields(opt_fields: str | None, required: Iterable[str]) -> str:
    """Append `required` fields to a comma-joined opt_fields list, keeping order and dropping blanks/dupes."""
    fields: list[str] = []
    for field in [*(opt_fields or "").split(","), *required]:
        field = field.strip()
        if field and field not in fields:
            fields.append(field)
    return ",".join(fields)


def to_search_params(search_opts: dict) -> dict:
    """
    Map tool-style search arguments onto Asana's query parameter names.

    `assignee_any` -> `assignee.any`, `due_on_before` -> `due_on.before`,
    `custom_fields={"123": "x"}` -> `custom_fields.123.value=x`. Lists are
    comma-joined. Keys that already use Asana's dotted form pass through.
    """
    params: dict = {}
    for key, value in search_opts.items():
        if value is None:
            continue
        if key == "custom_fields" and isinstance(value, dict):
            for field_gid, field_value in value.items():
                params[f"custom_fields.{field_gid}.value"] = field_value
            continue
        if "." not in key:
            for suffix in _FILTER_SUFFIXES:
                if key.endswith(suffix):
                    key = f"{key[: -len(suffix)]}.{suffix[1:]}"
                    break
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        params[key] = value
    return params


def _is_scoping_key(key: str) -> bool:
    return key in ("workspace", "projects", "project") or key.startswith("projects.")


def _ref_gid(value) -> str | None:
    if isinstance(value, dict):
        return value.get("gid")
    return value


class AccessScopedClient:
    """
    Wraps AsanaApi so that only the allowed workspace/project is ever reachable.

    Args:
        api: The raw Asana API client
        scope: The allowed workspace + project, fixed for the client's lifetime
    """

    def __init__(self, api: AsanaApi, scope: AllowedScope):
        self._api = api
        self._scope = scope

    @property
    def scope(self) -> AllowedScope:
        return self._scope

    # ------------------------------------------------------------------
    # Verification helpers
    # ------------------------------------------------------------------

    def _require_allowed_project(self, project_gid: str) -> None:
        if project_gid != self._scope.project_gid:
            raise AuthorizationDenied(
                f"Access to project {project_gid} is denied. "
                f"Only project {self._scope.project_gid} is allowed."
            )

    def _check_memberships(self, payload: dict) -> None:
        for membership in payload.get("memberships") or []:
            project_gid = _ref_gid(membership.get("project")) if isinstance(membership, dict) else None
            if project_gid != self._scope.project_gid:
                raise AuthorizationDenied(
                    f"Membership in project {project_gid} is denied. "
                    f"Only project {self._scope.project_gid} is allowed."
                )

    async def _fetch_task_projects(self, task_gid: str) -> Task:
        return Task.model_validate(await self._api.get_task(task_gid, opt_fields="projects"))

    async def ensure_task_in_allowed_project(self, task_gid: str) -> None:
        """Raise AuthorizationDenied unless the task is directly in the allowed project."""
        task = await self._fetch_task_projects(task_gid)
        if not task.in_project(self._scope.project_gid):
            raise AuthorizationDenied(
                f"Access to task {task_gid} is denied. "
                f"Task is not in allowed project {self._scope.project_gid}."
            )

    async def _ensure_tasks_in_allowed_project(self, task_gids: Iterable[str]) -> None:
        await asyncio.gather(*(self.ensure_task_in_allowed_project(gid) for gid in task_gids))

    async def _belongs_to_allowed_project(self, raw_task: dict) -> bool:
        task = Task.model_validate(raw_task)
        if task.in_project(self._scope.project_gid):
            return True
        # Only project-less tasks (subtasks) get a second chance through their parent.
        if task.project_gids() or task.parent is None or not task.parent.gid:
            return False
        try:
            parent = await self._fetch_task_projects(task.parent.gid)
        except UpstreamFailure as e:
            logger.warning(
                "Could not verify parent task %s for subtask %s: %s",
                task.parent.gid,
                task.gid,
                e.message,
            )
            return False
        return parent.in_project(self._scope.project_gid)

    # ------------------------------------------------------------------
    # Workspaces & projects
    # ------------------------------------------------------------------

    async def list_workspaces(self, opt_fields: str | None = None) -> list[dict]:
        workspaces = await self._api.get_workspaces(opt_fields)
        return [ws for ws in workspaces if Workspace.model_validate(ws).gid == self._scope.workspace_gid]

    async def search_projects(
        self,
        name_pattern: str,
        archived: bool = False,
        opt_fields: str | None = None,
    ) -> list[dict]:
        try:
            pattern = re.compile(name_pattern, re.IGNORECASE)
        except re.error as e:
            raise InvalidRequest(f"Invalid project name pattern {name_pattern!r}: {e}") from e

        projects = await self._api.get_projects_for_workspace(
            self._scope.workspace_gid,
            archived=archived,
            opt_fields=merge_opt_fields(opt_fields, ("name",)),
        )
        matches = []
        for raw in projects:
            project = Project.model_validate(raw)
            if project.gid == self._scope.project_gid and pattern.search(project.name or ""):
                matches.append(raw)
        return matches

    async def get_project(self, project_gid: str, opt_fields: str | None = None) -> dict:
        self._require_allowed_project(project_gid)
        return await self._api.get_project(project_gid, opt_fields)

    async def get_project_task_counts(self, project_gid: str, opt_fields: str | None = None) -> dict:
        self._require_allowed_project(project_gid)
        return await self._api.get_task_counts_for_project(project_gid, opt_fields)

    async def get_project_sections(self, project_gid: str, opt_fields: str | None = None) -> list[dict]:
        self._require_allowed_project(project_gid)
        return await self._api.get_sections_for_project(project_gid, opt_fields)

    async def get_project_custom_field_settings(
        self, project_gid: str, opt_fields: str | None = None
    ) -> list[dict]:
        self._require_allowed_project(project_gid)
        return await self._api.get_custom_field_settings_for_project(
            project_gid, opt_fields or DEFAULT_CUSTOM_FIELD_SETTINGS_FIELDS
        )

    # ------------------------------------------------------------------
    # Project statuses
    # ------------------------------------------------------------------

    async def get_project_statuses_for_project(
        self, project_gid: str, opt_fields: str | None = None
    ) -> list[dict]:
        self._require_allowed_project(project_gid)
        return await self._api.get_project_statuses_for_project(project_gid, opt_fields)

    async def create_project_status(self, project_gid: str, data: dict) -> dict:
        self._require_allowed_project(project_gid)
        return await self._api.create_project_status_for_project(project_gid, data)

    async def get_project_status(self, status_gid: str, opt_fields: str | None = None) -> dict:
        # A bare status gid can't be tied back to one project reliably.
        raise NotSupportedInMode(
            "Access to project status by ID is not allowed in project-restricted mode. "
            "Use get_project_statuses_for_project instead."
        )

    async def delete_project_status(self, status_gid: str) -> dict:
        try:
            raw = await self._api.get_project_status(status_gid, opt_fields="project,parent")
        except UpstreamFailure as e:
            raise AuthorizationDenied(
                f"Unable to verify project ownership for project status {status_gid}; deletion is not allowed."
            ) from e

        owners = ProjectStatus.model_validate(raw or {}).owner_gids()
        if owners != {self._scope.project_gid}:
            raise AuthorizationDenied(
                f"Access to project status {status_gid} is denied. "
                f"It does not belong to project {self._scope.project_gid}."
            )
        return await self._api.delete_project_status(status_gid)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def search_tasks(self, search_opts: dict | None = None) -> list[dict]:
        """
        Search tasks in the allowed project.

        Caller-supplied project filters and workspace are dropped, `projects.any`
        is pinned to the allowed project, and every result is checked again
        locally (directly, or via its parent for subtasks) before it is returned.
        """
        opts = dict(search_opts or {})
        opt_fields = opts.pop("opt_fields", None)

        params = {k: v for k, v in to_search_params(opts).items() if not _is_scoping_key(k)}
        params["projects.any"] = self._scope.project_gid
        params["opt_fields"] = merge_opt_fields(opt_fields, SEARCH_REQUIRED_FIELDS)

        tasks = await self._api.search_tasks_for_workspace(self._scope.workspace_gid, params)
        verdicts = await asyncio.gather(*(self._belongs_to_allowed_project(task) for task in tasks))
        accepted = [task for task, ok in zip(tasks, verdicts) if ok]

        if len(accepted) != len(tasks):
            logger.warning(
                "Search safety net removed %d of %d tasks outside project %s",
                len(tasks) - len(accepted),
                len(tasks),
                self._scope.project_gid,
            )
        return transform_tasks(accepted)

    async def get_task(
        self,
        task_gid: str,
        opt_fields: str | None = None,
        project_gid: str | None = None,
    ) -> dict:
        if project_gid is not None:
            self._require_allowed_project(project_gid)
        await self.ensure_task_in_allowed_project(task_gid)
        return transform_task(await self._api.get_task(task_gid, opt_fields))

    async def get_multiple_tasks_by_gid(self, task_gids: list[str], opt_fields: str | None = None) -> list[dict]:
        if len(task_gids) > MAX_BATCH_TASKS:
            raise InvalidRequest(f"Maximum of {MAX_BATCH_TASKS} task IDs allowed, got {len(task_gids)}")

        fields = merge_opt_fields(opt_fields, ("projects",))
        results = await asyncio.gather(*(self._fetch_verified_task(gid, fields) for gid in task_gids))

        tasks = [
            task
            for task in results
            if task is not None and Task.model_validate(task).in_project(self._scope.project_gid)
        ]
        return transform_tasks(tasks)

    async def _fetch_verified_task(self, task_gid: str, opt_fields: str) -> dict | None:
        try:
            await self.ensure_task_in_allowed_project(task_gid)
            return await self._api.get_task(task_gid, opt_fields)
        except (AuthorizationDenied, UpstreamFailure) as e:
            logger.warning("Dropping task %s from batch result: %s", task_gid, e.message)
            return None

    async def create_task(
        self,
        data: dict,
        project_gid: str | None = None,
        opt_fields: str | None = None,
    ) -> dict:
        """
        Create a task in the allowed project.

        `project_gid` and any `projects`/`workspace` in `data` are replaced by
        the allowed values; a `parent` must itself be in the allowed project.
        """
        if project_gid is not None and project_gid != self._scope.project_gid:
            logger.info("Redirecting create_task from project %s to %s", project_gid, self._scope.project_gid)

        payload = dict(data)
        self._check_memberships(payload)
        parent_gid = _ref_gid(payload.get("parent"))
        if parent_gid:
            await self.ensure_task_in_allowed_project(parent_gid)

        payload["projects"] = [self._scope.project_gid]
        payload["workspace"] = self._scope.workspace_gid
        payload["resource_subtype"] = payload.get("resource_subtype") or "default_task"
        return transform_task(await self._api.create_task(payload, opt_fields))

    async def update_task(self, task_gid: str, data: dict, opt_fields: str | None = None) -> dict:
        await self.ensure_task_in_allowed_project(task_gid)
        # Project membership and workspace are not editable through an update.
        payload = {k: v for k, v in data.items() if k not in ("projects", "workspace", "memberships")}
        return transform_task(await self._api.update_task(task_gid, payload, opt_fields))

    async def create_subtask(self, parent_task_gid: str, data: dict, opt_fields: str | None = None) -> dict:
        await self.ensure_task_in_allowed_project(parent_task_gid)
        payload = dict(data)
        self._check_memberships(payload)
        if "projects" in payload:
            payload["projects"] = [self._scope.project_gid]
        if "workspace" in payload:
            payload["workspace"] = self._scope.workspace_gid
        return transform_task(await self._api.create_subtask_for_task(parent_task_gid, payload, opt_fields))

    async def set_parent_for_task(self, task_gid: str, data: dict, opt_fields: str | None = None) -> dict:
        new_parent = _ref_gid(data.get("parent"))
        await self._ensure_tasks_in_allowed_project([task_gid, new_parent] if new_parent else [task_gid])
        return transform_task(await self._api.set_parent_for_task(task_gid, data, opt_fields))

    async def add_task_dependencies(self, task_gid: str, dependencies: list[str]) -> dict:
        await self._ensure_tasks_in_allowed_project([task_gid, *dependencies])
        return await self._api.add_dependencies_for_task(task_gid, dependencies)

    async def add_task_dependents(self, task_gid: str, dependents: list[str]) -> dict:
        await self._ensure_tasks_in_allowed_project([task_gid, *dependents])
        return await self._api.add_dependents_for_task(task_gid, dependents)

    # ------------------------------------------------------------------
    # Stories
    # ------------------------------------------------------------------

    async def get_stories_for_task(self, task_gid: str, opt_fields: str | None = None) -> list[dict]:
        await self.ensure_task_in_allowed_project(task_gid)
        return await self._api.get_stories_for_task(task_gid, opt_fields)

    async def create_task_story(
        self,
        task_gid: str,
        text: str | None = None,
        html_text: str | None = None,
        opt_fields: str | None = None,
    ) -> dict:
        if text:
            data = {"text": text}
        elif html_text:
            data = {"html_text": html_text}
        else:
            raise InvalidRequest("Either text or html_text must be provided")

        await self.ensure_task_in_allowed_project(task_gid)
        return await self._api.create_story_for_task(task_gid, data, opt_fields)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def get_tasks_for_tag(self, tag_gid: str, opt_fields: str | None = None) -> list[dict]:
        # Tags span the workspace and no query filter narrows them to one project.
        raise NotSupportedInMode("Access to tags across workspace is not allowed in project-restricted mode.")

    async def get_tags_for_workspace(self, workspace_gid: str, opt_fields: str | None = None) -> list[dict]:
        raise NotSupportedInMode("Access to workspace tags is not allowed in project-restricted mode.")

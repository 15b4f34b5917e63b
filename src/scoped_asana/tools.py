"""
Tool catalog: static access classification of every exposed MCP tool.

The server registers the actual tool functions (in server.py); the PolicyGate
imports TOOL_CATALOG from here to decide whether a tool may be listed or called.
Keeping the classification separate means the gating rules can be read, and
tested, without importing the server.

Each tool carries three independent flags:

- is_read_only: allowed when READ_ONLY_MODE is active
- is_hard_disabled: never allowed in this build, whatever the mode
- denied_when_restricted: results can't be narrowed to one project
  (workspace/project listing, tag endpoints, status by id), so the tool is
  hidden whenever an allowed project is configured

Example decisions (project-restricted, not read-only):
    asana_search_tasks        -> allowed
    asana_get_tasks_for_tag   -> denied (restricted)
    asana_create_task         -> denied (hard-disabled)
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    is_read_only: bool
    is_hard_disabled: bool = False
    denied_when_restricted: bool = False


TOOL_CATALOG: tuple[ToolDescriptor, ...] = (
    # Workspace / project discovery
    ToolDescriptor("asana_list_workspaces", is_read_only=True, denied_when_restricted=True),
    ToolDescriptor("asana_search_projects", is_read_only=True, denied_when_restricted=True),
    # Tasks
    ToolDescriptor("asana_search_tasks", is_read_only=True),
    ToolDescriptor("asana_get_task", is_read_only=True),
    ToolDescriptor("asana_get_multiple_tasks_by_gid", is_read_only=True),
    ToolDescriptor("asana_create_task", is_read_only=False, is_hard_disabled=True),
    ToolDescriptor("asana_update_task", is_read_only=False, is_hard_disabled=True),
    ToolDescriptor("asana_create_subtask", is_read_only=False, is_hard_disabled=True),
    ToolDescriptor("asana_set_parent_for_task", is_read_only=False, is_hard_disabled=True),
    ToolDescriptor("asana_add_task_dependencies", is_read_only=False, is_hard_disabled=True),
    ToolDescriptor("asana_add_task_dependents", is_read_only=False, is_hard_disabled=True),
    # Stories
    ToolDescriptor("asana_get_task_stories", is_read_only=True),
    ToolDescriptor("asana_create_task_story", is_read_only=False, is_hard_disabled=True),
    # Project details
    ToolDescriptor("asana_get_project", is_read_only=True),
    ToolDescriptor("asana_get_project_task_counts", is_read_only=True),
    ToolDescriptor("asana_get_project_sections", is_read_only=True),
    # Project statuses
    ToolDescriptor("asana_get_project_status", is_read_only=True, denied_when_restricted=True),
    ToolDescriptor("asana_get_project_statuses", is_read_only=True),
    ToolDescriptor("asana_create_project_status", is_read_only=False, is_hard_disabled=True),
    ToolDescriptor("asana_delete_project_status", is_read_only=False, is_hard_disabled=True),
    # Tags
    ToolDescriptor("asana_get_tasks_for_tag", is_read_only=True, denied_when_restricted=True),
    ToolDescriptor("asana_get_tags_for_workspace", is_read_only=True, denied_when_restricted=True),
)

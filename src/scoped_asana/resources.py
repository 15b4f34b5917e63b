"""
MCP resource describing the allowed project.

`asana://project/<gid>` resolves to a JSON summary of the project: core fields,
its sections, and the definitions of its custom fields (enabled enum options
only). Only the allowed project can be read; the project lookup goes through
AccessScopedClient, so any other gid is denied before Asana is called.

Sections and custom fields are decoration: if either lookup fails the summary
is still returned with an empty list.
"""

import logging

from scoped_asana.client import AccessScopedClient
from scoped_asana.errors import UpstreamFailure
from scoped_asana.models import CustomField, CustomFieldSetting, Project, Section

logger = logging.getLogger("scoped-asana.resources")

PROJECT_URI_TEMPLATE = "asana://project/{project_gid}"

PROJECT_FIELDS = (
    "name,gid,resource_type,created_at,modified_at,archived,public,notes,color,"
    "default_view,due_date,due_on,start_on,workspace,workspace.name,team,team.name"
)


def project_uri(project_gid: str) -> str:
    return PROJECT_URI_TEMPLATE.format(project_gid=project_gid)


def describe_custom_field(field: CustomField) -> dict:
    described = {
        "gid": field.gid,
        "name": field.name,
        "type": field.resource_type,
        "field_type": field.type,
        "description": field.description,
    }
    if field.type in ("enum", "multi_enum") and field.enum_options is not None:
        described["enum_options"] = [
            {"gid": option.gid, "name": option.name}
            for option in field.enum_options
            if option.enabled is not False
        ]
    elif field.type == "number":
        described["precision"] = field.precision or 0
    return described


async def read_project_resource(client: AccessScopedClient, project_gid: str) -> dict:
    raw_project = await client.get_project(project_gid, opt_fields=PROJECT_FIELDS)
    project = Project.model_validate(raw_project)

    try:
        sections = [
            Section.model_validate(s)
            for s in await client.get_project_sections(project_gid, opt_fields="name,gid,created_at")
        ]
    except UpstreamFailure as e:
        logger.warning("Could not fetch sections for project %s: %s", project_gid, e.message)
        sections = []

    try:
        settings = [
            CustomFieldSetting.model_validate(s)
            for s in await client.get_project_custom_field_settings(project_gid)
        ]
    except UpstreamFailure as e:
        logger.warning("Could not fetch custom fields for project %s: %s", project_gid, e.message)
        settings = []

    return {
        "name": project.name,
        "id": project.gid,
        "type": project.resource_type,
        "created_at": raw_project.get("created_at"),
        "modified_at": raw_project.get("modified_at"),
        "archived": bool(project.archived),
        "public": bool(raw_project.get("public")),
        "notes": raw_project.get("notes"),
        "color": raw_project.get("color"),
        "default_view": raw_project.get("default_view"),
        "due_on": raw_project.get("due_on"),
        "start_on": raw_project.get("start_on"),
        "workspace": {"gid": project.workspace.gid, "name": project.workspace.name} if project.workspace else None,
        "team": {"gid": project.team.gid, "name": project.team.name} if project.team else None,
        "sections": [{"gid": s.gid, "name": s.name, "created_at": s.created_at} for s in sections],
        "custom_fields": [
            describe_custom_field(setting.custom_field)
            for setting in settings
            if setting.custom_field is not None
        ],
    }

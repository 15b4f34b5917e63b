"""
Typed views over Asana API records.

Asana responses are shaped by the `opt_fields` the caller asks for, so every
field here is optional and unknown fields are kept (`extra="allow"`). The scoping
layer only reads the fields declared below; the raw dicts are what get returned
to callers so nothing they requested is lost.
"""

from pydantic import BaseModel, ConfigDict


class AsanaRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    gid: str | None = None
    resource_type: str | None = None


class Ref(AsanaRecord):
    """Compact reference to another record ({gid, name, resource_type})."""

    name: str | None = None


class Workspace(AsanaRecord):
    name: str | None = None


class EnumOption(AsanaRecord):
    name: str | None = None
    enabled: bool | None = None
    color: str | None = None


class CustomField(AsanaRecord):
    name: str | None = None
    type: str | None = None
    description: str | None = None
    display_value: str | None = None
    enum_value: EnumOption | None = None
    enum_options: list[EnumOption] | None = None
    precision: int | None = None


class CustomFieldSetting(AsanaRecord):
    custom_field: CustomField | None = None
    is_important: bool | None = None


class Project(AsanaRecord):
    name: str | None = None
    archived: bool | None = None
    workspace: Ref | None = None
    team: Ref | None = None


class Section(AsanaRecord):
    name: str | None = None
    created_at: str | None = None


class Task(AsanaRecord):
    name: str | None = None
    projects: list[Ref] | None = None
    parent: Ref | None = None
    custom_fields: list[CustomField] | None = None

    def project_gids(self) -> list[str]:
        return [p.gid for p in self.projects or [] if p.gid]

    def in_project(self, project_gid: str) -> bool:
        return project_gid in self.project_gids()


class Story(AsanaRecord):
    text: str | None = None
    html_text: str | None = None
    created_by: Ref | None = None


class ProjectStatus(AsanaRecord):
    title: str | None = None
    color: str | None = None
    project: Ref | None = None
    parent: Ref | None = None

    def owner_gids(self) -> set[str]:
        return {ref.gid for ref in (self.project, self.parent) if ref is not None and ref.gid}

"""
Output shaping for task records.

Asana returns custom fields as an array of objects, which is verbose and makes
the agent re-fetch the raw array to find an enum option's gid. We flatten it
into a single mapping:

    [{"gid": "111", "name": "Priority", "type": "enum",
      "display_value": "High", "enum_value": {"gid": "222", ...}}, ...]

becomes

    {"Priority (111)": "High (222)", ...}

The field gid in the key keeps two fields with the same name distinct; the
option gid in the value keeps the selected option addressable for updates.
"""

from typing import Any

from scoped_asana.models import CustomField


def project_custom_fields(fields: list[dict]) -> dict[str, Any]:
    projected: dict[str, Any] = {}
    for raw in fields:
        field = CustomField.model_validate(raw)
        value: Any = field.display_value
        if field.type == "enum" and field.enum_value is not None:
            value = f"{field.display_value} ({field.enum_value.gid})"
        projected[f"{field.name} ({field.gid})"] = value
    return projected


def transform_task(task: dict) -> dict:
    """Return a copy of `task` with its custom_fields list flattened."""
    custom_fields = task.get("custom_fields")
    if not isinstance(custom_fields, list):
        return task
    return {**task, "custom_fields": project_custom_fields(custom_fields)}


def transform_tasks(tasks: list[dict]) -> list[dict]:
    return [transform_task(task) for task in tasks]

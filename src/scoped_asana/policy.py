"""
PolicyGate: decides whether a tool may be called, and whether it is listed.

Three exclusion sets are checked in order:

1. hard-disabled   - always denied
2. read-only       - when read-only mode is on, anything not on the list is denied
3. restricted      - when a project is configured, these are denied

Both tools/list filtering and tools/call admission go through `denial_reason`,
so a tool is never listed-but-rejected or callable-but-hidden. A tool name with
no catalog entry is denied.
"""

from typing import Iterable

from scoped_asana.config import AccessMode
from scoped_asana.errors import NotSupportedInMode
from scoped_asana.tools import TOOL_CATALOG, ToolDescriptor


class PolicyGate:
    def __init__(self, mode: AccessMode, catalog: Iterable[ToolDescriptor] = TOOL_CATALOG):
        descriptors = tuple(catalog)
        self.mode = mode
        self.known = frozenset(d.name for d in descriptors)
        self.hard_disabled = frozenset(d.name for d in descriptors if d.is_hard_disabled)
        self.read_only_allowed = frozenset(d.name for d in descriptors if d.is_read_only)
        self.restricted_denied = frozenset(d.name for d in descriptors if d.denied_when_restricted)

    def denial_reason(self, tool_name: str) -> str | None:
        """Return why `tool_name` is excluded in the current mode, or None if it is allowed."""
        if tool_name not in self.known:
            return f"Tool {tool_name} is unknown or disabled"
        if tool_name in self.hard_disabled:
            return f"Tool {tool_name} is disabled in this server build"
        if self.mode.read_only and tool_name not in self.read_only_allowed:
            return f"Tool {tool_name} is not available in read-only mode"
        if self.mode.project_restricted and tool_name in self.restricted_denied:
            return f"Tool {tool_name} is not available in project-restricted mode"
        return None

    def check(self, tool_name: str) -> None:
        reason = self.denial_reason(tool_name)
        if reason is not None:
            raise NotSupportedInMode(reason)

    def is_advertised(self, tool_name: str) -> bool:
        return self.denial_reason(tool_name) is None

    def advertised(self, tool_names: Iterable[str]) -> list[str]:
        return [name for name in tool_names if self.is_advertised(name)]

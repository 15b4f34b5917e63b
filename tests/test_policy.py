"""
Unit tests for the PolicyGate (src/scoped_asana/policy.py).

The gate is checked in a fixed order: hard-disabled, then read-only, then
project-restricted. Listing and calling must always agree.
"""

import itertools

import pytest

from scoped_asana.config import AccessMode
from scoped_asana.errors import ErrorKind, NotSupportedInMode
from scoped_asana.policy import PolicyGate
from scoped_asana.tools import TOOL_CATALOG, ToolDescriptor

ALL_TOOLS = [d.name for d in TOOL_CATALOG]
ALL_MODES = [AccessMode(read_only=r, project_restricted=p) for r, p in itertools.product([False, True], repeat=2)]


def _admitted(gate: PolicyGate, name: str) -> bool:
    try:
        gate.check(name)
    except NotSupportedInMode:
        return False
    return True


class TestDecisionOrder:
    def test_hard_disabled_denied_in_every_mode(self):
        for mode in ALL_MODES:
            gate = PolicyGate(mode)
            with pytest.raises(NotSupportedInMode, match="disabled in this server build"):
                gate.check("asana_create_task")

    def test_read_only_denies_tools_off_the_allow_list(self):
        """A writable, non-restricted tool is still denied once read-only mode is on."""
        catalog = [ToolDescriptor("write_thing", is_read_only=False)]

        assert PolicyGate(AccessMode(read_only=False, project_restricted=True), catalog).is_advertised("write_thing")
        with pytest.raises(NotSupportedInMode, match="read-only mode"):
            PolicyGate(AccessMode(read_only=True, project_restricted=True), catalog).check("write_thing")

    def test_read_only_reason_wins_over_restricted(self):
        catalog = [ToolDescriptor("both", is_read_only=False, denied_when_restricted=True)]
        gate = PolicyGate(AccessMode(read_only=True, project_restricted=True), catalog)

        assert gate.denial_reason("both") == "Tool both is not available in read-only mode"

    def test_restricted_tools_denied_only_when_restricted(self):
        restricted = PolicyGate(AccessMode(read_only=False, project_restricted=True))
        unrestricted = PolicyGate(AccessMode(read_only=False, project_restricted=False))

        for name in ("asana_list_workspaces", "asana_search_projects", "asana_get_project_status",
                     "asana_get_tasks_for_tag", "asana_get_tags_for_workspace"):
            with pytest.raises(NotSupportedInMode, match="project-restricted mode"):
                restricted.check(name)
            unrestricted.check(name)

    def test_unknown_tool_is_denied(self):
        gate = PolicyGate(AccessMode(read_only=False, project_restricted=False))

        with pytest.raises(NotSupportedInMode, match="unknown"):
            gate.check("asana_drop_everything")

    def test_denial_carries_not_supported_kind(self):
        gate = PolicyGate(AccessMode())

        with pytest.raises(NotSupportedInMode) as excinfo:
            gate.check("asana_update_task")

        assert excinfo.value.to_payload()["error"] == ErrorKind.NOT_SUPPORTED_IN_MODE.value


class TestDefaultCatalog:
    def test_restricted_read_only_catalog(self):
        gate = PolicyGate(AccessMode(read_only=True, project_restricted=True))

        assert gate.advertised(ALL_TOOLS) == [
            "asana_search_tasks",
            "asana_get_task",
            "asana_get_multiple_tasks_by_gid",
            "asana_get_task_stories",
            "asana_get_project",
            "asana_get_project_task_counts",
            "asana_get_project_sections",
            "asana_get_project_statuses",
        ]

    def test_mutations_never_advertised(self):
        mutations = {d.name for d in TOOL_CATALOG if not d.is_read_only}

        for mode in ALL_MODES:
            assert mutations.isdisjoint(PolicyGate(mode).advertised(ALL_TOOLS))

    @pytest.mark.parametrize("mode", ALL_MODES)
    def test_advertised_equals_admitted(self, mode):
        gate = PolicyGate(mode)

        advertised = set(gate.advertised(ALL_TOOLS))
        admitted = {name for name in ALL_TOOLS if _admitted(gate, name)}

        assert advertised == admitted

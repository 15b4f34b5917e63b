"""
Shared test fixtures for the scoped Asana MCP server.

Key fixtures:
- fake_asana: an in-memory Asana workspace served through httpx.MockTransport.
  It records every request, so tests can assert what was (or wasn't) sent.
- api / client: AsanaApi and AccessScopedClient wired to fake_asana
- settings: Settings for the allowed scope, isolated from the real environment
- make_token / make_auth_header: JWT factories for caller authentication

The fake search endpoint ignores query filters on purpose and returns whatever
`search_results` lists, so the client's local safety net is what gets tested.

Fixture world (allowed scope: workspace ws-1, project proj-1):

    proj-1 "Roadmap"        t1 (Priority=High), t3
    proj-2 "Secret Plans"   t2
    subtasks                sub-ok (parent t1), sub-bad (parent t2),
                            sub-broken (parent t-broken, whose lookup fails),
                            sub-html (parent t-html, which answers with HTML)
    orphan                  no project, no parent
"""

import copy
import datetime
import json

import httpx
import jwt
import pytest

from scoped_asana.asana_api import AsanaApi
from scoped_asana.client import AccessScopedClient
from scoped_asana.config import AllowedScope, Settings

BASE_URL = "https://app.asana.com/api/1.0"
WORKSPACE = "ws-1"
PROJECT = "proj-1"
OTHER_PROJECT = "proj-2"
TEST_SECRET = "test-secret"

SCOPE = AllowedScope(workspace_gid=WORKSPACE, project_gid=PROJECT)


def _ref(gid: str, name: str | None = None) -> dict:
    ref = {"gid": gid}
    if name is not None:
        ref["name"] = name
    return ref


def _task(gid: str, projects: list[str], parent: str | None = None, **extra) -> dict:
    return {
        "gid": gid,
        "resource_type": "task",
        "name": f"Task {gid}",
        "projects": [_ref(p) for p in projects],
        "parent": _ref(parent) if parent else None,
        **extra,
    }


PRIORITY_FIELD = {
    "gid": "111",
    "name": "Priority",
    "type": "enum",
    "display_value": "High",
    "enum_value": {"gid": "222", "name": "High"},
}
NOTES_FIELD = {"gid": "333", "name": "Notes", "type": "text", "display_value": "draft"}


class FakeAsana:
    """In-memory Asana behind an httpx.MockTransport."""

    def __init__(self):
        self.workspaces = [_ref(WORKSPACE, "Acme"), _ref("ws-other", "Other Co")]
        self.projects = {
            PROJECT: {**_ref(PROJECT, "Roadmap"), "workspace": _ref(WORKSPACE, "Acme"), "archived": False},
            OTHER_PROJECT: {**_ref(OTHER_PROJECT, "Secret Plans"), "workspace": _ref(WORKSPACE, "Acme")},
        }
        self.tasks = {
            "t1": _task("t1", [PROJECT], custom_fields=[PRIORITY_FIELD, NOTES_FIELD]),
            "t2": _task("t2", [OTHER_PROJECT]),
            "t3": _task("t3", [PROJECT]),
            "sub-ok": _task("sub-ok", [], parent="t1"),
            "sub-bad": _task("sub-bad", [], parent="t2"),
            "sub-broken": _task("sub-broken", [], parent="t-broken"),
            "sub-html": _task("sub-html", [], parent="t-html"),
            "orphan": _task("orphan", []),
        }
        self.sections = {PROJECT: [{"gid": "sec-1", "name": "Backlog", "created_at": "2026-01-01T00:00:00Z"}]}
        self.custom_field_settings = {
            PROJECT: [
                {"gid": "cfs-1", "custom_field": {**PRIORITY_FIELD, "resource_type": "custom_field", "enum_options": [
                    {"gid": "222", "name": "High", "enabled": True},
                    {"gid": "223", "name": "Legacy", "enabled": False},
                ]}},
                {"gid": "cfs-2", "custom_field": {"gid": "444", "name": "Estimate", "type": "number", "precision": 1}},
            ]
        }
        self.statuses = {
            "st-1": {"gid": "st-1", "title": "On track", "project": _ref(PROJECT)},
            "st-2": {"gid": "st-2", "title": "Late", "project": _ref(OTHER_PROJECT)},
            "st-3": {"gid": "st-3", "title": "Parent only", "parent": _ref(PROJECT)},
            "st-4": {"gid": "st-4", "title": "No owner"},
        }
        self.stories = {"t1": [{"gid": "story-1", "text": "First comment"}]}
        self.search_results: list[str] = []
        # Task gids whose GET fails with a 500
        self.failing_tasks = {"t-broken"}
        # Task gids whose GET answers 200 with an HTML maintenance page
        self.html_tasks = {"t-html"}
        self.failing_paths: set[str] = set()
        self.page_size_override: int | None = None
        self.requests: list[httpx.Request] = []
        self._created = 0

    # --- inspection helpers ---

    def calls(self, method: str | None = None, path_prefix: str = "") -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if (method is None or r.method == method) and self.path(r).startswith(path_prefix)
        ]

    @staticmethod
    def path(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/api/1.0")

    @staticmethod
    def body(request: httpx.Request) -> dict:
        return json.loads(request.content)["data"]

    # --- transport ---

    def _ok(self, data, status_code: int = 200, next_page=None) -> httpx.Response:
        payload = {"data": data}
        if next_page is not None:
            payload["next_page"] = next_page
        return httpx.Response(status_code, json=payload)

    @staticmethod
    def _error(status_code: int, message: str) -> httpx.Response:
        return httpx.Response(status_code, json={"errors": [{"message": message}]})

    def _page(self, request: httpx.Request, items: list) -> httpx.Response:
        limit = self.page_size_override or int(request.url.params.get("limit", 100))
        offset = int(request.url.params.get("offset", 0))
        chunk = items[offset : offset + limit]
        next_page = {"offset": str(offset + limit)} if offset + limit < len(items) else None
        return self._ok(copy.deepcopy(chunk), next_page=next_page)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self.path(request)
        if path in self.failing_paths:
            return self._error(500, f"Server error on {path}")
        parts = path.strip("/").split("/")
        method = request.method

        match parts:
            case ["workspaces"]:
                return self._page(request, self.workspaces)
            case ["workspaces", ws, "projects"]:
                items = [p for p in self.projects.values() if p["workspace"]["gid"] == ws]
                return self._page(request, items)
            case ["workspaces", _, "tasks", "search"]:
                return self._ok([copy.deepcopy(self.tasks[g]) for g in self.search_results])
            case ["tasks"] if method == "POST":
                self._created += 1
                data = self.body(request)
                task = {**data, "gid": f"new-{self._created}", "projects": [_ref(p) for p in data.get("projects", [])]}
                self.tasks[task["gid"]] = task
                return self._ok(task, status_code=201)
            case ["tasks", gid]:
                if gid in self.failing_tasks:
                    return self._error(500, "Internal error")
                if gid in self.html_tasks:
                    return httpx.Response(200, text="<html>maintenance</html>", headers={"Content-Type": "text/html"})
                if gid not in self.tasks:
                    return self._error(404, f"task: Unknown object: {gid}")
                if method == "PUT":
                    self.tasks[gid].update(self.body(request))
                return self._ok(copy.deepcopy(self.tasks[gid]))
            case ["tasks", gid, "subtasks"]:
                return self._ok({**self.body(request), "gid": "new-sub", "parent": _ref(gid), "projects": []}, 201)
            case ["tasks", gid, "setParent"]:
                return self._ok({**copy.deepcopy(self.tasks[gid]), "parent": _ref(self.body(request)["parent"])})
            case ["tasks", _, "addDependencies" | "addDependents"]:
                return self._ok({})
            case ["tasks", gid, "stories"]:
                if method == "POST":
                    return self._ok({"gid": "story-new", **self.body(request)}, 201)
                return self._page(request, self.stories.get(gid, []))
            case ["projects", gid]:
                if gid not in self.projects:
                    return self._error(404, f"project: Unknown object: {gid}")
                return self._ok(copy.deepcopy(self.projects[gid]))
            case ["projects", gid, "task_counts"]:
                return self._ok({"num_tasks": 2})
            case ["projects", gid, "sections"]:
                return self._page(request, self.sections.get(gid, []))
            case ["projects", gid, "custom_field_settings"]:
                return self._page(request, self.custom_field_settings.get(gid, []))
            case ["projects", gid, "project_statuses"]:
                if method == "POST":
                    return self._ok({"gid": "st-new", "project": _ref(gid), **self.body(request)}, 201)
                items = [s for s in self.statuses.values() if (s.get("project") or {}).get("gid") == gid]
                return self._page(request, items)
            case ["project_statuses", gid]:
                if gid not in self.statuses:
                    return self._error(404, f"project_status: Unknown object: {gid}")
                if method == "DELETE":
                    del self.statuses[gid]
                    return self._ok({})
                return self._ok(copy.deepcopy(self.statuses[gid]))

        return self._error(404, f"No route for {method} {path}")


@pytest.fixture
def fake_asana() -> FakeAsana:
    return FakeAsana()


@pytest.fixture
async def api(fake_asana):
    api = AsanaApi("test-token", base_url=BASE_URL, transport=httpx.MockTransport(fake_asana.handler))
    yield api
    await api.aclose()


@pytest.fixture
def client(api) -> AccessScopedClient:
    return AccessScopedClient(api, SCOPE)


@pytest.fixture
def settings() -> Settings:
    """Settings for the test scope; `_env_file=None` keeps a local .env out of the tests."""
    return Settings(
        _env_file=None,
        access_token="test-token",
        project_gid=PROJECT,
        workspace_gid=WORKSPACE,
        read_only_mode=False,
        api_base_url=BASE_URL,
        transport="streamable-http",
        jwt_secret_key=TEST_SECRET,
    )


# ---------------------------------------------------------------------------
# Token factories
# ---------------------------------------------------------------------------
@pytest.fixture
def make_token():
    """
    Factory fixture to generate JWT tokens for testing.

    Usage:
        token = make_token(sub="alice", exp_hours=-1)
    """

    def _make_token(
        sub: str = "test-agent",
        secret: str = TEST_SECRET,
        algorithm: str = "HS256",
        exp_hours: float = 1.0,
        include_exp: bool = True,
        include_sub: bool = True,
    ) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        payload: dict = {"iat": now}
        if include_sub:
            payload["sub"] = sub
        if include_exp:
            payload["exp"] = now + datetime.timedelta(hours=exp_hours)
        return jwt.encode(payload, secret, algorithm=algorithm)

    return _make_token


@pytest.fixture
def make_auth_header(make_token):
    """Convenience fixture that returns a full "Bearer <token>" string."""

    def _make_auth_header(**kwargs) -> str:
        return f"Bearer {make_token(**kwargs)}"

    return _make_auth_header

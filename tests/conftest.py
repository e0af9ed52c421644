"""Pytest configuration for TriageSuite tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), and provides an
in-memory stand-in for the GitLab REST client.
"""

from __future__ import annotations

import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

_TEST_START_TIMES: dict[str, float] = {}
_TEST_DURATIONS: list[tuple[str, float]] = []

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import triagesuite.logging as triagesuite_logging  # noqa: E402

FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeGitLabClient:
    """Records every call; listings and lookups are served from plain dicts."""

    def __init__(
        self,
        *,
        issues: list[dict[str, Any]] | None = None,
        merge_requests: list[dict[str, Any]] | None = None,
        branches: list[dict[str, Any]] | None = None,
        projects: dict[Any, dict[str, Any]] | None = None,
        members: dict[tuple[str, Any, int], dict[str, Any]] | None = None,
    ) -> None:
        self.issues = issues or []
        self.merge_requests = merge_requests or []
        self.branches = branches or []
        self.projects = projects or {}
        self.members = members or {}
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.moved: dict[str, Any] | None = None

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))

    def names(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    # reads
    def get_project(self, project_id: Any) -> dict[str, Any]:
        self._record("get_project", project_id)
        return self.projects.get(project_id, {})

    def list_member_projects(self) -> list[dict[str, Any]]:
        self._record("list_member_projects")
        return list(self.projects.values())

    def get_group_member(self, group_id: Any, user_id: int) -> dict[str, Any] | None:
        self._record("get_group_member", group_id, user_id)
        return self.members.get(("group", group_id, user_id))

    def get_project_member(self, project_id: Any, user_id: int) -> dict[str, Any] | None:
        self._record("get_project_member", project_id, user_id)
        return self.members.get(("project", project_id, user_id))

    def list_issues(self, source: str, source_id: Any) -> list[dict[str, Any]]:
        self._record("list_issues", source, source_id)
        return [dict(i) for i in self.issues]

    def list_merge_requests(self, source: str, source_id: Any) -> list[dict[str, Any]]:
        self._record("list_merge_requests", source, source_id)
        return [dict(m) for m in self.merge_requests]

    def list_branches(self, project_id: Any) -> list[dict[str, Any]]:
        self._record("list_branches", project_id)
        return [{**b, "project_id": project_id} for b in self.branches]

    def get_issue(self, project_id: Any, iid: int) -> dict[str, Any]:
        self._record("get_issue", project_id, iid)
        return next(dict(i) for i in self.issues if i["iid"] == iid)

    def get_merge_request(self, project_id: Any, iid: int) -> dict[str, Any]:
        self._record("get_merge_request", project_id, iid)
        return next(dict(m) for m in self.merge_requests if m["iid"] == iid)

    # writes
    def edit_issue(self, project_id: Any, iid: int, **fields: Any) -> dict[str, Any]:
        self._record("edit_issue", project_id, iid, **fields)
        return {}

    def edit_merge_request(self, project_id: Any, iid: int, **fields: Any) -> dict[str, Any]:
        self._record("edit_merge_request", project_id, iid, **fields)
        return {}

    def create_issue_note(self, project_id: Any, iid: int, body: str, **options: Any) -> None:
        self._record("create_issue_note", project_id, iid, body, **options)

    def create_merge_request_note(
        self, project_id: Any, iid: int, body: str, **options: Any
    ) -> None:
        self._record("create_merge_request_note", project_id, iid, body, **options)

    def move_issue(self, project_id: Any, iid: int, to_project: Any) -> dict[str, Any] | None:
        self._record("move_issue", project_id, iid, to_project)
        return self.moved

    def create_issue(self, project_id: Any, *, title: str, description: str = "") -> dict:
        self._record("create_issue", project_id, title=title, description=description)
        return {"iid": 999, "title": title}

    def delete_branch(self, project_id: Any, branch: str) -> None:
        self._record("delete_branch", project_id, branch)

    def merge_merge_request(self, project_id: Any, iid: int, **options: Any) -> None:
        self._record("merge_merge_request", project_id, iid, **options)

    def cancel_merge_when_pipeline_succeeds(self, project_id: Any, iid: int) -> None:
        self._record("cancel_merge_when_pipeline_succeeds", project_id, iid)


def make_issue(iid: int, **fields: Any) -> dict[str, Any]:
    base: dict[str, Any] = {
        "id": 1000 + iid,
        "iid": iid,
        "project_id": 7,
        "title": f"Issue {iid}",
        "state": "opened",
        "labels": [],
        "author": {"id": 1, "username": "alice"},
        "created_at": "2024-06-01T00:00:00Z",
        "updated_at": "2024-06-01T00:00:00Z",
        "web_url": f"https://gitlab.example.com/acme/app/-/issues/{iid}",
        "references": {"full": f"acme/app#{iid}"},
    }
    base.update(fields)
    return base


def make_merge_request(iid: int, **fields: Any) -> dict[str, Any]:
    base = make_issue(iid, merge_status="can_be_merged", draft=False)
    base.update(
        {
            "title": f"MR {iid}",
            "web_url": f"https://gitlab.example.com/acme/app/-/merge_requests/{iid}",
            "references": {"full": f"acme/app!{iid}"},
            "source_branch": "feature",
            "target_branch": "main",
        }
    )
    base.update(fields)
    return base


@pytest.fixture(autouse=True)
def _fresh_logger(monkeypatch: pytest.MonkeyPatch) -> None:
    # Each test gets a logger bound to its own (possibly captured) stdout.
    monkeypatch.setattr(triagesuite_logging, "_GLOBAL", None)


@pytest.fixture
def fake_client() -> FakeGitLabClient:
    return FakeGitLabClient()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


# --- Timing utilities to help identify slow/stalling tests ---


def pytest_runtest_setup(item):  # type: ignore
    _TEST_START_TIMES[item.nodeid] = time.perf_counter()


def pytest_runtest_teardown(item):  # type: ignore
    start = _TEST_START_TIMES.pop(item.nodeid, None)
    if start is not None:
        _TEST_DURATIONS.append((item.nodeid, time.perf_counter() - start))


def pytest_sessionfinish(session, exitstatus):  # type: ignore
    if not _TEST_DURATIONS:
        return
    slow = sorted(_TEST_DURATIONS, key=lambda x: x[1], reverse=True)[:10]
    print("\n=== Slowest Tests (top 10) ===")
    for nodeid, secs in slow:
        print(f"{secs:0.3f}s  {nodeid}")

from __future__ import annotations

import pytest
from conftest import FakeGitLabClient, make_issue, make_merge_request

from triagesuite.conditions import ConditionEvaluator
from triagesuite.config import parse_policy
from triagesuite.errors import ConfigurationError
from triagesuite.orchestrator import TriageRunner

POLICY = {
    "resource_rules": {
        "issues": {
            "rules": [
                {
                    "name": "Needs attention",
                    "conditions": {"state": "opened", "labels": ["None"]},
                    "actions": {"labels": ["needs attention"]},
                }
            ],
            "summaries": [
                {
                    "name": "Digest",
                    "rules": [
                        {
                            "name": "All open",
                            "conditions": {"state": "opened"},
                            "actions": {"summarize": {"item": "- {{title}}"}},
                        }
                    ],
                    "actions": {"summarize": {"title": "Digest"}},
                }
            ],
        },
        "merge_requests": {
            "rules": [{"name": "Drafts", "conditions": {"draft": True}, "actions": {}}]
        },
        "branches": {
            "rules": [{"name": "Delete old", "conditions": {}, "actions": {"delete": True}}]
        },
    }
}


def _client() -> FakeGitLabClient:
    return FakeGitLabClient(
        issues=[make_issue(1), make_issue(2, labels=["bug"])],
        merge_requests=[make_merge_request(3, draft=True)],
        branches=[{"name": "stale"}],
        projects={7: {"id": 7, "path_with_namespace": "acme/app"}},
    )


def _runner(client: FakeGitLabClient, fixed_clock) -> TriageRunner:
    return TriageRunner(client, evaluator=ConditionEvaluator(client, clock=fixed_clock))


def test_run_project_source(fixed_clock):
    client = _client()
    summary = _runner(client, fixed_clock).run(parse_policy(POLICY), source_id=7)

    assert summary.sources == ["projects/acme/app"]
    assert summary.rules == {
        "issues/Needs attention": 1,
        "merge_requests/Drafts": 1,
        "branches/Delete old": 1,
    }
    assert summary.summaries == {"issues/Digest": 2}
    assert summary.errors == 0
    assert ("edit_issue", (7, 1), {"labels": "needs attention"}) in client.calls
    assert ("delete_branch", (7, "stale"), {}) in client.calls
    assert client.names().count("create_issue") == 1


def test_dry_run_writes_nothing(fixed_clock):
    client = _client()
    summary = _runner(client, fixed_clock).run(parse_policy(POLICY), dry_run=True, source_id=7)

    assert summary.dry_run is True
    assert summary.rules["issues/Needs attention"] == 1
    assert set(client.names()) <= {
        "get_project",
        "list_issues",
        "list_merge_requests",
        "list_branches",
    }


def test_group_source_counts_branch_load_error(fixed_clock):
    client = _client()
    summary = _runner(client, fixed_clock).run(
        parse_policy(POLICY), dry_run=True, source="groups", source_id="acme"
    )

    assert summary.sources == ["groups/acme"]
    assert summary.errors == 1
    assert "branches/Delete old" not in summary.rules
    assert summary.rules["merge_requests/Drafts"] == 1


def test_all_projects(fixed_clock):
    client = _client()
    client.projects[8] = {"id": 8, "path_with_namespace": "acme/lib"}
    summary = _runner(client, fixed_clock).run(
        parse_policy(POLICY), dry_run=True, all_projects=True
    )

    assert summary.sources == ["projects/acme/app", "projects/acme/lib"]
    assert summary.rules["issues/Needs attention"] == 2


def test_single_resource_reference(fixed_clock):
    client = _client()
    summary = _runner(client, fixed_clock).run(
        parse_policy(POLICY), source_id=7, resource_reference="#1"
    )

    assert summary.sources == ["projects/7#1"]
    assert summary.rules == {"issues/Needs attention": 1}
    assert client.names() == ["get_issue", "edit_issue"]


def test_missing_source_id_and_unknown_project(fixed_clock):
    runner = _runner(_client(), fixed_clock)
    policy = parse_policy(POLICY)
    with pytest.raises(ConfigurationError):
        runner.run(policy)
    with pytest.raises(ConfigurationError):
        runner.run(policy, source_id=404)
    with pytest.raises(ConfigurationError):
        runner.run(policy, source="groups", source_id="acme", resource_reference="#1")


def test_summary_to_dict(fixed_clock):
    summary = _runner(_client(), fixed_clock).run(parse_policy(POLICY), dry_run=True, source_id=7)
    data = summary.to_dict()
    assert set(data) == {"dry_run", "generated_at", "sources", "rules", "summaries", "errors"}
    assert data["generated_at"].endswith("Z")

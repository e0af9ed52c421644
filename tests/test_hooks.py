from __future__ import annotations

import pytest
from conftest import FakeGitLabClient, make_issue, make_merge_request

from triagesuite.actions import ActionExecutor
from triagesuite.conditions import ConditionEvaluator
from triagesuite.config import parse_policy
from triagesuite.hooks import HookManager, bind_variables
from triagesuite.resources import ResourceLoader
from triagesuite.rules import RuleProcessor


def _manager(client: FakeGitLabClient, hooks: list[dict], clock, **policy) -> HookManager:
    config = parse_policy({"resource_rules": {"hooks": hooks}, **policy})
    processor = RuleProcessor(ConditionEvaluator(client, clock=clock), ActionExecutor(client))
    return HookManager(config, ResourceLoader(client), processor)


def _note_payload(body: str, noteable_type: str = "Issue", iid: int = 1) -> dict:
    target = "issue" if noteable_type == "Issue" else "merge_request"
    return {
        "object_kind": "note",
        "event_type": "note",
        "project": {"id": 7},
        "object_attributes": {"note": body, "noteable_type": noteable_type},
        target: {"iid": iid},
    }


def test_bind_variables():
    variables = {"labels": ["bug", "ux"]}
    assert bind_variables({"labels": "{{labels}}"}, variables) == {"labels": ["bug", "ux"]}
    assert bind_variables("Tagged {{labels}} by {{author}}", variables) == (
        "Tagged bug ux by {{author}}"
    )
    assert bind_variables([1, "{{labels}}"], variables) == [1, ["bug", "ux"]]


def test_note_command_binds_labels(fixed_clock):
    client = FakeGitLabClient(issues=[make_issue(1)])
    hooks = [
        {
            "name": "Label from chat",
            "on": "note",
            "command": "labels {{...labels}}",
            "actions": {"labels": "{{labels}}"},
        }
    ]
    manager = _manager(client, hooks, fixed_clock)
    counts = manager.handle_event(_note_payload("labels ~bug ~urgent"))
    assert counts == {"Label from chat": 1}
    assert client.calls[-1] == ("edit_issue", (7, 1), {"labels": "bug,urgent"})


def test_note_that_does_not_match_is_ignored(fixed_clock):
    client = FakeGitLabClient(issues=[make_issue(1)])
    hooks = [{"name": "close", "on": "note", "command": "close", "actions": {"status": "close"}}]
    manager = _manager(client, hooks, fixed_clock)
    assert manager.handle_event(_note_payload("please close")) == {}
    assert client.calls == []


def test_note_requires_bot_mention(fixed_clock):
    client = FakeGitLabClient(merge_requests=[make_merge_request(3)])
    hooks = [{"name": "close", "on": "note", "command": "close", "actions": {"status": "close"}}]
    manager = _manager(client, hooks, fixed_clock, bot_username="triage-bot")
    assert manager.handle_event(_note_payload("close", "MergeRequest", 3)) == {}
    counts = manager.handle_event(_note_payload("@triage-bot close", "MergeRequest", 3))
    assert counts == {"close": 1}
    assert client.calls[-1] == ("edit_merge_request", (7, 3), {"state_event": "close"})


def test_note_conditions_gate_actions(fixed_clock):
    client = FakeGitLabClient(issues=[make_issue(1, state="closed")])
    hooks = [
        {
            "name": "reopen",
            "on": "note",
            "command": "reopen",
            "conditions": {"state": "opened"},
            "actions": {"status": "reopen"},
        }
    ]
    manager = _manager(client, hooks, fixed_clock)
    assert manager.handle_event(_note_payload("reopen")) == {"reopen": 0}
    assert client.names() == ["get_issue"]


def test_issue_event_runs_hook_rules(fixed_clock):
    client = FakeGitLabClient(issues=[make_issue(1)])
    hooks = [{"name": "welcome", "on": "issue", "actions": {"comment": "Thanks {{author}}"}}]
    manager = _manager(client, hooks, fixed_clock, hooks_dry_run=False)
    payload = {
        "object_kind": "issue",
        "event_type": "confidential_issue",
        "project": {"id": 7},
        "object_attributes": {"iid": 1},
    }
    assert manager.handle_event(payload) == {"welcome": 1}
    assert client.calls[-1] == (
        "create_issue_note",
        (7, 1, "Thanks @alice"),
        {"internal": False, "thread": False},
    )


def test_hooks_dry_run_from_policy(fixed_clock):
    client = FakeGitLabClient(issues=[make_issue(1)])
    hooks = [{"name": "label", "on": "issue", "actions": {"labels": ["new"]}}]
    manager = _manager(client, hooks, fixed_clock, hooks_dry_run=True)
    payload = {"object_kind": "issue", "project": {"id": 7}, "object_attributes": {"iid": 1}}
    assert manager.handle_event(payload) == {"label": 1}
    assert client.names() == ["get_issue"]


def test_expression_sees_hook_payload(fixed_clock):
    client = FakeGitLabClient(issues=[make_issue(1)])
    hooks = [
        {
            "name": "by action",
            "on": "issue",
            "conditions": {"expression": "hook_payload.object_attributes.action == 'open'"},
            "actions": {"labels": ["fresh"]},
        }
    ]
    manager = _manager(client, hooks, fixed_clock)
    payload = {
        "object_kind": "issue",
        "project": {"id": 7},
        "object_attributes": {"iid": 1, "action": "open"},
    }
    assert manager.handle_event(payload, event_type="issue") == {"by action": 1}


def test_invalid_payload():
    manager = _manager(FakeGitLabClient(), [], lambda: None)
    with pytest.raises(ValueError):
        manager.handle_event({"event_type": "note"})
    assert manager.handle_event({"object_kind": "pipeline"}) == {}


def test_later_note_hooks_see_earlier_changes(fixed_clock):
    client = FakeGitLabClient(issues=[make_issue(1)])
    hooks = [
        {"name": "close", "on": "note", "command": "close", "actions": {"status": "close"}},
        {
            "name": "tag closed",
            "on": "note",
            "command": "close",
            "conditions": {"state": "closed"},
            "actions": {"labels": ["closed-from-chat"]},
        },
    ]
    manager = _manager(client, hooks, fixed_clock)
    assert manager.handle_event(_note_payload("close")) == {"close": 1, "tag closed": 1}
    assert client.calls[-1] == ("edit_issue", (7, 1), {"labels": "closed-from-chat"})

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from conftest import FIXED_NOW, FakeGitLabClient, make_issue, make_merge_request

from triagesuite.conditions import ConditionEvaluator, expand_or_group, time_difference
from triagesuite.errors import ConfigurationError


@pytest.fixture
def evaluator(fixed_clock):
    return ConditionEvaluator(clock=fixed_clock)


def _date(condition: str, interval: int, interval_type: str = "days") -> dict:
    return {
        "attribute": "updated_at",
        "condition": condition,
        "interval_type": interval_type,
        "interval": interval,
    }


def test_date_older_than_uses_whole_days(evaluator):
    issue = make_issue(1, updated_at="2024-06-09T12:00:00Z")  # six days before FIXED_NOW
    assert evaluator.evaluate(issue, "date", _date("older_than", 5)) is True
    assert evaluator.evaluate(issue, "date", _date("older_than", 7)) is False
    assert evaluator.evaluate(issue, "date", _date("newer_than", 7)) is True
    assert evaluator.evaluate(issue, "date", _date("newer_than", 5)) is False


def test_date_missing_attribute_is_non_match(evaluator):
    issue = make_issue(1, updated_at=None)
    assert evaluator.evaluate(issue, "date", _date("older_than", 1)) is False


def test_date_malformed_config_is_non_match(evaluator):
    assert evaluator.evaluate(make_issue(1), "date", {"condition": "older_than"}) is False
    assert evaluator.evaluate(make_issue(1), "date", _date("sideways", 1)) is False
    assert evaluator.evaluate(make_issue(1), "date", _date("older_than", 1, "fortnights")) is False


def test_time_difference_calendar_months_and_years():
    assert time_difference(FIXED_NOW, datetime(2024, 3, 20, tzinfo=timezone.utc), "months") == 2
    assert time_difference(FIXED_NOW, datetime(2024, 3, 15, tzinfo=timezone.utc), "months") == 3
    assert time_difference(FIXED_NOW, datetime(2022, 6, 15, 12, tzinfo=timezone.utc), "years") == 2
    assert time_difference(datetime(2024, 3, 20, tzinfo=timezone.utc), FIXED_NOW, "months") == -2
    month_end = datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert time_difference(month_end, datetime(2024, 1, 31, tzinfo=timezone.utc), "months") == 1
    jan_30 = datetime(2024, 1, 30, 12, tzinfo=timezone.utc)
    assert time_difference(month_end, jan_30, "months") == 1
    assert time_difference(datetime(2024, 2, 28, tzinfo=timezone.utc), month_end, "months") == 0


def test_time_difference_truncates_toward_zero():
    then = datetime(2024, 6, 15, 10, 30, tzinfo=timezone.utc)
    assert time_difference(FIXED_NOW, then, "hours") == 1
    assert time_difference(then, FIXED_NOW, "hours") == -1
    assert time_difference(FIXED_NOW, then, "minutes") == 90


def test_state_and_author(evaluator):
    issue = make_issue(1)
    assert evaluator.evaluate(issue, "state", "opened") is True
    assert evaluator.evaluate(issue, "state", "closed") is False
    assert evaluator.evaluate(issue, "author_username", "alice") is True
    assert evaluator.evaluate(issue, "author_username", "bob") is False


def test_labels_none_and_any_sentinels(evaluator):
    bare = make_issue(1, labels=[])
    labelled = make_issue(2, labels=["bug"])
    assert evaluator.evaluate(bare, "labels", ["None"]) is True
    assert evaluator.evaluate(labelled, "labels", ["None"]) is False
    assert evaluator.evaluate(bare, "labels", ["Any"]) is False
    assert evaluator.evaluate(labelled, "labels", ["Any"]) is True


def test_labels_require_every_literal(evaluator):
    issue = make_issue(1, labels=["bug", {"name": "frontend"}])
    assert evaluator.evaluate(issue, "labels", ["bug", "frontend"]) is True
    assert evaluator.evaluate(issue, "labels", ["bug", "backend"]) is False


def test_labels_or_group(evaluator):
    high = make_issue(1, labels=["priority::high", "bug"])
    low = make_issue(2, labels=["priority::low", "bug"])
    condition = ["priority::{high, critical}", "bug"]
    assert evaluator.evaluate(high, "labels", condition) is True
    assert evaluator.evaluate(low, "labels", condition) is False


def test_expand_or_group_keeps_prefix_and_suffix():
    assert expand_or_group("team::{web, api}") == ["team::web", "team::api"]
    assert expand_or_group("{a,b}") == ["a", "b"]
    assert expand_or_group("x{a,b}-y") == ["xa-y", "xb-y"]
    assert expand_or_group("plain") == []


def test_forbidden_labels(evaluator):
    issue = make_issue(1, labels=["wontfix"])
    assert evaluator.evaluate(issue, "forbidden_labels", ["wontfix"]) is False
    assert evaluator.evaluate(issue, "forbidden_labels", ["duplicate"]) is True
    assert evaluator.evaluate(issue, "no_additional_labels", True) is True


def test_milestone(evaluator):
    planned = make_issue(1, milestone={"title": "v1.0"})
    unplanned = make_issue(2, milestone=None)
    assert evaluator.evaluate(planned, "milestone", "any") is True
    assert evaluator.evaluate(unplanned, "milestone", "none") is True
    assert evaluator.evaluate(planned, "milestone", "v1.0") is True
    assert evaluator.evaluate(planned, "milestone", "v2.0") is False
    assert evaluator.evaluate(unplanned, "milestone", "v1.0") is False


def test_votes_and_discussions(evaluator):
    issue = make_issue(1, upvotes=3, user_notes_count=0)
    votes = {"attribute": "upvotes", "condition": "greater_than", "threshold": 2}
    quiet = {"attribute": "user_notes_count", "condition": "less_than", "threshold": 1}
    assert evaluator.evaluate(issue, "votes", votes) is True
    assert evaluator.evaluate(issue, "discussions", quiet) is True
    assert evaluator.evaluate(issue, "votes", {**votes, "threshold": 3}) is False


def test_merge_request_fields(evaluator):
    mr = make_merge_request(4, draft=True)
    assert evaluator.evaluate(mr, "draft", True) is True
    assert evaluator.evaluate(mr, "draft", False) is False
    assert evaluator.evaluate(mr, "source_branch", "feature") is True
    assert evaluator.evaluate(mr, "target_branch", "develop") is False


def test_weight_health_and_issue_type(evaluator):
    issue = make_issue(1, weight=None, health_status="at_risk", issue_type="incident")
    assert evaluator.evaluate(issue, "weight", "None") is True
    assert evaluator.evaluate(issue, "weight", "Any") is False
    assert evaluator.evaluate(issue, "health_status", "Any") is True
    assert evaluator.evaluate(issue, "health_status", "on_track") is False
    assert evaluator.evaluate(issue, "issue_type", "incident") is True


def test_author_member_uses_membership_lookup(fixed_clock):
    client = FakeGitLabClient(members={("group", 5, 1): {"id": 1, "access_level": 30}})
    evaluator = ConditionEvaluator(client, clock=fixed_clock)
    config = {"source": "group", "source_id": 5, "condition": "member_of"}
    assert evaluator.evaluate(make_issue(1), "author_member", config) is True
    outsider = make_issue(2, author={"id": 2, "username": "mallory"})
    assert evaluator.evaluate(outsider, "author_member", config) is False
    negated = {**config, "condition": "not_member_of"}
    assert evaluator.evaluate(outsider, "author_member", negated) is True
    assert client.names() == ["get_group_member"] * 3


def test_author_member_unsupported_source_raises(fixed_clock):
    evaluator = ConditionEvaluator(FakeGitLabClient(), clock=fixed_clock)
    config = {"source": "user", "source_id": 5, "condition": "member_of"}
    with pytest.raises(ConfigurationError):
        evaluator.evaluate(make_issue(1), "author_member", config)


def test_author_member_without_client_is_non_match(evaluator):
    config = {"source": "project", "source_id": 7, "condition": "member_of"}
    assert evaluator.evaluate(make_issue(1), "author_member", config) is False


def test_expression_condition(evaluator):
    issue = make_issue(1, labels=["bug"])
    assert evaluator.evaluate(issue, "expression", "'bug' in labels") is True
    assert evaluator.evaluate(issue, "js", "state == 'closed'") is False
    assert evaluator.evaluate(issue, "expression", "__import__('os')") is False


def test_unknown_kind_and_custom_filter(evaluator):
    issue = make_issue(1)
    assert evaluator.evaluate(issue, "mystery", True) is False
    evaluator.register_custom_filter("title_has", lambda r, v: v in r["title"])
    assert evaluator.evaluate(issue, "title_has", "Issue") is True


def test_evaluate_conditions_is_a_conjunction(evaluator):
    issue = make_issue(1, labels=["bug"])
    assert evaluator.evaluate_conditions(issue, None) is True
    assert evaluator.evaluate_conditions(issue, {"state": "opened", "labels": ["bug"]}) is True
    assert evaluator.evaluate_conditions(issue, {"state": "opened", "labels": ["ux"]}) is False


def test_filter_resources_preserves_order(evaluator):
    issues = [make_issue(i, state="opened" if i % 2 else "closed") for i in range(1, 6)]
    kept = evaluator.filter_resources(issues, {"state": "opened"})
    assert [r["iid"] for r in kept] == [1, 3, 5]
    assert evaluator.filter_resources(issues, {}) == issues

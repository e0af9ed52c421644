"""JSON Schema for triage policy files.

The schema constrains the shapes the engine interprets (condition configs,
limits, actions) and leaves condition and action maps open so that custom
filters registered at runtime can be configured in the same file.
"""

from __future__ import annotations

from typing import Any

SCHEMA_KEY = "$schema"
SCHEMA_URL = "http://json-schema.org/draft-07/schema#"

_STRING_LIST: dict[str, Any] = {"type": "array", "items": {"type": "string"}}
_ID: dict[str, Any] = {"type": ["integer", "string"]}
# Actions also accept a single string, e.g. a bound "{{labels}}" placeholder.
_STRING_OR_LIST: dict[str, Any] = {"anyOf": [{"type": "string"}, _STRING_LIST]}

_COUNTER_CONDITION = {
    "type": "object",
    "required": ["attribute", "condition", "threshold"],
    "properties": {
        "condition": {"enum": ["less_than", "greater_than"]},
        "threshold": {"type": "integer", "minimum": 0},
    },
}


def _counter(attributes: list[str]) -> dict[str, Any]:
    schema = dict(_COUNTER_CONDITION)
    schema["properties"] = {**_COUNTER_CONDITION["properties"], "attribute": {"enum": attributes}}
    return schema


def _conditions_schema() -> dict[str, Any]:
    member = {
        "type": "object",
        "required": ["source", "condition", "source_id"],
        "properties": {
            "source": {"enum": ["group", "project"]},
            "condition": {"enum": ["member_of", "not_member_of"]},
            "source_id": _ID,
        },
    }
    return {
        "type": "object",
        "properties": {
            "date": {
                "type": "object",
                "required": ["attribute", "condition", "interval_type", "interval"],
                "properties": {
                    "attribute": {
                        "enum": [
                            "created_at",
                            "updated_at",
                            "closed_at",
                            "merged_at",
                            "authored_date",
                            "committed_date",
                        ]
                    },
                    "condition": {"enum": ["older_than", "newer_than"]},
                    "interval_type": {
                        "enum": ["minutes", "hours", "days", "weeks", "months", "years"]
                    },
                    "interval": {"type": "integer", "minimum": 1},
                },
            },
            "state": {"enum": ["opened", "closed", "locked", "merged"]},
            "milestone": {"type": "string"},
            "votes": _counter(["upvotes", "downvotes"]),
            "discussions": _counter(["threads", "notes", "user_notes_count"]),
            "labels": _STRING_LIST,
            "forbidden_labels": _STRING_LIST,
            "no_additional_labels": {"type": "boolean"},
            "author_username": {"type": "string"},
            "author_member": member,
            "draft": {"type": "boolean"},
            "source_branch": {"type": "string"},
            "target_branch": {"type": "string"},
            "health_status": {"enum": ["Any", "None", "on_track", "needs_attention", "at_risk"]},
            "weight": {"type": ["string", "integer", "null"]},
            "issue_type": {"enum": ["issue", "incident", "test_case"]},
            "expression": {"type": "string", "minLength": 1},
            "js": {"type": "string", "minLength": 1},
        },
    }


def _actions_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "labels": _STRING_OR_LIST,
            "remove_labels": _STRING_OR_LIST,
            "status": {"enum": ["close", "reopen", "merge"]},
            "mention": _STRING_OR_LIST,
            "move": {"type": "string"},
            "comment": {"type": "string"},
            "comment_type": {"enum": ["comment", "thread"]},
            "comment_internal": {"type": "boolean"},
            "delete": {"type": "boolean"},
            "assignee": _ID,
            "reviewer": {"anyOf": [_ID, {"type": "array", "items": _ID}]},
            "merge": {
                "anyOf": [
                    {"type": "boolean"},
                    {"type": "object", "properties": {"cancel": {"type": "boolean"}}},
                ]
            },
            "extension": {"type": "string", "minLength": 1},
            "summarize": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "destination": _ID,
                    "item": {"type": "string"},
                    "summary": {"type": "string"},
                },
            },
        },
    }


def _rule_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "required": ["name"],
        "properties": {
            "name": {"type": "string"},
            "conditions": _conditions_schema(),
            "limits": {
                "type": "object",
                "additionalProperties": False,
                "maxProperties": 1,
                "properties": {
                    "most_recent": {"type": "integer", "minimum": 1},
                    "oldest": {"type": "integer", "minimum": 1},
                },
            },
            "actions": _actions_schema(),
        },
    }


def get_policy_schema() -> dict[str, Any]:
    """Return the JSON Schema (draft 7) describing a policy file."""
    rule = _rule_schema()
    summarize_required = {
        "type": "object",
        "required": ["summarize"],
        "properties": {"summarize": {"type": "object", "required": ["title"]}},
    }
    summary_policy = {
        "type": "object",
        "required": ["name", "rules", "actions"],
        "properties": {
            "name": {"type": "string"},
            "rules": {"type": "array", "items": rule},
            "actions": {"allOf": [_actions_schema(), summarize_required]},
        },
    }
    resource_rules = {
        "type": "object",
        "properties": {
            "rules": {"type": "array", "items": rule},
            "summaries": {"type": "array", "items": summary_policy},
        },
    }
    hook = {
        "allOf": [
            rule,
            {
                "type": "object",
                "required": ["on"],
                "properties": {
                    "on": {"enum": ["issue", "merge_request", "note"]},
                    "command": {"type": "string"},
                },
            },
        ]
    }
    return {
        SCHEMA_KEY: SCHEMA_URL,
        "title": "TriagePolicy",
        "type": "object",
        "required": ["resource_rules"],
        "properties": {
            "host_url": {"type": "string", "pattern": "^https?://"},
            "bot_username": {"type": "string"},
            "hooks_dry_run": {"type": "boolean"},
            "logging": {
                "type": "object",
                "properties": {
                    "json_enabled": {"type": "boolean"},
                    "level": {"enum": ["DEBUG", "INFO", "WARNING", "ERROR"]},
                },
            },
            "resource_rules": {
                "type": "object",
                "properties": {
                    "issues": resource_rules,
                    "merge_requests": resource_rules,
                    "branches": resource_rules,
                    "hooks": {"type": "array", "items": hook},
                },
                "additionalProperties": False,
            },
        },
    }


__all__ = ["get_policy_schema"]

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

Resource = dict[str, Any]


@dataclass(frozen=True)
class Limits:
    """Post-filter truncation; at most one of the two fields is set."""

    most_recent: int | None = None
    oldest: int | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> Limits | None:
        if not raw:
            return None
        most_recent = raw.get("most_recent")
        oldest = raw.get("oldest")
        if most_recent is not None and oldest is not None:
            raise ValueError("limits accepts either most_recent or oldest, not both")
        if most_recent is None and oldest is None:
            return None
        return cls(
            most_recent=int(most_recent) if most_recent is not None else None,
            oldest=int(oldest) if oldest is not None else None,
        )


@dataclass
class Rule:
    """Conditions (AND), optional limits and an action map applied to a collection."""

    name: str
    conditions: dict[str, Any] = field(default_factory=dict)
    limits: Limits | None = None
    actions: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Rule:
        return cls(
            name=str(raw.get("name", "")),
            conditions=dict(raw.get("conditions") or {}),
            limits=Limits.from_mapping(raw.get("limits")),
            actions=dict(raw.get("actions") or {}),
        )


@dataclass
class SummaryPolicy:
    """Sub-rules whose matches are folded into a single summarize action."""

    name: str
    rules: list[Rule] = field(default_factory=list)
    actions: dict[str, Any] = field(default_factory=dict)

    @property
    def summarize(self) -> dict[str, Any] | None:
        value = self.actions.get("summarize")
        return dict(value) if isinstance(value, Mapping) else None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> SummaryPolicy:
        return cls(
            name=str(raw.get("name", "")),
            rules=[Rule.from_mapping(r) for r in raw.get("rules") or []],
            actions=dict(raw.get("actions") or {}),
        )


@dataclass
class HookRule(Rule):
    """A rule triggered by a webhook event, optionally keyed off a chat command."""

    on: str = "note"
    command: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> HookRule:
        base = Rule.from_mapping(raw)
        return cls(
            name=base.name,
            conditions=base.conditions,
            limits=base.limits,
            actions=base.actions,
            on=str(raw.get("on", "note")),
            command=raw.get("command"),
        )


@dataclass
class SummarySubResult:
    """Resources selected by one summary sub-rule, with the sub-rule's summarize fragment."""

    rule: Rule
    resources: list[Resource]

    @property
    def summary(self) -> dict[str, Any]:
        value = self.rule.actions.get("summarize")
        return dict(value) if isinstance(value, Mapping) else {}


__all__ = ["Resource", "Limits", "Rule", "SummaryPolicy", "HookRule", "SummarySubResult"]

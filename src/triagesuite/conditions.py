"""Condition evaluation for triage rules.

``ConditionEvaluator.evaluate(resource, kind, config)`` dispatches on the
condition kind. Kinds that are not built in fall back to filters registered
with ``register_custom_filter``; anything else is a non-match.

Malformed condition configuration (wrong types, missing keys) is a
non-match as well. Only ``ConfigurationError`` escapes, for example an
``author_member`` condition naming a source the engine cannot query.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from .errors import ConfigurationError
from .expressions import Clock, ExpressionEvaluator, build_context, parse_timestamp, utcnow
from .gitlab_rest import GitLabAPIError
from .logging import get_logger
from .models import Resource

CustomFilter = Callable[[Resource, Any], bool]

NONE_SENTINEL = "None"
ANY_SENTINEL = "Any"

_OR_GROUP = re.compile(r"^(.*?)\{([^}]+)\}(.*)$")

_SECONDS = {
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
    "weeks": 7 * 86400,
}


class MembershipClient(Protocol):
    def get_group_member(self, group_id: int | str, user_id: int) -> dict[str, Any] | None: ...

    def get_project_member(self, project_id: int | str, user_id: int) -> dict[str, Any] | None: ...


def label_names(resource: Mapping[str, Any]) -> list[str]:
    """Label names of a resource; the API returns plain strings or ``{"name": ...}`` dicts."""
    return [
        lbl.get("name") if isinstance(lbl, Mapping) else lbl
        for lbl in resource.get("labels") or []
    ]


def expand_or_group(entry: str) -> list[str]:
    """Expand ``prefix{a, b}`` into ``["prefixa", "prefixb"]``; no group -> ``[]``."""
    match = _OR_GROUP.match(entry)
    if not match:
        return []
    prefix, alternatives, suffix = match.groups()
    return [f"{prefix.strip()}{alt.strip()}{suffix}" for alt in alternatives.split(",")]


def _months_between(later: datetime, earlier: datetime) -> int:
    """Whole calendar months from ``earlier`` to ``later`` (later >= earlier)."""
    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    # The last day of a month completes a month started on a later day number.
    month_end = later.day == calendar.monthrange(later.year, later.month)[1]
    if month_end and earlier.day > later.day:
        return months
    if (later.day, later.time()) < (earlier.day, earlier.time()):
        months -= 1
    return months


def time_difference(now: datetime, then: datetime, interval_type: str) -> int | None:
    """Signed ``now - then`` in ``interval_type`` units, truncated toward zero."""
    now = now.astimezone(timezone.utc)
    then = then.astimezone(timezone.utc)
    if interval_type in _SECONDS:
        return int((now - then).total_seconds() / _SECONDS[interval_type])
    if interval_type in ("months", "years"):
        sign = 1 if now >= then else -1
        later, earlier = (now, then) if sign > 0 else (then, now)
        months = _months_between(later, earlier)
        if interval_type == "years":
            return sign * (months // 12)
        return sign * months
    return None


class ConditionEvaluator:
    def __init__(self, client: MembershipClient | None = None, *, clock: Clock = utcnow) -> None:
        self.client = client
        self.clock = clock
        self.logger = get_logger()
        self._custom_filters: dict[str, CustomFilter] = {}
        self._expressions = ExpressionEvaluator(clock=clock)
        self._handlers: dict[str, Callable[[Resource, Any], bool]] = {
            "date": self._date,
            "state": self._state,
            "labels": self._labels,
            "forbidden_labels": self._forbidden_labels,
            "no_additional_labels": self._no_additional_labels,
            "author_username": self._author_username,
            "milestone": self._milestone,
            "votes": self._counter,
            "discussions": self._counter,
            "draft": self._draft,
            "source_branch": lambda r, v: r.get("source_branch") == v,
            "target_branch": lambda r, v: r.get("target_branch") == v,
            "weight": self._weight,
            "health_status": self._health_status,
            "issue_type": lambda r, v: r.get("issue_type") == v,
            "author_member": self._author_member,
            "expression": self._expression,
            "js": self._expression,
        }

    def register_custom_filter(self, name: str, fn: CustomFilter) -> None:
        self._custom_filters[name] = fn
        self.logger.debug(f"Registered custom filter: {name}")

    # ---- composite ------------------------------------------------------
    def filter_resources(
        self, resources: Iterable[Resource], conditions: Mapping[str, Any] | None
    ) -> list[Resource]:
        if not conditions:
            return list(resources)
        return [r for r in resources if self.evaluate_conditions(r, conditions)]

    def evaluate_conditions(self, resource: Resource, conditions: Mapping[str, Any] | None) -> bool:
        if not conditions:
            return True
        return all(self.evaluate(resource, kind, config) for kind, config in conditions.items())

    def evaluate(self, resource: Resource, kind: str, config: Any) -> bool:
        handler = self._handlers.get(kind) or self._custom_filters.get(kind)
        if handler is None:
            self.logger.debug(f"Unknown condition type: {kind}")
            return False
        try:
            return bool(handler(resource, config))
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            self.logger.debug(f"Malformed {kind} condition treated as non-match: {exc}")
            return False

    # ---- kinds ----------------------------------------------------------
    def _date(self, resource: Resource, config: Mapping[str, Any]) -> bool:
        raw = resource.get(config["attribute"])
        if not raw:
            return False
        diff = time_difference(self.clock(), parse_timestamp(raw), config.get("interval_type"))
        if diff is None:
            return False
        condition = config.get("condition")
        if condition == "older_than":
            return diff >= config["interval"]
        if condition == "newer_than":
            return diff <= config["interval"]
        return False

    @staticmethod
    def _state(resource: Resource, expected: Any) -> bool:
        return resource.get("state") == expected

    @staticmethod
    def _labels(resource: Resource, required: Any) -> bool:
        if not isinstance(required, list):
            return False
        present = set(label_names(resource))
        if NONE_SENTINEL in required or None in required:
            return not present
        if ANY_SENTINEL in required:
            return bool(present)
        groups = [entry for entry in required if "{" in entry]
        for group in groups:
            if not any(candidate in present for candidate in expand_or_group(group)):
                return False
        return all(entry in present for entry in required if "{" not in entry)

    @staticmethod
    def _forbidden_labels(resource: Resource, forbidden: Any) -> bool:
        if not isinstance(forbidden, list):
            return False
        present = set(label_names(resource))
        return not any(label in present for label in forbidden)

    def _no_additional_labels(self, resource: Resource, enabled: Any) -> bool:
        # Accepted but never enforced: only meaningful next to `labels`.
        if enabled:
            self.logger.debug("no_additional_labels does not constrain matches on its own")
        return True

    @staticmethod
    def _author_username(resource: Resource, expected: Any) -> bool:
        author = resource.get("author")
        username = author.get("username") if isinstance(author, Mapping) else author
        return username == expected

    @staticmethod
    def _milestone(resource: Resource, expected: Any) -> bool:
        milestone = resource.get("milestone")
        if expected == "none":
            return not milestone
        if expected == "any":
            return bool(milestone)
        if not milestone:
            return False
        title = milestone.get("title") if isinstance(milestone, Mapping) else milestone
        return title == expected

    @staticmethod
    def _counter(resource: Resource, config: Mapping[str, Any]) -> bool:
        count = resource.get(config["attribute"]) or 0
        condition = config.get("condition")
        if condition == "less_than":
            return count < config["threshold"]
        if condition == "greater_than":
            return count > config["threshold"]
        return False

    @staticmethod
    def _draft(resource: Resource, expected: Any) -> bool:
        return bool(resource.get("draft")) is expected

    @staticmethod
    def _weight(resource: Resource, expected: Any) -> bool:
        weight = resource.get("weight")
        if expected is None or expected == NONE_SENTINEL:
            return weight is None
        if expected == ANY_SENTINEL:
            return weight is not None
        return weight == expected

    @staticmethod
    def _health_status(resource: Resource, expected: Any) -> bool:
        status = resource.get("health_status")
        if expected is None or expected == NONE_SENTINEL:
            return not status
        if expected == ANY_SENTINEL:
            return bool(status)
        return status == expected

    def _author_member(self, resource: Resource, config: Mapping[str, Any]) -> bool:
        source = config.get("source")
        source_id = config.get("source_id")
        condition = config.get("condition")
        if not source or not source_id or not condition:
            self.logger.debug("author_member requires source, source_id and condition")
            return False
        if source not in ("group", "project"):
            raise ConfigurationError(f"Unsupported source: {source}")
        author = resource.get("author")
        author_id = author.get("id") if isinstance(author, Mapping) else None
        if author_id is None or self.client is None:
            return False
        try:
            if source == "group":
                member = self.client.get_group_member(source_id, author_id)
            else:
                member = self.client.get_project_member(source_id, author_id)
        except GitLabAPIError as exc:
            self.logger.debug(f"Membership lookup failed for {source} {source_id}: {exc}")
            return False
        if condition == "member_of":
            return member is not None
        if condition == "not_member_of":
            return member is None
        return False

    def _expression(self, resource: Resource, source: Any) -> bool:
        try:
            result = self._expressions.evaluate(source, build_context(resource, self.clock()))
        except Exception as exc:  # noqa: BLE001 - any failure is a non-match
            self.logger.debug(f"Error evaluating expression condition: {exc}")
            return False
        return bool(result)


__all__ = [
    "ConditionEvaluator",
    "CustomFilter",
    "expand_or_group",
    "label_names",
    "time_difference",
]

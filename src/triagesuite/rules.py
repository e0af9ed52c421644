from __future__ import annotations

import traceback
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from .actions import ActionExecutor
from .conditions import ConditionEvaluator
from .errors import classify_error
from .expressions import parse_timestamp
from .logging import get_logger
from .models import Limits, Resource, Rule, SummaryPolicy, SummarySubResult


_UNDATED = datetime.min.replace(tzinfo=timezone.utc)


def _created_at(resource: Resource) -> datetime:
    try:
        return parse_timestamp(resource.get("created_at"))
    except ValueError:
        return _UNDATED


def _as_rule(rule: Rule | Mapping[str, Any]) -> Rule:
    return rule if isinstance(rule, Rule) else Rule.from_mapping(rule)


def _as_summary(policy: SummaryPolicy | Mapping[str, Any]) -> SummaryPolicy:
    return policy if isinstance(policy, SummaryPolicy) else SummaryPolicy.from_mapping(policy)


class RuleProcessor:
    """Selects resources per rule and hands them to the action executor.

    Rules run in declaration order. A failure while processing one rule
    (remote error, configuration error) is logged and the next rule runs.
    """

    def __init__(self, evaluator: ConditionEvaluator, executor: ActionExecutor) -> None:
        self.evaluator = evaluator
        self.executor = executor
        self.logger = get_logger()

    @staticmethod
    def apply_limits(resources: Sequence[Resource], limits: Limits | None) -> list[Resource]:
        if limits is None:
            return list(resources)
        if limits.most_recent is not None:
            ordered = sorted(resources, key=_created_at, reverse=True)
            return ordered[: limits.most_recent]
        if limits.oldest is not None:
            ordered = sorted(resources, key=_created_at)
            return ordered[: limits.oldest]
        return list(resources)

    def select(self, resources: Iterable[Resource], rule: Rule) -> list[Resource]:
        filtered = self.evaluator.filter_resources(resources, rule.conditions)
        self.logger.debug(f"Rule {rule.name!r}: {len(filtered)} resources passed conditions")
        if rule.limits is not None:
            filtered = self.apply_limits(filtered, rule.limits)
            self.logger.debug(f"Rule {rule.name!r}: {len(filtered)} resources after limits")
        return filtered

    def process_rule(
        self,
        rule: Rule | Mapping[str, Any],
        resources: Sequence[Resource],
        resource_type: str,
        dry_run: bool,
    ) -> list[Resource]:
        rule = _as_rule(rule)
        if not resources:
            self.logger.debug(f"No resources found for rule: {rule.name}")
            return []
        self.logger.log_operation(
            "rule", rule=rule.name, resource_type=resource_type, candidates=len(resources)
        )
        selected = self.select(resources, rule)
        if selected and rule.actions:
            self.executor.execute(rule.actions, selected, resource_type, dry_run)
        return selected

    def process_rules(
        self,
        rules: Iterable[Rule | Mapping[str, Any]],
        resources: Sequence[Resource],
        resource_type: str,
        dry_run: bool,
    ) -> dict[str, int]:
        """Run every rule; returns the number of selected resources per rule name."""
        counts: dict[str, int] = {}
        for raw in rules:
            rule = _as_rule(raw)
            try:
                counts[rule.name] = len(self.process_rule(rule, resources, resource_type, dry_run))
            except Exception as exc:  # noqa: BLE001 - one failing rule must not stop the run
                self.report_error(f'Error processing rule "{rule.name}"', exc, rule=rule.name)
                counts[rule.name] = 0
        return counts

    def process_summaries(
        self,
        summaries: Iterable[SummaryPolicy | Mapping[str, Any]],
        resources: Sequence[Resource],
        resource_type: str,
        dry_run: bool,
    ) -> dict[str, int]:
        counts: dict[str, int] = {}
        for raw in summaries:
            policy = _as_summary(raw)
            try:
                counts[policy.name] = self._process_summary(
                    policy, resources, resource_type, dry_run
                )
            except Exception as exc:  # noqa: BLE001
                self.report_error(
                    f'Error processing summary "{policy.name}"', exc, rule=policy.name
                )
                counts[policy.name] = 0
        return counts

    def _process_summary(
        self,
        policy: SummaryPolicy,
        resources: Sequence[Resource],
        resource_type: str,
        dry_run: bool,
    ) -> int:
        self.logger.log_operation("summary", rule=policy.name, resource_type=resource_type)
        summary_data: list[SummarySubResult] = []
        for rule in policy.rules:
            selected = self.select(resources, rule)
            if selected and rule.actions.get("summarize"):
                summary_data.append(SummarySubResult(rule=rule, resources=selected))
        summarize = policy.summarize
        if summary_data and summarize:
            self.executor.execute_summary(summarize, summary_data, resource_type, dry_run)
        return sum(len(data.resources) for data in summary_data)

    def report_error(self, message: str, exc: Exception, **kw: Any) -> None:
        info = classify_error(exc)
        self.logger.log_error(
            f"{message}: {info.message}",
            error=info.category,
            error_type=info.original_type,
            **kw,
        )
        if self.logger.is_debug:
            self.logger.debug(traceback.format_exc())


__all__ = ["RuleProcessor"]

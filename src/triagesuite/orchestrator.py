"""Run orchestration: load resources per source and apply the policy.

``TriageRunner.run`` covers the three ways a run is scoped:

- one project or group (``source`` + ``source_id``)
- every project the token is a member of (``all_projects``)
- a single issue or merge request (``resource_reference`` such as ``#42``)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from .actions import ActionExecutor
from .conditions import ConditionEvaluator
from .config import PolicyConfig
from .errors import ConfigurationError
from .gitlab_rest import GitLabRestClient
from .logging import get_logger
from .resources import ResourceLoader, normalize_source, parse_resource_reference
from .rules import RuleProcessor

_SECTION_FOR_KIND = {"issue": "issues", "merge_request": "merge_requests"}


@dataclass
class RunSummary:
    dry_run: bool
    generated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    )
    sources: list[str] = field(default_factory=list)
    rules: dict[str, int] = field(default_factory=dict)
    summaries: dict[str, int] = field(default_factory=dict)
    errors: int = 0

    def record(self, target: dict[str, int], resource_type: str, counts: Mapping[str, int]) -> None:
        for name, count in counts.items():
            key = f"{resource_type}/{name}"
            target[key] = target.get(key, 0) + count

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TriageRunner:
    def __init__(
        self,
        client: GitLabRestClient,
        *,
        evaluator: ConditionEvaluator | None = None,
        executor: ActionExecutor | None = None,
    ) -> None:
        self.client = client
        self.loader = ResourceLoader(client)
        self.evaluator = evaluator or ConditionEvaluator(client)
        self.executor = executor or ActionExecutor(client)
        self.processor = RuleProcessor(self.evaluator, self.executor)
        self.logger = get_logger()

    def run(
        self,
        policy: PolicyConfig,
        *,
        dry_run: bool = False,
        source: str = "projects",
        source_id: int | str | None = None,
        resource_reference: str | None = None,
        all_projects: bool = False,
    ) -> RunSummary:
        summary = RunSummary(dry_run=dry_run)
        mode = "DRY RUN" if dry_run else "LIVE MODE"
        self.logger.info(f"Starting GitLab triage ({mode})", dry_run=dry_run)
        with self.logger.timed_operation("triage_run", dry_run=dry_run):
            if all_projects:
                for project in self.client.list_member_projects():
                    self._process_project(policy, project, dry_run, summary)
            elif resource_reference:
                self._process_reference(
                    policy, source, source_id, resource_reference, dry_run, summary
                )
            else:
                self._process_source(policy, source, source_id, dry_run, summary)
        self.logger.info("Triage completed", dry_run=dry_run)
        return summary

    # ---- scopes ---------------------------------------------------------
    def _process_source(
        self,
        policy: PolicyConfig,
        source: str,
        source_id: int | str | None,
        dry_run: bool,
        summary: RunSummary,
    ) -> None:
        if source_id is None:
            raise ConfigurationError("A source id is required unless --all-projects is set")
        if normalize_source(source) == "groups":
            summary.sources.append(f"groups/{source_id}")
            self._process_resource_rules(policy, "groups", source_id, dry_run, summary)
            return
        project = self.client.get_project(source_id)
        if not project:
            raise ConfigurationError(f"Project with ID {source_id} not found")
        self._process_project(policy, project, dry_run, summary)

    def _process_project(
        self, policy: PolicyConfig, project: Mapping[str, Any], dry_run: bool, summary: RunSummary
    ) -> None:
        path = project.get("path_with_namespace") or project.get("id")
        self.logger.log_operation("process_project", project=str(path))
        summary.sources.append(f"projects/{path}")
        self._process_resource_rules(policy, "projects", project["id"], dry_run, summary)

    def _process_resource_rules(
        self,
        policy: PolicyConfig,
        source: str,
        source_id: int | str,
        dry_run: bool,
        summary: RunSummary,
    ) -> None:
        for resource_type, section in policy.resource_rules.items():
            if not section.rules and not section.summaries:
                continue
            try:
                resources = self.loader.load_resources(resource_type, source, source_id)
            except Exception as exc:  # noqa: BLE001 - move on to the next resource type
                self.processor.report_error(
                    f"Error loading {resource_type}", exc, resource_type=resource_type
                )
                summary.errors += 1
                continue
            self.logger.debug(f"Processing {len(section.rules)} rules for {resource_type}")
            summary.record(
                summary.rules,
                resource_type,
                self.processor.process_rules(section.rules, resources, resource_type, dry_run),
            )
            summary.record(
                summary.summaries,
                resource_type,
                self.processor.process_summaries(
                    section.summaries, resources, resource_type, dry_run
                ),
            )

    def _process_reference(
        self,
        policy: PolicyConfig,
        source: str,
        source_id: int | str | None,
        reference: str,
        dry_run: bool,
        summary: RunSummary,
    ) -> None:
        if normalize_source(source) == "groups":
            raise ConfigurationError("Source groups are not supported for single resources")
        if source_id is None:
            raise ConfigurationError("A source id is required with --resource-reference")
        kind, iid = parse_resource_reference(reference)
        section = policy.resource_rules.get(_SECTION_FOR_KIND[kind])
        if section is None or not section.rules:
            self.logger.info(f"No rules to process for resource type: {kind}")
            return
        resource = self.loader.load_resource_by_iid(kind, source, source_id, iid)
        summary.sources.append(f"projects/{source_id}{reference}")
        summary.record(
            summary.rules,
            _SECTION_FOR_KIND[kind],
            self.processor.process_rules(section.rules, [resource], kind, dry_run),
        )


__all__ = ["RunSummary", "TriageRunner"]

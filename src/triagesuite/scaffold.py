"""Starter files for TriageSuite: an example policy and a scheduled CI job."""

from __future__ import annotations

import textwrap
from dataclasses import dataclass, field
from pathlib import Path

POLICY_FILENAME = ".triage-policies.yml"
CI_FILENAME = ".gitlab-ci.yml"

POLICY_TEMPLATE = textwrap.dedent(
    """
    # GitLab triage policies
    # Rules are applied per resource type in the order they are listed.

    host_url: https://gitlab.com

    resource_rules:
      issues:
        rules:
          - name: Add "needs attention" label to unlabeled issues older than 5 days
            conditions:
              date:
                attribute: updated_at
                condition: older_than
                interval_type: days
                interval: 5
              state: opened
              labels:
                - None
            limits:
              most_recent: 50
            actions:
              labels:
                - needs attention
              comment: |
                {{author}} This issue has been unlabeled for 5 days. Please add appropriate labels to help with triage.

        summaries:
          - name: Weekly triage summary
            rules:
              - name: New issues
                conditions:
                  state: opened
                limits:
                  most_recent: 10
                actions:
                  summarize:
                    item: "- [ ] [{{title}}]({{web_url}}) {{labels}}"
                    summary: |
                      Recent {{type}} requiring attention:

                      {{items}}
            actions:
              summarize:
                title: "Weekly Triage Summary"
                summary: |
                  Weekly triage summary:

                  {{items}}

      merge_requests:
        rules:
          - name: Add "needs review" label to unlabeled MRs
            conditions:
              state: opened
              labels:
                - None
            limits:
              most_recent: 25
            actions:
              labels:
                - needs review
              comment: |
                {{author}} This merge request needs labels. Please add appropriate labels for better organization.
    """
).lstrip()

CI_TEMPLATE = textwrap.dedent(
    """
    # GitLab CI configuration for automated triage
    # Runs the triage policies on a pipeline schedule.

    stages:
      - triage

    triage:
      stage: triage
      image: python:3.12-slim
      before_script:
        - pip install triagesuite
      script:
        - triagesuite run --token $GITLAB_API_TOKEN --source-id $CI_PROJECT_PATH
      rules:
        - if: $CI_PIPELINE_SOURCE == "schedule" && $GITLAB_API_TOKEN
    """
).lstrip()


@dataclass
class ScaffoldResult:
    created: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)


def _write_if_needed(path: Path, content: str, force: bool) -> bool:
    if path.exists() and not force:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return True


def _scaffold(target: Path, content: str, force: bool) -> ScaffoldResult:
    result = ScaffoldResult()
    if _write_if_needed(target, content, force):
        result.created.append(target)
    else:
        result.skipped.append(target)
    return result


def write_policy_file(
    directory: Path, *, filename: str = POLICY_FILENAME, force: bool = False
) -> ScaffoldResult:
    """Write the example policy under *directory* unless it already exists (or *force*)."""
    return _scaffold(directory / filename, POLICY_TEMPLATE, force)


def write_ci_file(
    directory: Path, *, filename: str = CI_FILENAME, force: bool = False
) -> ScaffoldResult:
    """Write the example scheduled CI job under *directory*."""
    return _scaffold(directory / filename, CI_TEMPLATE, force)


__all__ = [
    "CI_TEMPLATE",
    "POLICY_TEMPLATE",
    "ScaffoldResult",
    "write_ci_file",
    "write_policy_file",
]

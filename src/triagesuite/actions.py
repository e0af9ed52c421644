"""Action execution for selected resources.

Actions run in a fixed order per resource, whatever order the policy lists
them in::

    labels -> remove_labels -> status -> mention -> move -> comment -> delete
    -> assignee -> reviewer -> merge -> extension

Each step takes the current resource projection and returns a new one, so
later steps see the labels and state an earlier step produced. Under dry-run
no write reaches GitLab but the projection is computed exactly as in a live
run. The input dicts are never mutated.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from .conditions import label_names
from .errors import ExtensionNotFoundError, UnsupportedResourceTypeError
from .gitlab_rest import GitLabRestClient
from .logging import get_logger
from .models import Resource, SummarySubResult
from .resources import BRANCH, ISSUE, MERGE_REQUEST, normalize_resource_type

_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}")

_STATUS_STATES = {"close": "closed", "reopen": "opened", "merge": "merged"}

_TYPE_LABELS = {ISSUE: "issues", MERGE_REQUEST: "merge_requests", BRANCH: "branches"}

_IDENTITY_FIELDS = ("id", "iid", "project_id", "web_url", "references")

Step = Callable[[Resource, Any, str, bool, Mapping[str, Any]], Resource]


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _handle(user: Any) -> str:
    if isinstance(user, Mapping):
        user = user.get("username")
    return f"@{user}" if user else ""


def _placeholders(resource: Mapping[str, Any]) -> dict[str, Any]:
    milestone = resource.get("milestone")
    references = resource.get("references")
    pipeline = resource.get("head_pipeline")
    labels = resource.get("labels")
    assignees = resource.get("assignees")
    reviewers = resource.get("reviewers")
    return {
        "created_at": resource.get("created_at"),
        "updated_at": resource.get("updated_at"),
        "closed_at": resource.get("closed_at"),
        "merged_at": resource.get("merged_at"),
        "state": resource.get("state"),
        "author": _handle(resource.get("author")),
        "assignee": _handle(resource.get("assignee")),
        "assignees": ", ".join(_handle(a) for a in assignees) if assignees else None,
        "reviewers": ", ".join(_handle(r) for r in reviewers) if reviewers else None,
        "closed_by": _handle(resource.get("closed_by")),
        "merged_by": _handle(resource.get("merged_by")),
        "milestone": milestone.get("title") if isinstance(milestone, Mapping) else milestone,
        "labels": ", ".join(f"~{name}" for name in label_names(resource)) if labels else None,
        "upvotes": resource.get("upvotes"),
        "downvotes": resource.get("downvotes"),
        "title": resource.get("title"),
        "web_url": resource.get("web_url"),
        "full_reference": references.get("full") if isinstance(references, Mapping) else None,
        "type": resource.get("type")
        or (MERGE_REQUEST if "merge_status" in resource else ISSUE),
        "source_branch": resource.get("source_branch"),
        "target_branch": resource.get("target_branch"),
        "merge_status": resource.get("merge_status"),
        "pipeline_status": pipeline.get("status") if isinstance(pipeline, Mapping) else None,
    }


def render_template(resource: Mapping[str, Any], template: str) -> str:
    """Substitute ``{{key}}`` placeholders from ``resource``; unknown or null keys render as ''."""
    values = _placeholders(resource)

    def _sub(match: re.Match[str]) -> str:
        value = values.get(match.group(1).strip())
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, template)


def resource_ref(resource: Mapping[str, Any]) -> str:
    references = resource.get("references")
    if isinstance(references, Mapping) and references.get("full"):
        return str(references["full"])
    if resource.get("iid") is not None:
        return f"{resource.get('project_id')}#{resource.get('iid')}"
    return str(resource.get("name") or resource.get("id"))


class ActionExecutor:
    def __init__(
        self,
        client: GitLabRestClient,
        *,
        extensions: Mapping[str, Any] | None = None,
    ) -> None:
        self.client = client
        self.logger = get_logger()
        self._extensions: dict[str, Any] = {}
        for alias, extension in (extensions or {}).items():
            self.register_extension(alias, extension)
        self._steps: list[tuple[str, frozenset[str] | None, Step]] = [
            ("labels", None, self._add_labels),
            ("remove_labels", None, self._remove_labels),
            ("status", None, self._change_status),
            ("mention", None, self._mention),
            ("move", frozenset({ISSUE}), self._move),
            ("comment", None, self._comment),
            ("delete", frozenset({BRANCH}), self._delete),
            ("assignee", None, self._assign),
            ("reviewer", frozenset({MERGE_REQUEST}), self._review),
            ("merge", frozenset({MERGE_REQUEST}), self._merge),
        ]

    @property
    def extensions(self) -> dict[str, Any]:
        return dict(self._extensions)

    def register_extension(self, alias: str, extension: Any) -> None:
        """Register an extension instance, or a class/factory called with this executor."""
        if not alias or extension is None:
            raise ValueError("Both an alias and an extension are required")
        if isinstance(extension, type) or (callable(extension) and not hasattr(extension, "run")):
            extension = extension(self)
        if not callable(getattr(extension, "run", None)):
            raise ValueError(f"Extension {alias!r} does not provide run()")
        self._extensions[alias] = extension
        self.logger.debug(f"Registered extension: {alias}")

    # ---- pipeline -------------------------------------------------------
    def execute(
        self,
        actions: Mapping[str, Any],
        resources: Iterable[Resource],
        resource_type: str,
        dry_run: bool,
    ) -> list[Resource]:
        kind = normalize_resource_type(resource_type)
        return [self._execute_one(actions, dict(r), kind, dry_run) for r in resources]

    def _execute_one(
        self, actions: Mapping[str, Any], resource: Resource, kind: str, dry_run: bool
    ) -> Resource:
        self.logger.debug(f"Executing actions for {kind} {resource_ref(resource)}")
        for key, gate, step in self._steps:
            payload = actions.get(key)
            if not payload or (gate is not None and kind not in gate):
                continue
            resource = step(resource, payload, kind, dry_run, actions)
        alias = actions.get("extension")
        if alias:
            extension = self._extensions.get(alias)
            if extension is None:
                raise ExtensionNotFoundError(alias)
            self.logger.log_resource_action(
                f"extension:{alias}", resource_ref(resource), dry_run=dry_run
            )
            extension.run(resource, kind, dry_run)
        return resource

    # ---- remote helpers -------------------------------------------------
    def _edit(self, kind: str, resource: Resource, **fields: Any) -> Any:
        if kind == ISSUE:
            return self.client.edit_issue(resource["project_id"], resource["iid"], **fields)
        if kind == MERGE_REQUEST:
            return self.client.edit_merge_request(resource["project_id"], resource["iid"], **fields)
        raise UnsupportedResourceTypeError(kind)

    def _note(self, kind: str, resource: Resource, body: str, **options: Any) -> Any:
        if kind == ISSUE:
            return self.client.create_issue_note(
                resource["project_id"], resource["iid"], body, **options
            )
        if kind == MERGE_REQUEST:
            options.pop("thread", None)
            return self.client.create_merge_request_note(
                resource["project_id"], resource["iid"], body, **options
            )
        raise UnsupportedResourceTypeError(kind)

    # ---- steps ----------------------------------------------------------
    def _add_labels(
        self, resource: Resource, labels: Sequence[str], kind: str, dry_run: bool, _: Any
    ) -> Resource:
        labels = _as_list(labels)
        updated = label_names(resource)
        for label in labels:
            if label not in updated:
                updated.append(label)
        self.logger.log_resource_action(
            "add_labels", resource_ref(resource), dry_run=dry_run, labels=list(labels)
        )
        if not dry_run:
            self._edit(kind, resource, labels=",".join(updated))
        return {**resource, "labels": updated}

    def _remove_labels(
        self, resource: Resource, labels: Sequence[str], kind: str, dry_run: bool, _: Any
    ) -> Resource:
        labels = _as_list(labels)
        updated = [lbl for lbl in label_names(resource) if lbl not in labels]
        self.logger.log_resource_action(
            "remove_labels", resource_ref(resource), dry_run=dry_run, labels=list(labels)
        )
        if not dry_run:
            self._edit(kind, resource, labels=",".join(updated))
        return {**resource, "labels": updated}

    def _change_status(
        self, resource: Resource, status: str, kind: str, dry_run: bool, actions: Any
    ) -> Resource:
        if status not in _STATUS_STATES:
            self.logger.warning(f"Unknown status {status!r} for {resource_ref(resource)}")
            return resource
        if status == "merge":
            if kind != MERGE_REQUEST:
                self.logger.warning(f"Only merge requests can be merged: {resource_ref(resource)}")
                return resource
            return self._merge(resource, {}, kind, dry_run, actions)
        self.logger.log_resource_action(
            f"status_{status}", resource_ref(resource), dry_run=dry_run
        )
        if not dry_run:
            self._edit(kind, resource, state_event=status)
        return {**resource, "state": _STATUS_STATES[status]}

    def _mention(
        self, resource: Resource, users: Any, kind: str, dry_run: bool, _: Any
    ) -> Resource:
        body = " ".join(f"@{user}" for user in _as_list(users))
        self.logger.log_resource_action(
            "mention", resource_ref(resource), dry_run=dry_run, body=body
        )
        if not dry_run:
            self._note(kind, resource, body)
        return resource

    def _move(
        self, resource: Resource, target: str, kind: str, dry_run: bool, _: Any
    ) -> Resource:
        self.logger.log_resource_action(
            "move", resource_ref(resource), dry_run=dry_run, target=target
        )
        if dry_run:
            return resource
        moved = self.client.move_issue(resource["project_id"], resource["iid"], target)
        if not isinstance(moved, Mapping):
            return resource
        return {**resource, **{k: moved[k] for k in _IDENTITY_FIELDS if k in moved}}

    def _comment(
        self, resource: Resource, template: str, kind: str, dry_run: bool, actions: Any
    ) -> Resource:
        body = render_template(resource, template)
        self.logger.log_resource_action(
            "comment", resource_ref(resource), dry_run=dry_run, body=body
        )
        if not dry_run:
            options: dict[str, Any] = {"internal": bool(actions.get("comment_internal", False))}
            if kind == ISSUE:
                options["thread"] = actions.get("comment_type") == "thread"
            self._note(kind, resource, body, **options)
        return resource

    def _delete(
        self, resource: Resource, enabled: Any, kind: str, dry_run: bool, _: Any
    ) -> Resource:
        self.logger.log_resource_action(
            "delete_branch", str(resource.get("name")), dry_run=dry_run
        )
        if not dry_run:
            self.client.delete_branch(resource["project_id"], resource["name"])
        return resource

    def _assign(
        self, resource: Resource, assignee: Any, kind: str, dry_run: bool, _: Any
    ) -> Resource:
        self.logger.log_resource_action(
            "assign", resource_ref(resource), dry_run=dry_run, assignee=assignee
        )
        if not dry_run:
            self._edit(kind, resource, assignee_ids=[assignee])
        return {**resource, "assignee_id": assignee}

    def _review(
        self, resource: Resource, reviewers: Any, kind: str, dry_run: bool, _: Any
    ) -> Resource:
        ids = list(reviewers) if isinstance(reviewers, (list, tuple)) else [reviewers]
        self.logger.log_resource_action(
            "reviewers", resource_ref(resource), dry_run=dry_run, reviewer_ids=ids
        )
        if not dry_run:
            self._edit(kind, resource, reviewer_ids=ids)
        return {**resource, "reviewer_ids": ids}

    def _merge(
        self, resource: Resource, options: Any, kind: str, dry_run: bool, _: Any
    ) -> Resource:
        options = dict(options) if isinstance(options, Mapping) else {}
        if options.pop("cancel", False):
            self.logger.log_resource_action(
                "cancel_merge", resource_ref(resource), dry_run=dry_run
            )
            if not dry_run:
                self.client.cancel_merge_when_pipeline_succeeds(
                    resource["project_id"], resource["iid"]
                )
            return resource
        self.logger.log_resource_action("merge", resource_ref(resource), dry_run=dry_run)
        if not dry_run:
            self.client.merge_merge_request(resource["project_id"], resource["iid"], **options)
        return {**resource, "state": "merged"}

    # ---- summaries ------------------------------------------------------
    def render_template(self, resource: Mapping[str, Any], template: str) -> str:
        return render_template(resource, template)

    def execute_summary(
        self,
        summarize: Mapping[str, Any],
        summary_data: Sequence[SummarySubResult],
        resource_type: str,
        dry_run: bool,
    ) -> dict[str, Any] | None:
        """File one issue combining the ``item`` lines of every contributing sub-rule."""
        if not summary_data:
            return None
        type_label = _TYPE_LABELS[normalize_resource_type(resource_type)]
        blocks: list[str] = []
        for data in summary_data:
            item = data.summary.get("item")
            if not item:
                continue
            lines = "\n".join(render_template(r, item) for r in data.resources)
            wrapper = data.summary.get("summary")
            if wrapper:
                lines = wrapper.replace("{{items}}", lines).replace("{{type}}", type_label)
            blocks.append(lines)
        items = "\n".join(blocks)
        body = str(summarize.get("summary") or "{{items}}")
        description = body.replace("{{items}}", items).replace("{{type}}", type_label)
        destination = summarize.get("destination") or summary_data[0].resources[0]["project_id"]
        title = str(summarize.get("title", ""))

        self.logger.log_resource_action(
            "summarize", str(destination), dry_run=dry_run, title=title
        )
        if not dry_run:
            self.client.create_issue(destination, title=title, description=description)
        return {"project_id": destination, "title": title, "description": description}


__all__ = ["ActionExecutor", "render_template", "resource_ref"]

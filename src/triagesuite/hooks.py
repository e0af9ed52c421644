"""Webhook event dispatch.

``issue`` and ``merge_request`` events run the hook rules configured for the
event against the addressed resource. ``note`` events match the comment body
against each hook's ``command`` pattern; on a match the captured words are
bound into the hook's action map before the actions run. Hooks for one
note run in order and each sees the resource as left by the hooks before it::

    resource_rules:
      hooks:
        - name: Label from chat
          on: note
          command: "labels {{...labels}}"
          actions:
            labels: "{{labels}}"
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from .commands import CommandMatcher
from .config import PolicyConfig
from .logging import get_logger
from .models import HookRule, Resource
from .resources import ISSUE, MERGE_REQUEST, ResourceLoader
from .rules import RuleProcessor

_EVENT_ALIASES = {
    "confidential_issue": "issue",
    "confidential_note": "note",
}

_NOTEABLE_TYPES = {"Issue": ISSUE, "MergeRequest": MERGE_REQUEST}

_BINDING = re.compile(r"\{\{(\w+)\}\}")


def bind_variables(value: Any, variables: Mapping[str, list[str]]) -> Any:
    """Substitute captured command variables into an action payload.

    A string that is exactly ``{{name}}`` becomes the captured list; a
    ``{{name}}`` inside a longer string becomes the space-joined words.
    Placeholders that are not captured variables are left untouched.
    """
    if isinstance(value, Mapping):
        return {k: bind_variables(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [bind_variables(v, variables) for v in value]
    if not isinstance(value, str):
        return value
    exact = _BINDING.fullmatch(value.strip())
    if exact and exact.group(1) in variables:
        return list(variables[exact.group(1)])

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        return " ".join(variables[name]) if name in variables else match.group(0)

    return _BINDING.sub(_sub, value)


class HookManager:
    def __init__(
        self,
        config: PolicyConfig,
        loader: ResourceLoader,
        processor: RuleProcessor,
        *,
        dry_run: bool | None = None,
    ) -> None:
        self.config = config
        self.loader = loader
        self.processor = processor
        self.dry_run = config.hooks_dry_run if dry_run is None else dry_run
        self.logger = get_logger()

    def handle_event(
        self, payload: Mapping[str, Any], event_type: str | None = None
    ) -> dict[str, int]:
        """Dispatch one webhook payload; returns selected-resource counts per hook name."""
        if not isinstance(payload, Mapping) or not payload.get("object_kind"):
            raise ValueError("Invalid webhook payload: object_kind is required")
        event = event_type or payload.get("event_type") or payload.get("object_kind")
        event = _EVENT_ALIASES.get(str(event), str(event))

        hooks = [hook for hook in self.config.hooks if hook.on == event]
        if not hooks:
            self.logger.debug(f"No hook rules to process for {event}")
            return {}
        self.logger.log_operation("hook_event", event=event, hooks=len(hooks))

        if event in (ISSUE, MERGE_REQUEST):
            iid = (payload.get("object_attributes") or {}).get("iid")
            resource = self._load(event, payload, iid)
            return self.processor.process_rules(hooks, [resource], event, self.dry_run)
        if event == "note":
            return self._handle_note(hooks, payload)
        self.logger.debug(f"Unknown event type: {event}")
        return {}

    def _load(self, kind: str, payload: Mapping[str, Any], iid: Any) -> Resource:
        project = payload.get("project") or {}
        project_id = project.get("id") or payload.get("project_id")
        resource = self.loader.load_resource_by_iid(kind, "projects", project_id, int(iid))
        return {**resource, "hook_payload": dict(payload)}

    def _handle_note(self, hooks: list[HookRule], payload: Mapping[str, Any]) -> dict[str, int]:
        attributes = payload.get("object_attributes") or {}
        kind = _NOTEABLE_TYPES.get(attributes.get("noteable_type", ""))
        if kind is None:
            self.logger.debug(f"Ignoring note on {attributes.get('noteable_type')}")
            return {}
        target = payload.get(kind) or {}
        body = attributes.get("note") or ""

        counts: dict[str, int] = {}
        resource: Resource | None = None
        for hook in hooks:
            try:
                if hook.command:
                    match = CommandMatcher(
                        hook.command, bot_username=self.config.bot_username
                    ).handle_input(body)
                    if match is None:
                        continue
                    actions = bind_variables(hook.actions, match.variables)
                else:
                    actions = hook.actions
                if resource is None:
                    resource = self._load(kind, payload, target.get("iid"))
                if not self.processor.evaluator.evaluate_conditions(resource, hook.conditions):
                    counts[hook.name] = 0
                    continue
                if actions:
                    [resource] = self.processor.executor.execute(
                        actions, [resource], kind, self.dry_run
                    )
                counts[hook.name] = 1
            except Exception as exc:  # noqa: BLE001 - one failing hook must not stop the others
                self.processor.report_error(
                    f'Error processing hook "{hook.name}"', exc, rule=hook.name
                )
                counts[hook.name] = 0
        return counts


__all__ = ["HookManager", "bind_variables"]

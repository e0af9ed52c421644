from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml
from jsonschema import Draft7Validator

from .errors import ConfigurationError
from .gitlab_rest import DEFAULT_HOST_URL
from .models import HookRule, Rule, SummaryPolicy
from .schemas import get_policy_schema

DEFAULT_POLICIES_FILE = "./.triage-policies.yml"
RESOURCE_TYPES = ("issues", "merge_requests", "branches")

_VALIDATOR = Draft7Validator(get_policy_schema())


class ConfigError(ConfigurationError):
    """The policy file is missing, unreadable or fails schema validation."""


@dataclass
class ResourceRules:
    rules: list[Rule] = field(default_factory=list)
    summaries: list[SummaryPolicy] = field(default_factory=list)


@dataclass
class PolicyConfig:
    source_file: Path | None
    host_url: str | None
    resource_rules: dict[str, ResourceRules]
    hooks: list[HookRule]
    bot_username: str | None
    hooks_dry_run: bool
    # Logging configuration
    logging_json_enabled: bool
    logging_level: str


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        return os.getenv(value[1:], value)  # Fallback to original if not found
    return value


def _format_error_path(path: list[Any]) -> str:
    return ".".join(str(part) for part in path)


def validate_policy(raw: Any) -> list[str]:
    """Return ``path: message`` strings for every schema violation (empty when valid)."""
    if not isinstance(raw, dict):
        return ["Configuration must be an object"]
    if not raw:
        return ["Configuration must contain resource_rules"]
    errors = sorted(_VALIDATOR.iter_errors(raw), key=lambda err: [str(p) for p in err.path])
    messages: list[str] = []
    for err in errors:
        location = _format_error_path(list(err.path))
        messages.append(f"{location}: {err.message}" if location else err.message)
    return messages


def parse_policy(raw: dict[str, Any], source_file: Path | None = None) -> PolicyConfig:
    errors = validate_policy(raw)
    if errors:
        raise ConfigError(f"Invalid configuration: {', '.join(errors)}")
    rules_section = cast(dict[str, Any], raw.get('resource_rules', {}) or {})
    logging_config = cast(dict[str, Any], raw.get('logging', {}) or {})

    resource_rules: dict[str, ResourceRules] = {}
    for resource_type in RESOURCE_TYPES:
        section = rules_section.get(resource_type)
        if not section:
            continue
        resource_rules[resource_type] = ResourceRules(
            rules=[Rule.from_mapping(r) for r in section.get('rules') or []],
            summaries=[SummaryPolicy.from_mapping(s) for s in section.get('summaries') or []],
        )

    return PolicyConfig(
        source_file=source_file,
        host_url=_resolve_env_var(raw.get('host_url')),
        resource_rules=resource_rules,
        hooks=[HookRule.from_mapping(h) for h in rules_section.get('hooks') or []],
        bot_username=_resolve_env_var(raw.get('bot_username')),
        hooks_dry_run=bool(raw.get('hooks_dry_run', False)),
        logging_json_enabled=bool(logging_config.get('json_enabled', False)),
        logging_level=logging_config.get('level', 'INFO'),
    )


def load_config(path: str | Path = DEFAULT_POLICIES_FILE) -> PolicyConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(
            f'Policy file not found: {p}. Use `triagesuite init` to create an example file.'
        )
    try:
        raw = yaml.safe_load(p.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f'Invalid YAML in {p}: {exc}') from exc
    return parse_policy(raw, source_file=p)


__all__ = [
    "ConfigError",
    "DEFAULT_HOST_URL",
    "DEFAULT_POLICIES_FILE",
    "PolicyConfig",
    "ResourceRules",
    "load_config",
    "parse_policy",
    "validate_policy",
]

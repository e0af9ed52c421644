"""TriageSuite CLI

Subcommands:
  run       Apply the triage policies to a project, group or single resource
  validate  Check a policy file against the policy schema
  init      Write an example policy file
  init-ci   Write an example scheduled GitLab CI job
  hook      Replay a webhook payload (JSON file) against the hook rules
"""

from __future__ import annotations

import argparse
import json
import sys
import traceback
from pathlib import Path
from typing import Any

from .config import DEFAULT_HOST_URL, DEFAULT_POLICIES_FILE, ConfigError, PolicyConfig, load_config
from .env_auth import create_env_auth_manager, resolve_token
from .errors import TriageError
from .extensions import register_discovered
from .gitlab_rest import GitLabRestClient
from .hooks import HookManager
from .logging import configure_logging
from .orchestrator import TriageRunner
from .scaffold import ScaffoldResult, write_ci_file, write_policy_file

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--policies-file", default=DEFAULT_POLICIES_FILE)
    parser.add_argument("--token", help="GitLab API token (env: GITLAB_API_TOKEN)")
    parser.add_argument(
        "--host-url", help=f"GitLab host when the policy sets none (default {DEFAULT_HOST_URL})"
    )
    parser.add_argument("--dry-run", action="store_true", help="Log actions without applying them")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")


def _build_parser() -> argparse.ArgumentParser:
    """Construct top-level CLI parser with subcommands."""
    p = _FormatterArgumentParser(
        prog="triagesuite", description="Policy-driven triage for GitLab issues, MRs and branches"
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pr = sub.add_parser("run", help="Apply triage policies")
    _add_connection_args(pr)
    pr.add_argument("--source", choices=["projects", "groups"], default="projects")
    pr.add_argument("--source-id", help="Project or group id / full path")
    pr.add_argument(
        "--resource-reference", help="Single issue (#42) or merge request (!33) to triage"
    )
    pr.add_argument(
        "--all-projects", action="store_true", help="Triage every project the token can access"
    )

    pv = sub.add_parser("validate", help="Validate a policy file")
    pv.add_argument("--policies-file", default=DEFAULT_POLICIES_FILE)

    pi = sub.add_parser("init", help="Write an example policy file")
    pi.add_argument("--directory", default=".")
    pi.add_argument("--force", action="store_true", help="Overwrite an existing file")

    pc = sub.add_parser("init-ci", help="Write an example .gitlab-ci.yml triage job")
    pc.add_argument("--directory", default=".")
    pc.add_argument("--force", action="store_true", help="Overwrite an existing file")

    ph = sub.add_parser("hook", help="Replay a webhook payload against hook rules")
    _add_connection_args(ph)
    ph.add_argument("--payload", required=True, help="Path to a webhook payload JSON file")
    ph.add_argument("--event-type", help="Override the event type taken from the payload")
    return p


def _configure_logging(args: argparse.Namespace, policy: PolicyConfig | None = None) -> None:
    json_logs = bool(getattr(args, "json_logs", False))
    level = "INFO"
    if policy is not None:
        json_logs = json_logs or policy.logging_json_enabled
        level = policy.logging_level
    if getattr(args, "debug", False):
        level = "DEBUG"
    configure_logging(json_logging=json_logs, level=level)


def _build_client(args: argparse.Namespace, policy: PolicyConfig) -> GitLabRestClient | None:
    token = resolve_token(args.token)
    if not token:
        print("[run] no GitLab token found", file=sys.stderr)
        for hint in create_env_auth_manager().get_authentication_recommendations():
            print(f"  - {hint}", file=sys.stderr)
        return None
    host_url = policy.host_url or args.host_url or DEFAULT_HOST_URL
    return GitLabRestClient(token, host_url=host_url)


def _build_runner(client: GitLabRestClient) -> TriageRunner:
    runner = TriageRunner(client)
    aliases = register_discovered(runner.executor)
    if aliases:
        print(f"[run] extensions: {', '.join(aliases)}", file=sys.stderr)
    return runner


def _cmd_run(args: argparse.Namespace) -> int:
    policy = load_config(args.policies_file)
    _configure_logging(args, policy)
    client = _build_client(args, policy)
    if client is None:
        return 2
    runner = _build_runner(client)
    summary = runner.run(
        policy,
        dry_run=args.dry_run,
        source=args.source,
        source_id=args.source_id,
        resource_reference=args.resource_reference,
        all_projects=args.all_projects,
    )
    print(json.dumps(summary.to_dict(), indent=2))
    return 1 if summary.errors else 0


def _cmd_validate(args: argparse.Namespace) -> int:
    policy = load_config(args.policies_file)
    rules = sum(len(section.rules) for section in policy.resource_rules.values())
    summaries = sum(len(section.summaries) for section in policy.resource_rules.values())
    print(
        f"[validate] {policy.source_file}: {rules} rules, {summaries} summaries, "
        f"{len(policy.hooks)} hooks"
    )
    print("[validate] ok")
    return 0


def _report_scaffold(label: str, result: ScaffoldResult) -> int:
    for path in result.created:
        print(f"[{label}] created {path}")
    for path in result.skipped:
        print(f"[{label}] skipped (exists) {path}; use --force to overwrite")
    return 0


def _cmd_init(args: argparse.Namespace) -> int:
    return _report_scaffold("init", write_policy_file(Path(args.directory), force=args.force))


def _cmd_init_ci(args: argparse.Namespace) -> int:
    return _report_scaffold("init-ci", write_ci_file(Path(args.directory), force=args.force))


def _cmd_hook(args: argparse.Namespace) -> int:
    policy = load_config(args.policies_file)
    _configure_logging(args, policy)
    try:
        payload = json.loads(Path(args.payload).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        print(f"[hook] unable to read payload {args.payload}: {exc}", file=sys.stderr)
        return 1
    client = _build_client(args, policy)
    if client is None:
        return 2
    runner = _build_runner(client)
    manager = HookManager(
        policy, runner.loader, runner.processor, dry_run=True if args.dry_run else None
    )
    counts = manager.handle_event(payload, event_type=args.event_type)
    print(json.dumps(counts, indent=2))
    return 0


def _build_handlers() -> dict[str, Any]:
    return {
        "run": _cmd_run,
        "validate": _cmd_validate,
        "init": _cmd_init,
        "init-ci": _cmd_init_ci,
        "hook": _cmd_hook,
    }


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = _build_handlers().get(args.cmd)
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    try:
        return int(handler(args))
    except ConfigError as exc:
        print(f"[{args.cmd}] {exc}", file=sys.stderr)
        return 1
    except (TriageError, ValueError) as exc:
        print(f"[{args.cmd}] error: {exc}", file=sys.stderr)
        if getattr(args, "debug", False):
            traceback.print_exc()
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

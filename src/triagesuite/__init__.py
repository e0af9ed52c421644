"""TriageSuite - policy-driven triage for GitLab issues, merge requests and branches.

High-level public API:

from triagesuite import GitLabRestClient, TriageRunner, load_config

policy = load_config('.triage-policies.yml')
runner = TriageRunner(GitLabRestClient(token, host_url=policy.host_url or DEFAULT_HOST_URL))
summary = runner.run(policy, dry_run=True, source='projects', source_id='group/project')
print(summary.to_dict())

The CLI (``triagesuite run``) delegates to this library.
"""

from __future__ import annotations

from .actions import ActionExecutor
from .commands import CommandMatcher
from .conditions import ConditionEvaluator
from .config import DEFAULT_HOST_URL, PolicyConfig, load_config
from .gitlab_rest import GitLabRestClient
from .hooks import HookManager
from .orchestrator import RunSummary, TriageRunner
from .rules import RuleProcessor

# Version constant (sync manually with pyproject)
__version__ = "0.1.0"

__all__ = [
    "ActionExecutor",
    "CommandMatcher",
    "ConditionEvaluator",
    "DEFAULT_HOST_URL",
    "GitLabRestClient",
    "HookManager",
    "PolicyConfig",
    "RuleProcessor",
    "RunSummary",
    "TriageRunner",
    "__version__",
    "load_config",
]

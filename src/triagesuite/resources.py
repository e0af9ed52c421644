"""Resource loading from GitLab.

Resources are plain dicts exactly as returned by the REST API. Resource type
names are normalized to their singular form (``issue``, ``merge_request``,
``branch``) so that policy keys (``issues``) and webhook kinds (``issue``)
both address the same loader.
"""

from __future__ import annotations

from typing import Any, Protocol

from .errors import ConfigurationError, UnsupportedResourceTypeError
from .logging import get_logger
from .models import Resource

ISSUE = "issue"
MERGE_REQUEST = "merge_request"
BRANCH = "branch"

_ALIASES = {
    "issue": ISSUE,
    "issues": ISSUE,
    "merge_request": MERGE_REQUEST,
    "merge_requests": MERGE_REQUEST,
    "branch": BRANCH,
    "branches": BRANCH,
}

_SOURCES = {
    "project": "projects",
    "projects": "projects",
    "group": "groups",
    "groups": "groups",
}

_REFERENCE_PREFIXES = {"#": ISSUE, "!": MERGE_REQUEST}


class ResourceClient(Protocol):
    def list_issues(self, source: str, source_id: int | str) -> list[dict[str, Any]]: ...

    def list_merge_requests(self, source: str, source_id: int | str) -> list[dict[str, Any]]: ...

    def list_branches(self, project_id: int | str) -> list[dict[str, Any]]: ...

    def get_issue(self, project_id: int | str, iid: int) -> dict[str, Any]: ...

    def get_merge_request(self, project_id: int | str, iid: int) -> dict[str, Any]: ...


def normalize_resource_type(resource_type: str) -> str:
    """Return the singular resource type or raise ``UnsupportedResourceTypeError``."""
    normalized = _ALIASES.get(str(resource_type).strip().lower())
    if normalized is None:
        raise UnsupportedResourceTypeError(resource_type)
    return normalized


def normalize_source(source_type: str) -> str:
    normalized = _SOURCES.get(str(source_type).strip().lower())
    if normalized is None:
        raise ConfigurationError(f"Unsupported source type: {source_type}")
    return normalized


def parse_resource_reference(reference: str) -> tuple[str, int]:
    """Split ``#42`` / ``!33`` into (resource type, iid)."""
    ref = (reference or "").strip()
    if len(ref) < 2 or ref[0] not in _REFERENCE_PREFIXES:
        raise ConfigurationError(
            f"Invalid resource reference {reference!r}; expected '#<iid>' or '!<iid>'"
        )
    try:
        iid = int(ref[1:])
    except ValueError as exc:
        raise ConfigurationError(f"Invalid resource reference {reference!r}") from exc
    return _REFERENCE_PREFIXES[ref[0]], iid


class ResourceLoader:
    def __init__(self, client: ResourceClient) -> None:
        self.client = client
        self.logger = get_logger()

    def load_resources(
        self, resource_type: str, source_type: str, source_id: int | str
    ) -> list[Resource]:
        kind = normalize_resource_type(resource_type)
        source = normalize_source(source_type)
        self.logger.debug(
            f"Loading resources: type={kind}, source={source}, source_id={source_id}"
        )
        if kind == ISSUE:
            resources = self.client.list_issues(source, source_id)
        elif kind == MERGE_REQUEST:
            resources = self.client.list_merge_requests(source, source_id)
        else:
            if source != "projects":
                raise ConfigurationError("Branches can only be loaded from a project source")
            resources = self.client.list_branches(source_id)
        self.logger.debug(f"Loaded {len(resources)} resources of type {kind}")
        return resources

    def load_resource_by_iid(
        self, resource_type: str, source_type: str, source_id: int | str, iid: int
    ) -> Resource:
        kind = normalize_resource_type(resource_type)
        source = normalize_source(source_type)
        if source != "projects":
            raise ConfigurationError("Single resources can only be loaded from a project source")
        if kind == ISSUE:
            return self.client.get_issue(source_id, iid)
        if kind == MERGE_REQUEST:
            return self.client.get_merge_request(source_id, iid)
        raise UnsupportedResourceTypeError(resource_type)


__all__ = [
    "ISSUE",
    "MERGE_REQUEST",
    "BRANCH",
    "ResourceLoader",
    "normalize_resource_type",
    "normalize_source",
    "parse_resource_reference",
]

"""Extension discovery and registration.

Extensions are registered by alias before the engine starts; the action
executor looks them up by alias only. Two discovery sources are supported:

- entry points in the ``triagesuite.extensions`` group (name = alias)
- the ``TRIAGESUITE_EXTENSIONS`` environment variable, a comma separated
  list of ``alias=module:attr`` items
"""

from __future__ import annotations

import importlib
import os
from collections.abc import Iterable
from dataclasses import dataclass
from importlib import metadata
from typing import TYPE_CHECKING, Any, Protocol, cast, runtime_checkable

from .logging import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from .actions import ActionExecutor

EXTENSION_GROUP = "triagesuite.extensions"
ENV_EXTENSION_SPEC = "TRIAGESUITE_EXTENSIONS"


@runtime_checkable
class Extension(Protocol):
    """Follow-on effect run for a resource after the built-in actions."""

    def run(self, resource: dict[str, Any], resource_type: str, dry_run: bool) -> Any: ...


@dataclass(frozen=True)
class ExtensionSpec:
    alias: str
    target: Any
    source: str


def _load_entry_point_extensions() -> list[ExtensionSpec]:
    logger = get_logger()
    specs: list[ExtensionSpec] = []
    entries = cast(Iterable[Any], metadata.entry_points().select(group=EXTENSION_GROUP))
    for ep in entries:
        try:
            target = ep.load()
        except (ImportError, AttributeError) as exc:
            logger.warning(f"Failed to load extension entry point {ep.name}: {exc}")
            continue
        specs.append(ExtensionSpec(alias=ep.name, target=target, source="entry_point"))
    return specs


def _load_env_extensions() -> list[ExtensionSpec]:
    spec = os.environ.get(ENV_EXTENSION_SPEC)
    if not spec:
        return []
    logger = get_logger()
    specs: list[ExtensionSpec] = []
    for raw_item in spec.split(","):
        item = raw_item.strip()
        if not item:
            continue
        alias, _, reference = item.partition("=")
        module_name, _, attr = reference.partition(":")
        if not alias or not module_name or not attr:
            logger.warning(f"Ignoring malformed extension spec: {item!r}")
            continue
        try:
            module = importlib.import_module(module_name)
            target = getattr(module, attr)
        except (ImportError, AttributeError) as exc:
            logger.warning(f"Failed to load extension {item!r}: {exc}")
            continue
        specs.append(ExtensionSpec(alias=alias.strip(), target=target, source="env"))
    return specs


def discover_extensions(disabled: Iterable[str] = ()) -> list[ExtensionSpec]:
    blocked = set(disabled)
    found = _load_entry_point_extensions() + _load_env_extensions()
    return [spec for spec in found if spec.alias not in blocked]


def register_discovered(
    executor: ActionExecutor, specs: Iterable[ExtensionSpec] | None = None
) -> list[str]:
    """Register discovered extensions on ``executor``; returns the registered aliases."""
    registered: list[str] = []
    for spec in discover_extensions() if specs is None else specs:
        executor.register_extension(spec.alias, spec.target)
        registered.append(spec.alias)
    return registered


__all__ = [
    "EXTENSION_GROUP",
    "ENV_EXTENSION_SPEC",
    "Extension",
    "ExtensionSpec",
    "discover_extensions",
    "register_discovered",
]

"""Error taxonomy & redaction helpers.

Two halves live here:

- The exception hierarchy raised by the triage engine. ``ConfigurationError``
  (and subclasses) is fatal to the enclosing rule/resource only; the rule
  processor catches it, logs it, and moves on.
- ``classify_error`` / ``redact`` which prepare a caught exception for safe
  logging (tokens stripped, category attached).

Public API:
- TriageError, ConfigurationError, UnsupportedResourceTypeError,
  ExtensionNotFoundError, ExpressionError
- classify_error(exc) -> ErrorInfo
- redact(text) -> str
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import requests


class TriageError(RuntimeError):
    """Base class for errors raised by the triage engine."""


class ConfigurationError(TriageError):
    """A policy asked for something the engine cannot do (unsupported kind/source)."""


class UnsupportedResourceTypeError(ConfigurationError):
    def __init__(self, resource_type: Any):
        super().__init__(f"Unsupported resource type: {resource_type}")
        self.resource_type = resource_type


class ExtensionNotFoundError(ConfigurationError):
    def __init__(self, alias: str):
        super().__init__(f"No extension registered under alias: {alias}")
        self.alias = alias


class ExpressionError(TriageError):
    """Raised inside the expression sandbox; always converted to a non-match."""


_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"glpat-[A-Za-z0-9_\-]{20,}"),  # personal access tokens
    re.compile(r"glptt-[A-Za-z0-9_\-]{20,}"),  # pipeline trigger tokens
    re.compile(r"gldt-[A-Za-z0-9_\-]{20,}"),  # deploy tokens
    re.compile(r"(?i)(private-token[\"':=\s]+)[A-Za-z0-9_\-]{16,}"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Replace token-looking substrings with a placeholder."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        if pat.groups:
            redacted = pat.sub(lambda m: m.group(1) + _REDACTION_PLACEHOLDER, redacted)
        else:
            redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception.

    - ConfigurationError -> 'config'
    - HTTP 429 / rate limit wording -> 'gitlab.rate_limit', transient
    - Network-y keywords -> 'network', transient
    - YAML / parse errors -> 'parse'
    - Fallback -> 'generic'
    """
    msg = str(exc) if exc else ""
    low = msg.lower()
    name = exc.__class__.__name__

    if isinstance(exc, ConfigurationError):
        return ErrorInfo("config", redact(msg), name)
    status = getattr(exc, "status", None)
    if status == 429 or "rate limit" in low:
        return ErrorInfo("gitlab.rate_limit", redact(msg), name, transient=True)
    network_markers = ("timeout", "timed out", "connection reset", "temporarily unavailable")
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)) or any(
        k in low for k in network_markers
    ):
        return ErrorInfo("network", redact(msg), name, transient=True)
    if any(k in low for k in ("yaml", "scannererror", "parsererror")):
        return ErrorInfo("parse", redact(msg), name)
    details = {"status": status} if status is not None else None
    return ErrorInfo("generic", redact(msg), name, details=details)


__all__ = [
    "TriageError",
    "ConfigurationError",
    "UnsupportedResourceTypeError",
    "ExtensionNotFoundError",
    "ExpressionError",
    "ErrorInfo",
    "classify_error",
    "redact",
]

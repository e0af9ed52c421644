"""Sandboxed expression language for the ``expression`` (alias ``js``) condition.

Expressions use Python syntax, are parsed with :mod:`ast` in ``eval`` mode and
are interpreted node by node. Nothing is ever compiled or handed to ``eval``.

Supported:
  - literals: None, bool, int, float, str; list and tuple displays
  - names: variables from the supplied context only
  - ops: and, or, not; ==, !=, <, <=, >, >=; in, not in; +, -; unary -
  - ``x if cond else y``
  - ``a.b`` and ``a["b"]`` on mappings, ``a[0]`` on sequences
  - calls to: len, lower, upper, date, now, days_since

Example::

    "bug" in labels and days_since(resource.updated_at) > 30
"""

from __future__ import annotations

import ast
import operator
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from .errors import ExpressionError

MAX_NODES = 500

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) into an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Not a timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_COMPARE: dict[type[ast.cmpop], Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BINARY: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
}


@lru_cache(maxsize=256)
def _parse(source: str) -> ast.Expression:
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Invalid expression syntax: {exc.msg}") from exc
    return tree


class ExpressionEvaluator:
    """Interprets one parsed expression against a context mapping."""

    def __init__(self, clock: Clock = utcnow, max_nodes: int = MAX_NODES) -> None:
        self._clock = clock
        self._max_nodes = max_nodes
        self._budget = max_nodes
        self._functions: dict[str, Callable[..., Any]] = {
            "len": len,
            "lower": lambda s: str(s).lower(),
            "upper": lambda s: str(s).upper(),
            "date": parse_timestamp,
            "now": self._clock,
            "days_since": self._days_since,
        }

    def _days_since(self, value: Any) -> int:
        delta = self._clock() - parse_timestamp(value)
        return int(delta.total_seconds() / 86400)

    def evaluate(self, source: str, context: Mapping[str, Any]) -> Any:
        if not isinstance(source, str) or not source.strip():
            raise ExpressionError("Expression must be a non-empty string")
        tree = _parse(source.strip())
        self._budget = self._max_nodes
        return self._visit(tree.body, context)

    # ---- node dispatch --------------------------------------------------
    def _visit(self, node: ast.AST, ctx: Mapping[str, Any]) -> Any:
        self._budget -= 1
        if self._budget < 0:
            raise ExpressionError("Expression exceeds evaluation budget")
        handler = getattr(self, f"_visit_{type(node).__name__}", None)
        if handler is None:
            raise ExpressionError(f"Disallowed expression node: {type(node).__name__}")
        return handler(node, ctx)

    def _visit_Constant(self, node: ast.Constant, ctx: Mapping[str, Any]) -> Any:
        if not isinstance(node.value, (str, int, float, bool, type(None))):
            raise ExpressionError(f"Disallowed literal: {type(node.value).__name__}")
        return node.value

    def _visit_Name(self, node: ast.Name, ctx: Mapping[str, Any]) -> Any:
        if node.id in ctx:
            return ctx[node.id]
        raise ExpressionError(f"Unknown name: {node.id}")

    def _visit_List(self, node: ast.List, ctx: Mapping[str, Any]) -> list[Any]:
        return [self._visit(elt, ctx) for elt in node.elts]

    def _visit_Tuple(self, node: ast.Tuple, ctx: Mapping[str, Any]) -> tuple[Any, ...]:
        return tuple(self._visit(elt, ctx) for elt in node.elts)

    def _visit_BoolOp(self, node: ast.BoolOp, ctx: Mapping[str, Any]) -> Any:
        result: Any = None
        if isinstance(node.op, ast.And):
            for value in node.values:
                result = self._visit(value, ctx)
                if not result:
                    return result
            return result
        for value in node.values:
            result = self._visit(value, ctx)
            if result:
                return result
        return result

    def _visit_UnaryOp(self, node: ast.UnaryOp, ctx: Mapping[str, Any]) -> Any:
        operand = self._visit(node.operand, ctx)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        raise ExpressionError(f"Disallowed unary operator: {type(node.op).__name__}")

    def _visit_BinOp(self, node: ast.BinOp, ctx: Mapping[str, Any]) -> Any:
        fn = _BINARY.get(type(node.op))
        if fn is None:
            raise ExpressionError(f"Disallowed operator: {type(node.op).__name__}")
        return fn(self._visit(node.left, ctx), self._visit(node.right, ctx))

    def _visit_Compare(self, node: ast.Compare, ctx: Mapping[str, Any]) -> bool:
        left = self._visit(node.left, ctx)
        for op, comparator in zip(node.ops, node.comparators):
            fn = _COMPARE.get(type(op))
            if fn is None:  # pragma: no cover - every cmpop is mapped
                raise ExpressionError(f"Disallowed comparison: {type(op).__name__}")
            right = self._visit(comparator, ctx)
            if not fn(left, right):
                return False
            left = right
        return True

    def _visit_IfExp(self, node: ast.IfExp, ctx: Mapping[str, Any]) -> Any:
        if self._visit(node.test, ctx):
            return self._visit(node.body, ctx)
        return self._visit(node.orelse, ctx)

    def _visit_Attribute(self, node: ast.Attribute, ctx: Mapping[str, Any]) -> Any:
        if node.attr.startswith("__"):
            raise ExpressionError(f"Disallowed attribute: {node.attr}")
        target = self._visit(node.value, ctx)
        return self._lookup(target, node.attr)

    def _visit_Subscript(self, node: ast.Subscript, ctx: Mapping[str, Any]) -> Any:
        target = self._visit(node.value, ctx)
        key = self._visit(node.slice, ctx)
        if isinstance(key, str) and key.startswith("__"):
            raise ExpressionError(f"Disallowed key: {key}")
        return self._lookup(target, key)

    def _visit_Call(self, node: ast.Call, ctx: Mapping[str, Any]) -> Any:
        if not isinstance(node.func, ast.Name) or node.func.id not in self._functions:
            raise ExpressionError("Only whitelisted function calls are allowed")
        if node.keywords:
            raise ExpressionError("Keyword arguments are not supported")
        args = [self._visit(arg, ctx) for arg in node.args]
        try:
            return self._functions[node.func.id](*args)
        except (TypeError, ValueError) as exc:
            raise ExpressionError(f"{node.func.id}() failed: {exc}") from exc

    @staticmethod
    def _lookup(target: Any, key: Any) -> Any:
        if isinstance(target, Mapping):
            if key not in target:
                raise ExpressionError(f"Missing key: {key}")
            return target[key]
        if isinstance(target, Sequence) and not isinstance(target, str) and isinstance(key, int):
            try:
                return target[key]
            except IndexError as exc:
                raise ExpressionError(f"Index out of range: {key}") from exc
        raise ExpressionError(f"Cannot access {key!r} on {type(target).__name__}")


def build_context(resource: Mapping[str, Any], now: datetime) -> dict[str, Any]:
    """Names visible to an expression evaluated against ``resource``."""
    labels = resource.get("labels") or []
    references = resource.get("references") or {}
    return {
        "resource": resource,
        "milestone": resource.get("milestone"),
        "labels": [lbl.get("name") if isinstance(lbl, Mapping) else lbl for lbl in labels],
        "author": resource.get("author"),
        "state": resource.get("state"),
        "full_reference": references.get("full") if isinstance(references, Mapping) else None,
        "now": now,
        "hook_payload": resource.get("hook_payload"),
    }


__all__ = [
    "Clock",
    "ExpressionEvaluator",
    "MAX_NODES",
    "build_context",
    "parse_timestamp",
    "utcnow",
]

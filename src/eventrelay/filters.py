"""Per-subscription event filters: sampling and payload conditions.

Sampling is deterministic: the decision for a given (event, subscription)
pair is derived from a hash of their ids, so the same logical delivery is
never re-sampled differently.

Conditions are evaluated by a pluggable ``ConditionEvaluator``. The default
``SimpleConditionEvaluator`` understands clauses joined by ``and``:

    amount >= 1000 and currency == "usd" and customer.vip
    status != "draft" and not archived

Each clause is a dotted payload path, optionally compared with a JSON
literal (single-quoted strings are accepted) using ``== != > >= < <=``.
A bare path tests truthiness; ``not path`` negates it.
"""

from __future__ import annotations

import hashlib
import json
import logging
import operator
import re
from collections.abc import Callable
from typing import Any, Protocol

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

_MISSING = object()

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
}

_COMPARISON = re.compile(r"^([A-Za-z_][\w.]*)\s*(==|!=|>=|<=|>|<)\s*(.+)$")
_PATH = re.compile(r"^(not\s+)?([A-Za-z_][\w.]*)$")


def sample_admits(rate: float | None, event_id: str, subscription_id: str) -> bool:
    """Decide whether a sampled subscription receives this event.

    ``None`` or ``1.0`` admits everything and ``0.0`` admits nothing.
    """
    if rate is None or rate >= 1.0:
        return True
    if rate <= 0.0:
        return False
    digest = hashlib.sha256(f"{event_id}:{subscription_id}".encode()).digest()
    bucket = int.from_bytes(digest[:8], "big") / 2**64
    return bucket < rate


class ConditionEvaluator(Protocol):
    """Decides whether a payload satisfies a condition expression."""

    def validate(self, expression: str) -> None:
        """Raise ValidationError if the expression cannot be evaluated."""
        ...

    def evaluate(self, expression: str, payload: Any) -> bool:
        """Return True if the payload satisfies the expression."""
        ...


def _resolve(payload: Any, path: str) -> Any:
    current = payload
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return _MISSING
    return current


def _parse_literal(raw: str) -> Any:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1]
    return json.loads(raw)


class SimpleConditionEvaluator:
    """Evaluates ``path op literal`` clauses joined by ``and``."""

    def _clauses(self, expression: str) -> list[str]:
        clauses = [c.strip() for c in re.split(r"\s+and\s+", expression.strip())]
        if not clauses or any(not c for c in clauses):
            raise ValidationError("filters.condition", f"empty clause in {expression!r}")
        return clauses

    def validate(self, expression: str) -> None:
        for clause in self._clauses(expression):
            comparison = _COMPARISON.match(clause)
            if comparison:
                try:
                    _parse_literal(comparison.group(3))
                except ValueError as e:
                    raise ValidationError(
                        "filters.condition", f"invalid literal in {clause!r}: {e}"
                    ) from e
            elif not _PATH.match(clause):
                raise ValidationError("filters.condition", f"cannot parse clause {clause!r}")

    def _evaluate_clause(self, clause: str, payload: Any) -> bool:
        comparison = _COMPARISON.match(clause)
        if comparison:
            path, op, raw = comparison.groups()
            actual = _resolve(payload, path)
            expected = _parse_literal(raw)
            if actual is _MISSING:
                return op == "!="
            try:
                return bool(_OPERATORS[op](actual, expected))
            except TypeError:
                return False

        negated, path = _PATH.match(clause).groups()  # type: ignore[union-attr]
        value = _resolve(payload, path)
        truthy = value is not _MISSING and bool(value)
        return not truthy if negated else truthy

    def evaluate(self, expression: str, payload: Any) -> bool:
        self.validate(expression)
        return all(self._evaluate_clause(c, payload) for c in self._clauses(expression))


class PredicateEvaluator:
    """Adapts a plain callable ``(expression, payload) -> bool`` to an evaluator."""

    def __init__(self, predicate: Callable[[str, Any], bool]) -> None:
        self._predicate = predicate

    def validate(self, expression: str) -> None:
        if not expression.strip():
            raise ValidationError("filters.condition", "condition must not be empty")

    def evaluate(self, expression: str, payload: Any) -> bool:
        return bool(self._predicate(expression, payload))


def condition_admits(
    evaluator: ConditionEvaluator,
    expression: str | None,
    payload: Any,
) -> bool:
    """Evaluate a condition, treating evaluation errors as a non-match."""
    if not expression:
        return True
    try:
        return evaluator.evaluate(expression, payload)
    except Exception as e:
        logger.warning("Condition %r could not be evaluated, dropping event: %s", expression, e)
        return False

"""Event-type pattern matching for subscriptions.

Event types and patterns are dot-segmented (``invoice.paid``). Rules:

- ``*`` or ``**`` as the entire pattern matches every event type.
- Otherwise the pattern and event type must have the same number of
  segments. A ``*`` inside a segment matches any run of non-dot characters
  in that position, so ``invoice.*`` matches ``invoice.paid`` but not
  ``invoice.paid.partial``, and ``payment_*.created`` matches
  ``payment_intent.created``.
- Matching is case-sensitive. There is no cross-segment wildcard.

``matches`` is total: malformed patterns simply match nothing.
``validate_pattern`` is the strict check applied when subscriptions are saved.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache

from .exceptions import ValidationError

MATCH_ALL = frozenset({"*", "**"})
WILDCARD_PREFIX = "*"

_SEGMENT = re.compile(r"^[A-Za-z0-9_\-*]+$")


def _segments(value: str) -> list[str] | None:
    if not value:
        return None
    parts = value.split(".")
    if any(not p for p in parts):
        return None
    return parts


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str] | None:
    parts = _segments(pattern)
    if parts is None or any("**" in p or not _SEGMENT.match(p) for p in parts):
        return None

    regex_parts = []
    for part in parts:
        if part == "*":
            regex_parts.append(r"[^.]+")
        else:
            regex_parts.append(r"[^.]*".join(re.escape(piece) for piece in part.split("*")))
    return re.compile(r"\.".join(regex_parts))


def matches(event_type: str, pattern: str) -> bool:
    """Return True if ``pattern`` selects ``event_type``."""
    if not event_type or not isinstance(event_type, str) or not isinstance(pattern, str):
        return False
    if pattern in MATCH_ALL:
        return True
    compiled = _compile(pattern)
    if compiled is None:
        return False
    return compiled.fullmatch(event_type) is not None


def matches_any(event_type: str, patterns: Iterable[str]) -> bool:
    """Return True if any pattern selects ``event_type``."""
    return any(matches(event_type, p) for p in patterns)


def validate_pattern(pattern: str) -> str:
    """Check a subscription pattern and return it stripped.

    Raises:
        ValidationError: If the pattern cannot match anything meaningful.
    """
    candidate = pattern.strip() if isinstance(pattern, str) else ""
    if candidate in MATCH_ALL:
        return candidate
    if _compile(candidate) is None:
        raise ValidationError(
            "events",
            f"invalid event pattern {pattern!r}: use dot-separated segments, "
            "'*' within a segment, or '*' alone to match everything",
        )
    return candidate


def pattern_prefix(pattern: str) -> str:
    """Leading segment used to index a pattern, or ``*`` if it is wildcarded."""
    if pattern in MATCH_ALL:
        return WILDCARD_PREFIX
    head = pattern.split(".", 1)[0]
    return WILDCARD_PREFIX if "*" in head else head


def event_prefixes(event_type: str) -> tuple[str, str]:
    """Index keys whose patterns may select ``event_type``."""
    return event_type.split(".", 1)[0], WILDCARD_PREFIX

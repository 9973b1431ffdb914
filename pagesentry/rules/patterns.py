"""Compiled pattern cache and load-time regex validation."""

from __future__ import annotations

import logging
import re
from typing import Optional, Pattern

from ..errors import EvaluationError

logger = logging.getLogger(__name__)

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
}
# Flags that only make sense in browser regex engines.
_IGNORED_FLAGS = {"g", "u", "y", "d"}

# Named groups written for browser engines: (?<name>...)
_JS_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")

# A group that contains a quantifier and is itself quantified: (a+)+, (\w*\s?)*, (.+){2,}
_NESTED_QUANTIFIER = re.compile(r"\((?:[^()\\]|\\.)*[+*](?:[^()\\]|\\.)*\)(?:[+*]|\{\d*,\d*\})")
# Quantified alternation whose branches overlap trivially: (a|a)+, (.|\s)*
_OVERLAPPING_ALTERNATION = re.compile(r"\(\s*(?:\.|\\[sSwWdD])\s*\|\s*(?:\.|\\[sSwWdD])\s*\)[+*]")


def parse_flags(flags: str) -> int:
    """Translate a flag string (``"im"``) into ``re`` flags."""
    value = 0
    for char in (flags or "").lower():
        if char in _FLAG_MAP:
            value |= _FLAG_MAP[char]
        elif char in _IGNORED_FLAGS:
            continue
        else:
            raise EvaluationError(f"Unsupported regex flag '{char}'")
    return value


def translate_pattern(pattern: str) -> str:
    """Rewrite browser-only syntax into its Python equivalent."""
    return _JS_NAMED_GROUP.sub("(?P<", pattern)


def find_backtracking_risk(pattern: str) -> Optional[str]:
    """Return a description of a catastrophic-backtracking shape, if any."""
    if _NESTED_QUANTIFIER.search(pattern or ""):
        return "nested quantifier"
    if _OVERLAPPING_ALTERNATION.search(pattern or ""):
        return "quantified overlapping alternation"
    return None


class PatternCache:
    """
    Compiled regexes keyed by ``(pattern, flags)``.

    Compile failures are cached too, so an invalid pattern is reported once
    and never recompiled for the lifetime of the session.
    """

    def __init__(self) -> None:
        self._compiled: dict[tuple[str, str], Pattern[str]] = {}
        self._failed: dict[tuple[str, str], str] = {}
        self.compile_count = 0

    def __len__(self) -> int:
        return len(self._compiled)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._compiled or key in self._failed

    def get(self, pattern: str, flags: str = "") -> Pattern[str]:
        key = (pattern, flags or "")
        compiled = self._compiled.get(key)
        if compiled is not None:
            return compiled

        error = self._failed.get(key)
        if error is not None:
            raise EvaluationError(error)

        self.compile_count += 1
        try:
            compiled = re.compile(translate_pattern(pattern), parse_flags(flags))
        except (re.error, EvaluationError) as exc:
            message = f"Invalid pattern {pattern!r}: {exc}"
            self._failed[key] = message
            logger.warning("%s", message)
            raise EvaluationError(message) from exc

        self._compiled[key] = compiled
        return compiled

    def warm(self, patterns: list[tuple[str, str]]) -> list[str]:
        """Compile every pattern up front; return the error messages."""
        errors: list[str] = []
        for pattern, flags in patterns:
            try:
                self.get(pattern, flags)
            except EvaluationError as exc:
                errors.append(str(exc))
        return errors

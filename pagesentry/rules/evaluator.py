"""Indicator evaluation.

Every strategy other than ``RegexMatch`` is a linear substring scan; regexes
only run when no cheaper check settled the result, and always come from the
session's pattern cache.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from ..errors import EvaluationError
from ..metrics import metrics
from ..utils.domains import extract_hostname
from .models import (
    AllowlistGated,
    Indicator,
    MatchStrategy,
    RegexMatch,
    SubstringAll,
    SubstringAllExcept,
    SubstringOrRegex,
    SubstringWithExclusions,
)
from .store import RuleStore

if TYPE_CHECKING:
    from ..page import PageContent

logger = logging.getLogger(__name__)

SNIPPET_RADIUS = 40


@dataclass
class EvaluationOutcome:
    """Result of evaluating one indicator against one page."""

    matched: bool
    detail: str = ""
    snippet: str = ""
    error: Optional[str] = None
    elapsed_ms: float = 0.0


def _snippet(text: str, start: int, end: int) -> str:
    lo = max(0, start - SNIPPET_RADIUS)
    hi = min(len(text), end + SNIPPET_RADIUS)
    return " ".join(text[lo:hi].split())


class RuleEvaluator:
    """Tests page content against indicators from a RuleStore."""

    def __init__(
        self,
        store: RuleStore,
        indicator_budget_ms: float = 250.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.indicator_budget_ms = indicator_budget_ms
        self._clock = clock or (lambda: time.monotonic() * 1000.0)
        self._lowered: tuple[Optional[str], str] = (None, "")

    def _lower(self, text: str) -> str:
        # Same haystack is scanned by many indicators in a row.
        cached_source, cached_lower = self._lowered
        if cached_source is text:
            return cached_lower
        lowered = text.lower()
        self._lowered = (text, lowered)
        return lowered

    def evaluate(
        self,
        indicator: Indicator,
        content: PageContent,
        url: Optional[str] = None,
    ) -> EvaluationOutcome:
        """Evaluate one indicator. Never raises; failures are non-matches."""
        started = self._clock()
        try:
            text = content.field_for(indicator.applies_to, url) or ""
            matched, detail, snippet = self._dispatch(indicator.strategy, text)
            outcome = EvaluationOutcome(matched=matched, detail=detail, snippet=snippet)
        except EvaluationError as exc:
            logger.warning("Indicator %s could not be evaluated: %s", indicator.id, exc)
            metrics.record_indicator_error(indicator.id)
            outcome = EvaluationOutcome(matched=False, detail="evaluation error", error=str(exc))
        except Exception as exc:  # malformed content must never abort a scan
            logger.warning("Indicator %s failed unexpectedly: %s", indicator.id, exc)
            metrics.record_indicator_error(indicator.id)
            outcome = EvaluationOutcome(matched=False, detail="evaluation error", error=str(exc))

        outcome.elapsed_ms = max(0.0, self._clock() - started)
        slow = outcome.elapsed_ms > self.indicator_budget_ms
        if slow:
            logger.warning(
                "Indicator %s took %.0fms (budget %.0fms)",
                indicator.id,
                outcome.elapsed_ms,
                self.indicator_budget_ms,
            )
        metrics.record_indicator_timing(indicator.id, outcome.elapsed_ms, slow)

        if outcome.matched:
            metrics.record_indicator_hit(indicator.id, extract_hostname(url or content.url))
        return outcome

    def _dispatch(self, strategy: MatchStrategy, text: str) -> tuple[bool, str, str]:
        if isinstance(strategy, SubstringAll):
            return self._substring_all(strategy, text)
        if isinstance(strategy, SubstringAllExcept):
            return self._substring_all_except(strategy, text)
        if isinstance(strategy, SubstringOrRegex):
            return self._substring_or_regex(strategy, text)
        if isinstance(strategy, SubstringWithExclusions):
            return self._substring_with_exclusions(strategy, text)
        if isinstance(strategy, AllowlistGated):
            return self._allowlist_gated(strategy, text)
        if isinstance(strategy, RegexMatch):
            return self._regex(strategy.pattern, strategy.flags, text)
        raise EvaluationError(f"Unsupported match strategy {type(strategy).__name__}")

    def _find(self, lowered: str, text: str, term: str) -> Optional[str]:
        index = lowered.find(term)
        if index < 0:
            return None
        return _snippet(text, index, index + len(term))

    def _substring_all(self, strategy: SubstringAll, text: str) -> tuple[bool, str, str]:
        lowered = self._lower(text)
        snippet = ""
        for term in strategy.terms:
            found = self._find(lowered, text, term)
            if found is None:
                return False, f"missing required term '{term}'", ""
            snippet = snippet or found
        return True, f"all {len(strategy.terms)} required terms present", snippet

    def _substring_all_except(
        self, strategy: SubstringAllExcept, text: str
    ) -> tuple[bool, str, str]:
        matched, detail, snippet = self._substring_all(SubstringAll(strategy.terms), text)
        if not matched:
            return False, detail, ""
        lowered = self._lower(text)
        for term in strategy.excluded:
            if term in lowered:
                return False, f"excluded term '{term}' present", ""
        return True, f"{detail}, no excluded terms", snippet

    def _substring_or_regex(self, strategy: SubstringOrRegex, text: str) -> tuple[bool, str, str]:
        lowered = self._lower(text)
        for term in strategy.terms:
            found = self._find(lowered, text, term)
            if found is not None:
                return True, f"substring '{term}' present", found
        return self._regex(strategy.fallback_pattern, strategy.flags, text)

    def _substring_with_exclusions(
        self, strategy: SubstringWithExclusions, text: str
    ) -> tuple[bool, str, str]:
        lowered = self._lower(text)
        for term in strategy.exclude_if_any:
            if term in lowered:
                return False, f"excluded term '{term}' present", ""

        if strategy.groups:
            snippet = ""
            for position, group in enumerate(strategy.groups):
                hit = next((term for term in group if term in lowered), None)
                if hit is None:
                    return False, f"no term from group {position + 1} present", ""
                snippet = snippet or (self._find(lowered, text, hit) or "")
            return True, f"terms from all {len(strategy.groups)} groups present", snippet

        for term in strategy.match_any:
            found = self._find(lowered, text, term)
            if found is not None:
                return True, f"term '{term}' present", found
        return False, "no listed term present", ""

    def _allowlist_gated(self, strategy: AllowlistGated, text: str) -> tuple[bool, str, str]:
        lowered = self._lower(text)
        for entry in strategy.allowlist:
            if entry in lowered:
                return False, f"allowlisted '{entry}' present", ""
        return self._regex(strategy.inner_pattern, strategy.flags, text)

    def _regex(self, pattern: str, flags: str, text: str) -> tuple[bool, str, str]:
        compiled = self.store.pattern_cache.get(pattern, flags)
        match = compiled.search(text)
        if not match:
            return False, "pattern not found", ""
        return True, "pattern matched", _snippet(text, match.start(), match.end())

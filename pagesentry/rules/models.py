"""Rule store data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Severity(str, Enum):
    """Severity of an indicator or squatting verdict."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def highest(cls, *values: Optional["Severity"]) -> Optional["Severity"]:
        present = [v for v in values if v is not None]
        if not present:
            return None
        return max(present, key=lambda s: s.rank)


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Action(str, Enum):
    """Response applied to a page."""

    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"


class AppliesTo(str, Enum):
    """Which part of the page an indicator inspects."""

    PAGE_SOURCE = "page_source"  # Raw HTML
    PAGE_TEXT = "page_text"  # Visible text only
    URL = "url"
    TITLE = "title"


class DomainCategory(str, Enum):
    """Category of a domain pattern."""

    TRUSTED_LOGIN = "trusted_login"  # Legitimate sign-in origins
    GENERAL_TRUSTED = "general_trusted"  # Trusted, but not a sign-in surface
    EXCLUSION = "exclusion"  # Never scanned (user/admin allow-list)
    PROTECTED = "protected"  # Brands checked for squatting


@dataclass(frozen=True)
class RegexMatch:
    pattern: str
    flags: str = "i"


@dataclass(frozen=True)
class SubstringAll:
    terms: tuple[str, ...]


@dataclass(frozen=True)
class SubstringAllExcept:
    terms: tuple[str, ...]
    excluded: tuple[str, ...]


@dataclass(frozen=True)
class SubstringOrRegex:
    terms: tuple[str, ...]
    fallback_pattern: str
    flags: str = "i"


@dataclass(frozen=True)
class SubstringWithExclusions:
    """Exclusion-first substring match.

    Exactly one of ``match_any`` or ``groups`` is set. With ``groups`` every
    group must contribute at least one term.
    """

    exclude_if_any: tuple[str, ...] = ()
    match_any: tuple[str, ...] = ()
    groups: tuple[tuple[str, ...], ...] = ()


@dataclass(frozen=True)
class AllowlistGated:
    allowlist: tuple[str, ...]
    inner_pattern: str
    flags: str = "i"


MatchStrategy = Union[
    RegexMatch,
    SubstringAll,
    SubstringAllExcept,
    SubstringOrRegex,
    SubstringWithExclusions,
    AllowlistGated,
]

STRATEGY_TYPES: tuple[type, ...] = (
    RegexMatch,
    SubstringAll,
    SubstringAllExcept,
    SubstringOrRegex,
    SubstringWithExclusions,
    AllowlistGated,
)


def strategy_patterns(strategy: MatchStrategy) -> list[tuple[str, str]]:
    """Return the ``(pattern, flags)`` regexes a strategy may execute."""
    if isinstance(strategy, RegexMatch):
        return [(strategy.pattern, strategy.flags)]
    if isinstance(strategy, SubstringOrRegex):
        return [(strategy.fallback_pattern, strategy.flags)]
    if isinstance(strategy, AllowlistGated):
        return [(strategy.inner_pattern, strategy.flags)]
    return []


def evaluation_cost(strategy: MatchStrategy) -> int:
    """Rank for evaluation order: substring-only 0, regex fallback 1, pure regex 2."""
    if isinstance(strategy, RegexMatch):
        return 2
    if isinstance(strategy, (SubstringOrRegex, AllowlistGated)):
        return 1
    return 0


@dataclass(frozen=True)
class Indicator:
    """One declarative detection rule."""

    id: str
    severity: Severity
    action: Action
    strategy: MatchStrategy
    applies_to: AppliesTo = AppliesTo.PAGE_SOURCE
    description: str = ""
    category: str = ""


@dataclass(frozen=True)
class DomainPattern:
    """A host pattern: literal, ``*.``-wildcard or ``^anchored$`` regex."""

    pattern: str
    category: DomainCategory


@dataclass
class IndicatorMatch:
    """A matched indicator plus the text that triggered it."""

    indicator: Indicator
    detail: str = ""
    snippet: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.indicator.id,
            "severity": self.indicator.severity.value,
            "action": self.indicator.action.value,
            "description": self.indicator.description,
            "detail": self.detail,
            "snippet": self.snippet,
        }


@dataclass
class SquattingSettings:
    """Domain squatting detector configuration."""

    enabled: bool = True
    protected_domains: list[str] = field(default_factory=list)
    deviation_threshold: int = 2
    levenshtein: bool = True
    homoglyph: bool = True
    typosquat: bool = True
    combosquat: bool = True
    ranking: str = "first"  # first | best

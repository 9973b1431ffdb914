"""Immutable per-session rule snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field

from .models import DomainCategory, DomainPattern, Indicator, SquattingSettings
from .patterns import PatternCache


@dataclass(frozen=True)
class RuleStore:
    """Indicators and domain patterns loaded once per scan session."""

    indicators: tuple[Indicator, ...]
    domain_patterns: tuple[DomainPattern, ...]
    squatting: SquattingSettings
    pattern_cache: PatternCache = field(default_factory=PatternCache, compare=False)
    version: str = "1.0"
    config_errors: tuple[str, ...] = ()
    risky_patterns: tuple[tuple[str, str], ...] = ()  # (indicator id, reason)

    def patterns_for(self, category: DomainCategory) -> list[DomainPattern]:
        return [p for p in self.domain_patterns if p.category == category]

    @property
    def protected_domains(self) -> list[str]:
        return list(self.squatting.protected_domains)

    def indicator(self, indicator_id: str) -> Indicator | None:
        for indicator in self.indicators:
            if indicator.id == indicator_id:
                return indicator
        return None

    def summary(self) -> dict:
        counts = {category.value: 0 for category in DomainCategory}
        for pattern in self.domain_patterns:
            counts[pattern.category.value] += 1
        return {
            "version": self.version,
            "indicators": len(self.indicators),
            "domain_patterns": counts,
            "compiled_patterns": len(self.pattern_cache),
            "config_errors": len(self.config_errors),
            "risky_patterns": len(self.risky_patterns),
        }

"""Detection result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..rules.models import Action, IndicatorMatch, Severity
from .squatting import SquattingVerdict
from .trust import TrustClassification


@dataclass(frozen=True)
class Outcome:
    """Aggregate severity and the action it maps to."""

    severity: Optional[Severity]
    action: Action


@dataclass
class DetectionResult:
    """Output of one scan pass, handed to the presentation layer."""

    url: str
    action: Action = Action.ALLOW
    severity: Optional[Severity] = None
    matched_indicators: list[IndicatorMatch] = field(default_factory=list)
    squatting_verdict: Optional[SquattingVerdict] = None
    trust: Optional[TrustClassification] = None
    partial: bool = False
    evaluated: int = 0
    total_indicators: int = 0
    reasons: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    scan_number: int = 0
    trigger: str = ""
    elapsed_ms: float = 0.0

    @property
    def matched_ids(self) -> set[str]:
        return {m.indicator.id for m in self.matched_indicators}

    @property
    def is_threat(self) -> bool:
        return self.action != Action.ALLOW

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "action": self.action.value,
            "severity": self.severity.value if self.severity else None,
            "matched_indicators": [m.to_dict() for m in self.matched_indicators],
            "squatting": self.squatting_verdict.to_dict() if self.squatting_verdict else None,
            "trust": self.trust.to_dict() if self.trust else None,
            "partial": self.partial,
            "evaluated": self.evaluated,
            "total_indicators": self.total_indicators,
            "reasons": list(self.reasons),
            "errors": list(self.errors),
            "scan_number": self.scan_number,
            "trigger": self.trigger,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }

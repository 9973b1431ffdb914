"""Outcome aggregation."""

from __future__ import annotations

from typing import Iterable, Optional

from ..rules.models import Action, IndicatorMatch, Severity
from .models import DetectionResult, Outcome
from .squatting import SquattingVerdict

WARN_SQUATTING_SEVERITIES = {Severity.HIGH, Severity.MEDIUM}


class OutcomeAggregator:
    """Combines indicator matches and a squatting verdict into one action."""

    def aggregate(
        self,
        indicator_matches: Iterable[IndicatorMatch],
        squatting_verdict: Optional[SquattingVerdict] = None,
    ) -> Outcome:
        matches = list(indicator_matches or [])
        severity = Severity.highest(
            *(m.indicator.severity for m in matches),
            squatting_verdict.severity if squatting_verdict else None,
        )

        if any(m.indicator.action == Action.BLOCK for m in matches):
            return Outcome(severity, Action.BLOCK)
        if squatting_verdict and squatting_verdict.severity == Severity.CRITICAL:
            return Outcome(severity, Action.BLOCK)

        if any(m.indicator.action == Action.WARN for m in matches):
            return Outcome(severity, Action.WARN)
        if squatting_verdict and squatting_verdict.severity in WARN_SQUATTING_SEVERITIES:
            return Outcome(severity, Action.WARN)

        return Outcome(severity, Action.ALLOW)

    def apply(self, result: DetectionResult) -> DetectionResult:
        """Fill a result's severity, action and reasons from its findings."""
        outcome = self.aggregate(result.matched_indicators, result.squatting_verdict)
        result.severity = outcome.severity
        result.action = outcome.action

        reasons = [
            f"{m.indicator.id} ({m.indicator.severity.value}/{m.indicator.action.value}): "
            f"{m.indicator.description or m.detail}"
            for m in result.matched_indicators
        ]
        verdict = result.squatting_verdict
        if verdict:
            reasons.append(
                f"Domain squatting on {verdict.protected_domain} "
                f"({', '.join(verdict.technique_names)}; {verdict.severity.value}, "
                f"confidence {verdict.confidence:.2f})"
            )
        result.reasons = reasons
        return result

"""Analyzer modules for PageSentry."""

from .aggregator import OutcomeAggregator
from .models import DetectionResult, Outcome
from .squatting import DomainSquattingDetector, SquattingVerdict, TechniqueResult
from .trust import DomainTrustClassifier, TrustClassification

__all__ = [
    "OutcomeAggregator",
    "DetectionResult",
    "Outcome",
    "DomainSquattingDetector",
    "SquattingVerdict",
    "TechniqueResult",
    "DomainTrustClassifier",
    "TrustClassification",
]

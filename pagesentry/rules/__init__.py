"""Rule store, loading and evaluation."""

from .models import (
    Action,
    AppliesTo,
    DomainCategory,
    DomainPattern,
    Indicator,
    IndicatorMatch,
    Severity,
    SquattingSettings,
)
from .store import RuleStore
from .loader import FileRuleSource, StaticRuleSource, build_rule_store, load_rule_store
from .evaluator import EvaluationOutcome, RuleEvaluator

__all__ = [
    "Action",
    "AppliesTo",
    "DomainCategory",
    "DomainPattern",
    "Indicator",
    "IndicatorMatch",
    "Severity",
    "SquattingSettings",
    "RuleStore",
    "FileRuleSource",
    "StaticRuleSource",
    "build_rule_store",
    "load_rule_store",
    "EvaluationOutcome",
    "RuleEvaluator",
]

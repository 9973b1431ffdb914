"""Domain squatting detection.

Compares the base label of the active hostname with each protected domain
using four independent techniques: edit distance, homoglyph folding, typo
patterns and combination words.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from rapidfuzz.distance import Levenshtein

from ..rules.models import Severity, SquattingSettings
from ..utils.domains import base_label
from .homoglyphs import decode_punycode, has_confusables, normalize_homoglyphs

logger = logging.getLogger(__name__)

# Prefixes/suffixes that phishing kits wrap around brand names.
COMBO_VOCABULARY = (
    "secure",
    "login",
    "account",
    "verify",
    "support",
    "help",
    "my",
    "auth",
    "sso",
    "signin",
    "app",
    "portal",
    "online",
    "web",
    "mobile",
    "service",
    "official",
    "verified",
    "safe",
)

COMBO_SEPARATORS = ("-", "_")

KEYBOARD_ADJACENT: dict[str, str] = {
    "q": "wa",
    "w": "qesa",
    "e": "wrds",
    "r": "etfd",
    "t": "rygf",
    "y": "tuhg",
    "u": "yijh",
    "i": "uokj",
    "o": "iplk",
    "p": "ol",
    "a": "qwsz",
    "s": "awdxz",
    "d": "sefcx",
    "f": "drgvc",
    "g": "fthbv",
    "h": "gyjnb",
    "j": "hukmn",
    "k": "jilm",
    "l": "kop",
    "z": "asx",
    "x": "zsdc",
    "c": "xdfv",
    "v": "cfgb",
    "b": "vghn",
    "n": "bhjm",
    "m": "njk",
}

TYPO_CONFIDENCE = {
    "character_swap": 0.9,
    "character_omission": 0.85,
    "character_duplication": 0.85,
    "adjacent_key_substitution": 0.8,
}


@dataclass
class TechniqueResult:
    """One squatting technique that fired."""

    technique: str
    description: str
    confidence: float
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "technique": self.technique,
            "description": self.description,
            "confidence": round(self.confidence, 4),
            **self.details,
        }


@dataclass
class SquattingVerdict:
    """Aggregated squatting result for one test/protected domain pair."""

    test_domain: str
    protected_domain: str
    techniques: list[TechniqueResult]
    severity: Severity
    confidence: float

    @property
    def technique_names(self) -> list[str]:
        return [t.technique for t in self.techniques]

    def to_dict(self) -> dict:
        return {
            "detected": True,
            "test_domain": self.test_domain,
            "protected_domain": self.protected_domain,
            "techniques": [t.to_dict() for t in self.techniques],
            "severity": self.severity.value,
            "confidence": round(self.confidence, 4),
        }


def calculate_severity(techniques: list[TechniqueResult]) -> Severity:
    """Severity follows the single most confident technique."""
    max_confidence = max(t.confidence for t in techniques)
    if max_confidence >= 0.9:
        return Severity.CRITICAL
    if max_confidence >= 0.8:
        return Severity.HIGH
    if max_confidence >= 0.6:
        return Severity.MEDIUM
    return Severity.LOW


def calculate_confidence(techniques: list[TechniqueResult]) -> float:
    """Mean technique confidence, boosted when several techniques agree."""
    if not techniques:
        return 0.0
    average = sum(t.confidence for t in techniques) / len(techniques)
    bonus = 0.1 if len(techniques) > 1 else 0.0
    return min(0.99, average + bonus)


class DomainSquattingDetector:
    """Detects lookalike domains impersonating protected brands."""

    def __init__(self, settings: Optional[SquattingSettings] = None):
        self.settings = settings or SquattingSettings()
        self._protected: list[tuple[str, str]] = []
        for domain in self.settings.protected_domains:
            label = base_label(domain)
            if label:
                self._protected.append((domain, label))
        logger.debug(
            "DomainSquattingDetector ready: %s protected domains, threshold %s, ranking %s",
            len(self._protected),
            self.settings.deviation_threshold,
            self.settings.ranking,
        )

    @property
    def enabled(self) -> bool:
        return self.settings.enabled and bool(self._protected)

    @property
    def threshold(self) -> int:
        return self.settings.deviation_threshold

    def check(self, test_domain: str) -> Optional[SquattingVerdict]:
        """Check a hostname/URL against every protected domain."""
        if not self.enabled or not test_domain:
            return None

        test_base = decode_punycode(base_label(test_domain))
        if not test_base:
            return None

        best: Optional[SquattingVerdict] = None
        for protected_domain, protected_base in self._protected:
            if test_base == protected_base:
                continue

            techniques = self.run_techniques(test_base, protected_base)
            if not techniques:
                continue

            verdict = SquattingVerdict(
                test_domain=test_domain,
                protected_domain=protected_domain,
                techniques=techniques,
                severity=calculate_severity(techniques),
                confidence=calculate_confidence(techniques),
            )
            if self.settings.ranking != "best":
                return verdict
            if best is None or verdict.confidence > best.confidence:
                best = verdict

        return best

    def run_techniques(self, test_base: str, protected_base: str) -> list[TechniqueResult]:
        """Run every enabled technique on a pair of base labels."""
        techniques: list[TechniqueResult] = []
        checks = (
            (self.settings.levenshtein, self.detect_levenshtein),
            (self.settings.homoglyph, self.detect_homoglyph),
            (self.settings.typosquat, self.detect_typosquat),
            (self.settings.combosquat, self.detect_combosquat),
        )
        for enabled, check in checks:
            if not enabled:
                continue
            result = check(test_base, protected_base)
            if result:
                techniques.append(result)
        return techniques

    def detect_levenshtein(self, test: str, protected: str) -> Optional[TechniqueResult]:
        distance = Levenshtein.distance(test, protected)
        if 0 < distance <= self.threshold:
            return TechniqueResult(
                technique="levenshtein",
                description=f"Domain differs by {distance} character(s) from protected domain",
                confidence=1 - (distance / self.threshold),
                details={"distance": distance},
            )
        return None

    def detect_homoglyph(self, test: str, protected: str) -> Optional[TechniqueResult]:
        if not has_confusables(test):
            return None
        normalized = normalize_homoglyphs(test)

        if normalized == protected:
            return TechniqueResult(
                technique="homoglyph",
                description="Domain uses confusable characters (homoglyphs) to mimic protected domain",
                confidence=0.95,
                details={"original": test, "normalized": normalized},
            )

        distance = Levenshtein.distance(normalized, protected)
        if 0 < distance <= self.threshold:
            return TechniqueResult(
                technique="homoglyph",
                description="Domain uses confusable characters and differs slightly from protected domain",
                confidence=0.85 - (distance * 0.1),
                details={"original": test, "normalized": normalized, "distance": distance},
            )
        return None

    def detect_typosquat(self, test: str, protected: str) -> Optional[TechniqueResult]:
        length = len(protected)

        for i in range(length - 1):
            swapped = protected[:i] + protected[i + 1] + protected[i] + protected[i + 2:]
            if swapped == test and swapped != protected:
                return self._typo("character_swap", "Domain has swapped adjacent characters", i)

        for i in range(length):
            if protected[:i] + protected[i + 1:] == test:
                return self._typo("character_omission", "Domain is missing a character", i)

        for i in range(length):
            if protected[: i + 1] + protected[i] + protected[i + 1:] == test:
                return self._typo("character_duplication", "Domain has a duplicated character", i)

        for i, char in enumerate(protected):
            for adjacent in KEYBOARD_ADJACENT.get(char, ""):
                if protected[:i] + adjacent + protected[i + 1:] == test:
                    return self._typo(
                        "adjacent_key_substitution",
                        "Domain has keyboard-adjacent character substitution",
                        i,
                        original=char,
                        substituted=adjacent,
                    )
        return None

    @staticmethod
    def _typo(pattern: str, description: str, position: int, **extra) -> TechniqueResult:
        return TechniqueResult(
            technique="typosquat",
            description=description,
            confidence=TYPO_CONFIDENCE[pattern],
            details={"pattern": pattern, "position": position, **extra},
        )

    def detect_combosquat(self, test: str, protected: str) -> Optional[TechniqueResult]:
        index = test.find(protected)
        if index < 0 or test == protected:
            return None

        prefix = test[:index]
        suffix = test[index + len(protected):]
        details = {"prefix": prefix, "suffix": suffix}

        if any(word in prefix or word in suffix for word in COMBO_VOCABULARY):
            return TechniqueResult(
                technique="combosquat",
                description="Domain adds suspicious prefix/suffix to protected domain",
                confidence=0.9,
                details={"pattern": "common_combo", **details},
            )

        for separator in COMBO_SEPARATORS:
            if (prefix and prefix.endswith(separator)) or (suffix and suffix.startswith(separator)):
                return TechniqueResult(
                    technique="combosquat",
                    description=f"Domain adds text with separator '{separator}' to protected domain",
                    confidence=0.75,
                    details={"pattern": "separator_combo", "separator": separator, **details},
                )

        return TechniqueResult(
            technique="combosquat",
            description="Domain adds prefix/suffix to protected domain",
            confidence=0.7,
            details={"pattern": "generic_combo", **details},
        )

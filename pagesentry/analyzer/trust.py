"""Domain trust classification."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Pattern

from ..rules.models import DomainCategory, DomainPattern
from ..rules.patterns import translate_pattern
from ..rules.store import RuleStore
from ..utils.domains import split_origin

logger = logging.getLogger(__name__)

TRUST_CATEGORIES = (
    DomainCategory.TRUSTED_LOGIN,
    DomainCategory.GENERAL_TRUSTED,
    DomainCategory.EXCLUSION,
)


@dataclass
class TrustClassification:
    """Which trust categories the active URL belongs to."""

    url: str
    origin: str
    trusted_login: bool = False
    general_trusted: bool = False
    excluded: bool = False
    matched: dict[str, str] = field(default_factory=dict)

    @property
    def decision(self) -> Optional[str]:
        """Highest-precedence category: trusted_login > general_trusted > excluded."""
        if self.trusted_login:
            return DomainCategory.TRUSTED_LOGIN.value
        if self.general_trusted:
            return DomainCategory.GENERAL_TRUSTED.value
        if self.excluded:
            return DomainCategory.EXCLUSION.value
        return None

    @property
    def short_circuits(self) -> bool:
        """Whether indicator/squatting evaluation is skipped for this URL."""
        return self.trusted_login or self.excluded

    def to_dict(self) -> dict:
        return {
            "origin": self.origin,
            "trusted_login": self.trusted_login,
            "general_trusted": self.general_trusted,
            "excluded": self.excluded,
            "matched": dict(self.matched),
        }


class _CompiledCategory:
    """Pre-split patterns of one category: literal hosts, wildcards, regexes."""

    def __init__(self, patterns: list[DomainPattern]):
        self.hosts: set[str] = set()
        self.wildcards: list[str] = []
        self.regexes: list[tuple[str, Pattern[str]]] = []
        for entry in patterns:
            value = entry.pattern
            if value.startswith("^"):
                try:
                    self.regexes.append((value, re.compile(translate_pattern(value), re.IGNORECASE)))
                except re.error as exc:
                    logger.warning("Ignoring invalid %s pattern %r: %s", entry.category.value, value, exc)
            elif value.startswith("*."):
                self.wildcards.append(value[2:])
            else:
                self.hosts.add(value)

    def match(self, host: str, origin: str, url: str) -> Optional[str]:
        bare = host[4:] if host.startswith("www.") else host
        if host in self.hosts:
            return host
        if bare in self.hosts:
            return bare
        for suffix in self.wildcards:
            if host == suffix or host.endswith("." + suffix):
                return "*." + suffix
        for raw, compiled in self.regexes:
            if compiled.search(origin) or compiled.search(url):
                return raw
        return None


class DomainTrustClassifier:
    """Classifies a URL against trusted-login, general-trusted and exclusion patterns."""

    def __init__(self, store: RuleStore):
        self._categories = {
            category: _CompiledCategory(store.patterns_for(category)) for category in TRUST_CATEGORIES
        }

    def classify(self, url: str) -> TrustClassification:
        origin, host = split_origin(url)
        result = TrustClassification(url=url, origin=origin)
        if not host:
            return result

        for category, compiled in self._categories.items():
            hit = compiled.match(host, origin, url)
            if hit is None:
                continue
            result.matched[category.value] = hit
            if category == DomainCategory.TRUSTED_LOGIN:
                result.trusted_login = True
            elif category == DomainCategory.GENERAL_TRUSTED:
                result.general_trusted = True
            else:
                result.excluded = True

        if result.decision:
            logger.debug("Trust classification for %s: %s", origin, result.decision)
        return result

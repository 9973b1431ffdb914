"""Rule configuration loading.

Parses a rule document (YAML or JSON) into an immutable :class:`RuleStore`.
Each malformed entry is skipped with a warning; only a document that yields
nothing usable is fatal.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from ..errors import ConfigError, EvaluationError, RuleStoreUnavailable
from ..utils.allowlist import extract_domains_from_allowlist, normalize_patterns
from ..utils.domains import canonicalize_domain
from .models import (
    Action,
    AllowlistGated,
    AppliesTo,
    DomainCategory,
    DomainPattern,
    Indicator,
    MatchStrategy,
    RegexMatch,
    Severity,
    SquattingSettings,
    SubstringAll,
    SubstringAllExcept,
    SubstringOrRegex,
    SubstringWithExclusions,
    evaluation_cost,
    strategy_patterns,
)
from .patterns import PatternCache, find_backtracking_risk, parse_flags, translate_pattern
from .store import RuleStore

logger = logging.getLogger(__name__)

# Document keys for each domain category.
DOMAIN_PATTERN_KEYS = {
    DomainCategory.TRUSTED_LOGIN: "trusted_login_patterns",
    DomainCategory.GENERAL_TRUSTED: "trusted_domain_patterns",
    DomainCategory.EXCLUSION: "exclusion_patterns",
}

# code_logic.type aliases accepted in rule documents.
STRATEGY_ALIASES = {
    "regex": "regex",
    "pattern": "regex",
    "substring": "substring_all",
    "substring_all": "substring_all",
    "substring_not": "substring_all_except",
    "substring_all_except": "substring_all_except",
    "substring_or_regex": "substring_or_regex",
    "substring_with_exclusions": "substring_with_exclusions",
    "allowlist": "allowlist_gated",
    "allowlist_gated": "allowlist_gated",
}

_HOST_LITERAL = re.compile(r"^[a-z0-9_\-.]+(:\d+)?$")


class FileRuleSource:
    """Reads the rule document from a YAML or JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> dict:
        if not self.path.exists():
            raise RuleStoreUnavailable(f"Rule file not found: {self.path}")
        try:
            text = self.path.read_text()
            if self.path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise RuleStoreUnavailable(f"Failed to parse {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise RuleStoreUnavailable(f"Rule file {self.path} is not a mapping")
        return data


class StaticRuleSource:
    """Serves an in-memory rule document."""

    def __init__(self, document: Optional[dict]):
        self.document = document

    def load(self) -> dict:
        if not isinstance(self.document, dict):
            raise RuleStoreUnavailable("Rule document is missing or not a mapping")
        return self.document


def _as_terms(value: Any, field_name: str, entry_id: str, *, required: bool = True) -> tuple[str, ...]:
    if value is None:
        if required:
            raise ConfigError(f"'{field_name}' is required", entry_id)
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{field_name}' must be a list of strings", entry_id)
    terms = tuple(str(v).strip().lower() for v in value if str(v).strip())
    if required and not terms:
        raise ConfigError(f"'{field_name}' must not be empty", entry_id)
    return terms


def _as_enum(enum_cls, value: Any, field_name: str, entry_id: str, default=None):
    if value is None or value == "":
        if default is not None:
            return default
        raise ConfigError(f"'{field_name}' is required", entry_id)
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        raise ConfigError(f"Invalid {field_name} '{value}'", entry_id) from exc


def _validate_regex(pattern: Any, flags: str, entry_id: str) -> str:
    if not isinstance(pattern, str) or not pattern:
        raise ConfigError("regex pattern is required", entry_id)
    try:
        re.compile(translate_pattern(pattern), parse_flags(flags))
    except (re.error, EvaluationError) as exc:
        raise ConfigError(f"Invalid regex {pattern!r}: {exc}", entry_id) from exc
    return pattern


def parse_strategy(item: dict, entry_id: str) -> MatchStrategy:
    """Build the match strategy for one indicator entry."""
    flags = str(item.get("flags", "i") or "")
    logic = item.get("code_logic")

    if logic is None:
        return RegexMatch(_validate_regex(item.get("pattern"), flags, entry_id), flags)

    if not isinstance(logic, dict):
        raise ConfigError("'code_logic' must be a mapping", entry_id)

    raw_type = str(logic.get("type") or "").strip().lower()
    kind = STRATEGY_ALIASES.get(raw_type)
    if kind is None:
        raise ConfigError(f"Unsupported code_logic type '{raw_type or '<missing>'}'", entry_id)

    flags = str(logic.get("flags", flags) or "")

    if kind == "regex":
        pattern = logic.get("pattern") or logic.get("regex") or item.get("pattern")
        return RegexMatch(_validate_regex(pattern, flags, entry_id), flags)

    if kind == "substring_all":
        return SubstringAll(_as_terms(logic.get("substrings"), "substrings", entry_id))

    if kind == "substring_all_except":
        return SubstringAllExcept(
            terms=_as_terms(logic.get("substrings"), "substrings", entry_id),
            excluded=_as_terms(logic.get("not_substrings"), "not_substrings", entry_id),
        )

    if kind == "substring_or_regex":
        pattern = logic.get("regex") or logic.get("pattern") or item.get("pattern")
        return SubstringOrRegex(
            terms=_as_terms(logic.get("substrings"), "substrings", entry_id),
            fallback_pattern=_validate_regex(pattern, flags, entry_id),
            flags=flags,
        )

    if kind == "substring_with_exclusions":
        exclude = _as_terms(
            logic.get("exclude_if_contains", logic.get("exclude_if_any")),
            "exclude_if_contains",
            entry_id,
            required=False,
        )
        raw_groups = logic.get("match_all_groups", logic.get("groups"))
        has_any = logic.get("match_any") is not None
        if has_any and raw_groups is not None:
            raise ConfigError("use either 'match_any' or 'match_all_groups', not both", entry_id)
        if raw_groups is not None:
            if not isinstance(raw_groups, (list, tuple)) or not raw_groups:
                raise ConfigError("'match_all_groups' must be a non-empty list of lists", entry_id)
            groups = tuple(
                _as_terms(group, "match_all_groups[]", entry_id) for group in raw_groups
            )
            return SubstringWithExclusions(exclude_if_any=exclude, groups=groups)
        return SubstringWithExclusions(
            exclude_if_any=exclude,
            match_any=_as_terms(logic.get("match_any"), "match_any", entry_id),
        )

    if kind == "allowlist_gated":
        pattern = logic.get("pattern") or logic.get("regex") or item.get("pattern")
        return AllowlistGated(
            allowlist=_as_terms(logic.get("allowlist"), "allowlist", entry_id),
            inner_pattern=_validate_regex(pattern, flags, entry_id),
            flags=flags,
        )

    raise ConfigError(f"Unhandled code_logic type '{kind}'", entry_id)  # pragma: no cover


def parse_indicator(item: Any, index: int) -> Indicator:
    """Parse one indicator entry, raising ConfigError if malformed."""
    if not isinstance(item, dict):
        raise ConfigError(f"indicator #{index} is not a mapping")

    entry_id = str(item.get("id") or "").strip()
    if not entry_id:
        raise ConfigError(f"indicator #{index} has no id")

    return Indicator(
        id=entry_id,
        severity=_as_enum(Severity, item.get("severity"), "severity", entry_id),
        action=_as_enum(Action, item.get("action"), "action", entry_id, default=Action.WARN),
        strategy=parse_strategy(item, entry_id),
        applies_to=_as_enum(
            AppliesTo, item.get("applies_to"), "applies_to", entry_id, default=AppliesTo.PAGE_SOURCE
        ),
        description=str(item.get("description") or "").strip(),
        category=str(item.get("category") or "").strip(),
    )


def parse_domain_pattern(value: Any, category: DomainCategory) -> DomainPattern:
    """Validate one domain pattern, raising ConfigError if malformed."""
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"empty {category.value} pattern")
    pattern = value.strip()

    if pattern.startswith("^"):
        try:
            re.compile(translate_pattern(pattern), re.IGNORECASE)
        except re.error as exc:
            raise ConfigError(f"invalid {category.value} regex {pattern!r}: {exc}") from exc
        return DomainPattern(pattern=pattern, category=category)

    pattern = pattern.lower()
    if pattern.startswith("*."):
        host = pattern[2:]
        if not host or not _HOST_LITERAL.match(host):
            raise ConfigError(f"invalid {category.value} wildcard {value!r}")
        return DomainPattern(pattern=pattern, category=category)

    host = canonicalize_domain(pattern) if "://" in pattern else pattern
    if not host or not _HOST_LITERAL.match(host):
        raise ConfigError(f"invalid {category.value} host {value!r}")
    return DomainPattern(pattern=host, category=category)


def _collect_domain_patterns(
    raw: Iterable[Any],
    category: DomainCategory,
    errors: list[str],
    seen: set[tuple[str, DomainCategory]],
) -> list[DomainPattern]:
    patterns: list[DomainPattern] = []
    for value in raw or []:
        try:
            pattern = parse_domain_pattern(value, category)
        except ConfigError as exc:
            logger.warning("Skipping domain pattern: %s", exc)
            errors.append(str(exc))
            continue
        key = (pattern.pattern, category)
        if key in seen:
            continue
        seen.add(key)
        patterns.append(pattern)
    return patterns


def _parse_squatting(data: dict, allowlist: list[str], errors: list[str]) -> SquattingSettings:
    cfg = data.get("domain_squatting") or {}
    if not isinstance(cfg, dict):
        errors.append("domain_squatting must be a mapping")
        logger.warning("Ignoring malformed domain_squatting section")
        cfg = {}

    algorithms = cfg.get("algorithms") or {}
    if not isinstance(algorithms, dict):
        algorithms = {}

    try:
        threshold = int(cfg.get("deviation_threshold", 2))
    except (TypeError, ValueError):
        errors.append("deviation_threshold must be an integer")
        threshold = 2
    if threshold < 1:
        errors.append("deviation_threshold must be >= 1")
        threshold = 2

    ranking = str(cfg.get("ranking") or "first").strip().lower()
    if ranking not in {"first", "best"}:
        errors.append(f"unknown squatting ranking '{ranking}'")
        ranking = "first"

    protected: list[str] = []
    seen: set[str] = set()
    raw_protected = cfg.get("protected_domains") or []
    mined = extract_domains_from_allowlist(allowlist)
    for value in list(raw_protected) + mined:
        host = canonicalize_domain(str(value)) if value else ""
        if not host or host in seen:
            continue
        seen.add(host)
        protected.append(host)

    if mined:
        logger.info("Added %s protected domains from the user allow-list", len(mined))

    return SquattingSettings(
        enabled=cfg.get("enabled", True) is not False,
        protected_domains=protected,
        deviation_threshold=threshold,
        levenshtein=algorithms.get("levenshtein", True) is not False,
        homoglyph=algorithms.get("homoglyph", True) is not False,
        typosquat=algorithms.get("typosquat", True) is not False,
        combosquat=algorithms.get("combosquat", True) is not False,
        ranking=ranking,
    )


def build_rule_store(document: dict, user_allowlist: Iterable[str] | None = None) -> RuleStore:
    """Parse a rule document into a RuleStore.

    The user allow-list is merged into the exclusion patterns and mined for
    protected hostnames.
    """
    if not isinstance(document, dict):
        raise RuleStoreUnavailable("Rule document is not a mapping")

    errors: list[str] = []
    allowlist = normalize_patterns(user_allowlist or [])

    indicators: list[Indicator] = []
    seen_ids: set[str] = set()
    raw_indicators = document.get("indicators") or []
    if not isinstance(raw_indicators, list):
        errors.append("indicators must be a list")
        raw_indicators = []

    for index, item in enumerate(raw_indicators):
        try:
            indicator = parse_indicator(item, index)
        except ConfigError as exc:
            logger.warning("Skipping indicator: %s", exc)
            errors.append(str(exc))
            continue
        if indicator.id in seen_ids:
            logger.warning("Skipping duplicate indicator id %s", indicator.id)
            errors.append(f"{indicator.id}: duplicate id")
            continue
        seen_ids.add(indicator.id)
        indicators.append(indicator)

    # Substring strategies run before regex-bearing ones; document order breaks ties.
    indicators.sort(key=lambda indicator: evaluation_cost(indicator.strategy))

    seen_patterns: set[tuple[str, DomainCategory]] = set()
    domain_patterns: list[DomainPattern] = []
    for category, key in DOMAIN_PATTERN_KEYS.items():
        domain_patterns.extend(
            _collect_domain_patterns(document.get(key) or [], category, errors, seen_patterns)
        )
    domain_patterns.extend(
        _collect_domain_patterns(allowlist, DomainCategory.EXCLUSION, errors, seen_patterns)
    )

    squatting = _parse_squatting(document, allowlist, errors)
    domain_patterns.extend(
        DomainPattern(pattern=host, category=DomainCategory.PROTECTED)
        for host in squatting.protected_domains
    )

    if not indicators and not domain_patterns:
        raise RuleStoreUnavailable(
            f"Rule document produced no usable indicators or domain patterns ({len(errors)} errors)"
        )

    cache = PatternCache()
    risky: list[tuple[str, str]] = []
    for indicator in indicators:
        patterns = strategy_patterns(indicator.strategy)
        errors.extend(cache.warm(patterns))
        for pattern, _ in patterns:
            reason = find_backtracking_risk(pattern)
            if reason:
                logger.warning(
                    "Indicator %s regex may backtrack catastrophically (%s)", indicator.id, reason
                )
                risky.append((indicator.id, reason))

    store = RuleStore(
        indicators=tuple(indicators),
        domain_patterns=tuple(domain_patterns),
        squatting=squatting,
        pattern_cache=cache,
        version=str(document.get("version") or "1.0"),
        config_errors=tuple(errors),
        risky_patterns=tuple(risky),
    )
    logger.info(
        "Loaded rule store v%s: %s indicators, %s domain patterns, %s protected domains (%s skipped)",
        store.version,
        len(store.indicators),
        len(store.domain_patterns),
        len(squatting.protected_domains),
        len(errors),
    )
    return store


def load_rule_store(source, user_allowlist: Iterable[str] | None = None) -> RuleStore:
    """Load the rule document from a RuleSource and build the store."""
    try:
        document = source.load()
    except RuleStoreUnavailable:
        raise
    except Exception as exc:
        raise RuleStoreUnavailable(f"Rule source failed: {exc}") from exc
    return build_rule_store(document, user_allowlist)

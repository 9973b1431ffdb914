"""User allow-list helpers."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

_HOST_PREFIX = re.compile(r"^(?:https?://)?([a-zA-Z0-9][\w\-.]*[a-zA-Z0-9])")
_GROUPS = re.compile(r"\(.*?\)")


def normalize_patterns(patterns: Iterable[str]) -> list[str]:
    """Trim, lowercase and de-duplicate allow-list patterns (order preserved).

    Anchored regexes (``^...``) keep their case: ``\\S`` and ``\\s`` differ, and
    they are matched case-insensitively anyway.
    """
    seen: set[str] = set()
    result: list[str] = []
    for raw in patterns or []:
        if not isinstance(raw, str):
            continue
        value = raw.strip()
        if not value.startswith("^"):
            value = value.lower()
        if not value or value.startswith("#") or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def read_allowlist_patterns(path: Path) -> list[str]:
    """Read allow-list URL patterns from disk, ignoring comments and blanks."""
    if not path.exists():
        return []
    return normalize_patterns(path.read_text().splitlines())


def extract_domains_from_allowlist(patterns: Iterable[str]) -> list[str]:
    """
    Mine bare hostnames out of allow-list URL patterns.

    Handles anchored regexes (``^https://example\\.com/.*$``), wildcards
    (``*.example.com``) and plain URLs or hosts. Entries that do not yield
    something that looks like a domain are skipped.
    """
    domains: list[str] = []
    seen: set[str] = set()

    for pattern in patterns or []:
        if not pattern or not isinstance(pattern, str):
            continue

        cleaned = pattern.strip()
        if cleaned.startswith("^"):
            cleaned = cleaned[1:]
        if cleaned.endswith("$"):
            cleaned = cleaned[:-1]
        cleaned = cleaned.replace("\\", "")
        cleaned = re.sub(r"^(https?://)?\*\.", r"\1", cleaned)

        match = _HOST_PREFIX.match(cleaned)
        if not match:
            logger.debug("Could not extract domain from allow-list pattern: %s", pattern)
            continue

        domain = match.group(1)
        domain = domain.split("/")[0].split("?")[0].split("#")[0]
        domain = _GROUPS.sub("", domain)
        domain = re.sub(r"[^\w\-.]", "", domain).rstrip(".").lower()

        if domain and "." in domain and len(domain) > 3 and domain not in seen:
            seen.add(domain)
            domains.append(domain)

    return domains

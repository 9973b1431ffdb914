"""Tests for regex flag handling, the pattern cache and risk detection."""

import re

import pytest

from pagesentry.errors import EvaluationError
from pagesentry.rules.patterns import PatternCache, find_backtracking_risk, parse_flags, translate_pattern


class TestParseFlags:
    def test_known_flags(self):
        assert parse_flags("im") == re.IGNORECASE | re.MULTILINE

    def test_browser_only_flags_ignored(self):
        assert parse_flags("gu") == 0

    def test_unknown_flag(self):
        with pytest.raises(EvaluationError):
            parse_flags("q")


def test_translate_named_groups():
    assert translate_pattern("(?<user>\\w+)@") == "(?P<user>\\w+)@"
    # Lookbehinds are left alone.
    assert translate_pattern("(?<=a)b(?<!c)") == "(?<=a)b(?<!c)"


@pytest.mark.parametrize(
    "pattern,expected",
    [
        ("(a+)+$", "nested quantifier"),
        ("(\\w*\\s?)*x", "nested quantifier"),
        ("(.|\\s)*end", "quantified overlapping alternation"),
        ("login\\.php", None),
        ("(foo|bar)+", None),
    ],
)
def test_backtracking_risk(pattern, expected):
    assert find_backtracking_risk(pattern) == expected


class TestPatternCache:
    def test_compiles_once(self):
        cache = PatternCache()
        first = cache.get("abc", "i")
        second = cache.get("abc", "i")
        assert first is second
        assert cache.compile_count == 1
        assert len(cache) == 1

    def test_flags_are_part_of_key(self):
        cache = PatternCache()
        assert cache.get("abc", "i") is not cache.get("abc", "")
        assert cache.compile_count == 2

    def test_failures_cached(self):
        cache = PatternCache()
        with pytest.raises(EvaluationError):
            cache.get("(oops", "i")
        with pytest.raises(EvaluationError):
            cache.get("(oops", "i")
        assert cache.compile_count == 1
        assert ("(oops", "i") in cache
        assert len(cache) == 0

    def test_warm_reports_errors(self):
        cache = PatternCache()
        errors = cache.warm([("ok", "i"), ("[bad", "i")])
        assert len(errors) == 1
        assert ("ok", "i") in cache

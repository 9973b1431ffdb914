"""Tests for indicator evaluation strategies."""

import pytest

from pagesentry.metrics import metrics
from pagesentry.page import PageContent
from pagesentry.rules.evaluator import RuleEvaluator
from pagesentry.rules.models import (
    Action,
    AllowlistGated,
    AppliesTo,
    Indicator,
    RegexMatch,
    Severity,
    SubstringAll,
    SubstringAllExcept,
    SubstringOrRegex,
    SubstringWithExclusions,
)
from pagesentry.rules.patterns import PatternCache
from pagesentry.rules.store import RuleStore
from pagesentry.rules.models import SquattingSettings


def make_indicator(strategy, applies_to=AppliesTo.PAGE_SOURCE, indicator_id="ind"):
    return Indicator(
        id=indicator_id,
        severity=Severity.HIGH,
        action=Action.WARN,
        strategy=strategy,
        applies_to=applies_to,
    )


def page(html: str, url: str = "https://phish.example/login") -> PageContent:
    return PageContent.from_html(url, html)


@pytest.fixture
def store():
    return RuleStore(indicators=(), domain_patterns=(), squatting=SquattingSettings())


@pytest.fixture
def evaluator(store):
    return RuleEvaluator(store)


class TestSubstringStrategies:
    def test_substring_all(self, evaluator):
        indicator = make_indicator(SubstringAll(("password", "sign in")))
        assert evaluator.evaluate(indicator, page("<p>Sign In</p><input name=Password>")).matched
        assert not evaluator.evaluate(indicator, page("<p>Sign In</p>")).matched

    def test_substring_all_except(self, evaluator):
        indicator = make_indicator(SubstringAllExcept(("password",), ("contoso corp",)))
        assert evaluator.evaluate(indicator, page("enter password")).matched
        outcome = evaluator.evaluate(indicator, page("enter password - Contoso Corp"))
        assert not outcome.matched
        assert "excluded" in outcome.detail

    def test_substring_short_circuits_regex(self, evaluator, store):
        indicator = make_indicator(SubstringOrRegex(("next.php",), "post\\.php"))
        outcome = evaluator.evaluate(indicator, page('<form action="next.php">'))
        assert outcome.matched
        assert store.pattern_cache.compile_count == 0

    def test_substring_or_regex_falls_back(self, evaluator, store):
        indicator = make_indicator(SubstringOrRegex(("next.php",), "post\\.php"))
        assert evaluator.evaluate(indicator, page('<form action="POST.php">')).matched
        assert store.pattern_cache.compile_count == 1

    def test_exclusion_wins_over_match_any(self, evaluator):
        indicator = make_indicator(SubstringWithExclusions(exclude_if_any=("trusted",), match_any=("wallet",)))
        assert evaluator.evaluate(indicator, page("connect wallet")).matched
        assert not evaluator.evaluate(indicator, page("connect wallet trusted")).matched


class TestGroups:
    """Group matching needs one term from every group and no excluded term."""

    GROUPS = SubstringWithExclusions(
        exclude_if_any=("legit-sso",),
        groups=(("loginfmt", "i0116"), ("passwd",), ("microsoft", "office")),
    )
    HTML = '<input name="loginfmt"><input name="passwd"><span>Microsoft</span>'

    def test_all_groups_satisfied(self, evaluator):
        outcome = evaluator.evaluate(make_indicator(self.GROUPS), page(self.HTML))
        assert outcome.matched
        assert outcome.snippet

    @pytest.mark.parametrize("term", ['name="loginfmt"', 'name="passwd"', "Microsoft"])
    def test_removing_any_group_term_flips_result(self, evaluator, term):
        html = self.HTML.replace(term, "")
        assert not evaluator.evaluate(make_indicator(self.GROUPS), page(html)).matched

    def test_alternative_term_in_group(self, evaluator):
        html = self.HTML.replace("loginfmt", "i0116")
        assert evaluator.evaluate(make_indicator(self.GROUPS), page(html)).matched

    def test_excluded_term_blocks_match(self, evaluator):
        html = self.HTML + "<!-- legit-sso -->"
        assert not evaluator.evaluate(make_indicator(self.GROUPS), page(html)).matched


class TestRegexStrategies:
    def test_allowlist_forces_non_match(self, evaluator):
        indicator = make_indicator(AllowlistGated(("telegram-widget",), "api\\.telegram\\.org"))
        assert evaluator.evaluate(indicator, page("fetch('https://api.telegram.org/bot1')")).matched
        html = "<script src=telegram-widget.js></script> api.telegram.org"
        assert not evaluator.evaluate(indicator, page(html)).matched

    def test_regex_snippet(self, evaluator):
        indicator = make_indicator(RegexMatch("seed\\s+phrase"))
        outcome = evaluator.evaluate(indicator, page("<p>Enter your SEED   phrase now</p>"))
        assert outcome.matched
        assert "SEED" in outcome.snippet

    def test_applies_to_url(self, evaluator):
        indicator = make_indicator(SubstringAll(("/wp-admin/",)), applies_to=AppliesTo.URL)
        assert evaluator.evaluate(indicator, page("", "https://x.test/wp-admin/o365/")).matched

    def test_applies_to_title(self, evaluator):
        indicator = make_indicator(RegexMatch("^sign in$"), applies_to=AppliesTo.TITLE)
        html = "<title>Sign in</title><body>other sign in</body>"
        assert evaluator.evaluate(indicator, page(html)).matched


class TestFailures:
    def test_invalid_regex_is_non_match(self, evaluator):
        indicator = make_indicator(RegexMatch("(unclosed"), indicator_id="broken")
        outcome = evaluator.evaluate(indicator, page("anything"))
        assert not outcome.matched
        assert outcome.error
        assert metrics.get_summary()["indicators"]["broken"]["errors"] == 1

    def test_unknown_strategy_is_non_match(self, evaluator):
        indicator = make_indicator(object())
        outcome = evaluator.evaluate(indicator, page("anything"))
        assert not outcome.matched
        assert "Unsupported match strategy" in outcome.error

    def test_slow_indicator_recorded(self, store):
        ticks = iter([0.0, 500.0])
        evaluator = RuleEvaluator(store, indicator_budget_ms=250, clock=lambda: next(ticks))
        outcome = evaluator.evaluate(make_indicator(SubstringAll(("a",)), indicator_id="slow"), page("a"))
        assert outcome.elapsed_ms == 500.0
        assert metrics.get_summary()["indicators"]["slow"]["slow_runs"] == 1

    def test_hits_recorded_by_host(self, evaluator):
        evaluator.evaluate(make_indicator(SubstringAll(("a",)), indicator_id="hit"), page("a"))
        entry = metrics.get_summary()["indicators"]["hit"]
        assert entry["hits"] == 1
        assert entry["unique_hosts"] == 1

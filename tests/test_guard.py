"""Tests for the page-level facade."""

import pytest

from pagesentry.config import Config
from pagesentry.errors import RuleStoreUnavailable
from pagesentry.guard import PageGuard
from pagesentry.rules.loader import FileRuleSource, StaticRuleSource
from pagesentry.scanner.content import StaticContentSource
from pagesentry.scanner.session import EscalationState
from pagesentry.telemetry import LoggingTelemetrySink, WebhookTelemetrySink

URL = "https://account-check.net/"


class TestFailOpen:
    async def test_missing_document_allows_page(self, verdict_sink, mutation_source):
        guard = PageGuard(
            StaticRuleSource(None),
            StaticContentSource(URL, "<p>verify your account password</p>"),
            verdict_sink=verdict_sink,
            mutation_source=mutation_source,
        )
        scheduler = await guard.open(URL)

        assert scheduler is None
        assert verdict_sink.actions == ["allow"]
        assert guard.result.reasons == ["Rule configuration unavailable; page allowed"]
        assert guard.result.errors
        assert not mutation_source.armed

    async def test_missing_file_allows_page(self, tmp_path, verdict_sink):
        guard = PageGuard(
            FileRuleSource(tmp_path / "absent.yaml"),
            StaticContentSource(URL, ""),
            verdict_sink=verdict_sink,
        )
        assert await guard.open(URL) is None
        assert verdict_sink.actions == ["allow"]

    async def test_empty_document_allows_page(self, verdict_sink):
        guard = PageGuard(StaticRuleSource({}), StaticContentSource(URL, ""), verdict_sink=verdict_sink)
        assert await guard.open(URL) is None
        assert guard.result.action.value == "allow"

    async def test_broken_source_allows_page(self, verdict_sink):
        class Broken:
            def load(self):
                raise ConnectionError("storage offline")

        guard = PageGuard(Broken(), StaticContentSource(URL, ""), verdict_sink=verdict_sink)
        assert await guard.open(URL) is None
        assert "storage offline" in guard.result.errors[0]


class TestOpen:
    async def test_open_runs_page_load_scan(self, rules_document, clock, verdict_sink, telemetry_sink):
        guard = PageGuard(
            StaticRuleSource(rules_document),
            StaticContentSource(URL, '<input name="loginfmt"><input name="passwd">Office'),
            verdict_sink=verdict_sink,
            telemetry_sink=telemetry_sink,
            clock=clock,
        )
        scheduler = await guard.open(URL)
        try:
            assert scheduler is not None
            assert scheduler.session.escalation_state == EscalationState.BLOCKED
            assert guard.result.matched_ids == {"login_form_clone"}
        finally:
            guard.close()
        assert scheduler.closed
        assert guard.scheduler is None

    async def test_user_allowlist_reaches_trust(self, rules_document, clock, verdict_sink):
        guard = PageGuard(
            StaticRuleSource(rules_document),
            StaticContentSource("https://app.fabrikam.com/login", "<p>verify your account password</p>"),
            verdict_sink=verdict_sink,
            user_allowlist=["*.fabrikam.com"],
            clock=clock,
        )
        await guard.open("https://app.fabrikam.com/login")
        guard.close()
        assert verdict_sink.actions == ["allow"]
        assert verdict_sink.results[0].trust.excluded


class TestRanking:
    def test_override_replaces_document_ranking(self, rules_document):
        guard = PageGuard(
            StaticRuleSource(rules_document), StaticContentSource(URL), squatting_ranking="best"
        )
        store = guard.load_store()
        assert store.squatting.ranking == "best"
        assert list(store.squatting.protected_domains) == ["microsoft.com", "okta.com"]

    def test_no_override_keeps_default(self, rules_document):
        guard = PageGuard(StaticRuleSource(rules_document), StaticContentSource(URL))
        assert guard.load_store().squatting.ranking == "first"

    def test_load_store_raises_without_rules(self):
        guard = PageGuard(StaticRuleSource(None), StaticContentSource(URL))
        with pytest.raises(RuleStoreUnavailable):
            guard.load_store()


class TestFromConfig:
    def test_logging_sink_without_webhook(self, tmp_path):
        config = Config(config_dir=tmp_path)
        guard = PageGuard.from_config(config, StaticContentSource(URL))
        assert isinstance(guard.telemetry_sink, LoggingTelemetrySink)
        assert guard.rule_source.path == tmp_path / "detection_rules.yaml"

    def test_webhook_sink(self, tmp_path):
        config = Config(config_dir=tmp_path, telemetry_webhook_url="https://hooks.example.net/t")
        guard = PageGuard.from_config(config, StaticContentSource(URL))
        assert isinstance(guard.telemetry_sink, WebhookTelemetrySink)
        assert guard.telemetry_sink.url == "https://hooks.example.net/t"

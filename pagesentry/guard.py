"""Page-level facade: load rules once, then hand the page to a scheduler."""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable, Iterable, Optional

from .analyzer.models import DetectionResult
from .config import Config
from .errors import RuleStoreUnavailable
from .rules.loader import FileRuleSource, load_rule_store
from .rules.models import Action
from .rules.store import RuleStore
from .scanner.interfaces import ContentSource, MutationSource, RuleSource, TelemetrySink, VerdictSink
from .scanner.scheduler import ScanScheduler
from .scanner.session import ScanSettings
from .telemetry import LoggingTelemetrySink, WebhookTelemetrySink

logger = logging.getLogger(__name__)


class PageGuard:
    """Owns one scan session per page load.

    If no rule configuration can be loaded the page is allowed without a
    warning (fail-open) and no scheduler is created.
    """

    def __init__(
        self,
        rule_source: RuleSource,
        content_source: ContentSource,
        verdict_sink: Optional[VerdictSink] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        mutation_source: Optional[MutationSource] = None,
        settings: Optional[ScanSettings] = None,
        user_allowlist: Optional[Iterable[str]] = None,
        squatting_ranking: str = "",
        clock: Optional[Callable[[], float]] = None,
    ):
        self.rule_source = rule_source
        self.content_source = content_source
        self.verdict_sink = verdict_sink
        self.telemetry_sink = telemetry_sink
        self.mutation_source = mutation_source
        self.settings = settings or ScanSettings()
        self.user_allowlist = list(user_allowlist or [])
        self.squatting_ranking = squatting_ranking
        self.clock = clock
        self.store: Optional[RuleStore] = None
        self.scheduler: Optional[ScanScheduler] = None
        self.fail_open_result: Optional[DetectionResult] = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        content_source: ContentSource,
        verdict_sink: Optional[VerdictSink] = None,
        mutation_source: Optional[MutationSource] = None,
    ) -> "PageGuard":
        if config.telemetry_webhook_url:
            telemetry: TelemetrySink = WebhookTelemetrySink(
                config.telemetry_webhook_url, timeout=config.telemetry_timeout
            )
        else:
            telemetry = LoggingTelemetrySink()
        return cls(
            rule_source=FileRuleSource(config.rules_file),
            content_source=content_source,
            verdict_sink=verdict_sink,
            telemetry_sink=telemetry,
            mutation_source=mutation_source,
            settings=config.scan,
            user_allowlist=config.allowlist,
            squatting_ranking=config.squatting_ranking,
        )

    def load_store(self) -> RuleStore:
        """Load the rule store; raises RuleStoreUnavailable."""
        store = load_rule_store(self.rule_source, self.user_allowlist)
        if self.squatting_ranking and self.squatting_ranking != store.squatting.ranking:
            squatting = dataclasses.replace(store.squatting, ranking=self.squatting_ranking)
            store = dataclasses.replace(store, squatting=squatting)
        return store

    async def open(self, url: str) -> Optional[ScanScheduler]:
        """Start the session for a page load; None when failing open."""
        self.close()
        try:
            self.store = self.load_store()
        except RuleStoreUnavailable as exc:
            logger.error("Rule store unavailable for %s; allowing page: %s", url, exc)
            self.fail_open_result = DetectionResult(
                url=url,
                action=Action.ALLOW,
                reasons=["Rule configuration unavailable; page allowed"],
                errors=[str(exc)],
            )
            self._deliver(self.fail_open_result)
            return None

        self.fail_open_result = None
        self.scheduler = ScanScheduler(
            self.store,
            self.content_source,
            verdict_sink=self.verdict_sink,
            telemetry_sink=self.telemetry_sink,
            mutation_source=self.mutation_source,
            settings=self.settings,
            clock=self.clock,
        )
        await self.scheduler.start(url)
        return self.scheduler

    @property
    def result(self) -> Optional[DetectionResult]:
        """Latest verdict for the page, including the fail-open one."""
        if self.scheduler is not None and self.scheduler.last_result is not None:
            return self.scheduler.last_result
        return self.fail_open_result

    def close(self) -> None:
        """Page unload or navigation."""
        if self.scheduler is not None:
            self.scheduler.close()
            self.scheduler = None

    def _deliver(self, result: DetectionResult) -> None:
        if self.verdict_sink is None:
            return
        try:
            self.verdict_sink.deliver(result)
        except Exception as exc:
            logger.warning("Verdict sink failed for %s: %s", result.url, exc)

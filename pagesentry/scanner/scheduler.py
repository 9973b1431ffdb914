"""Scan scheduling state machine.

Every trigger origin (page load, debounced mutations, threat rescans,
background escalation and explicit re-evaluation) enters through
``handle_trigger``: the eligibility gate runs first, then at most one scan.

States move ``IDLE -> SCANNING -> {ALLOWED, WARNED, BLOCKED}``. ``BLOCKED`` is
terminal: timers are cancelled, observation is disarmed and the gate rejects
every later trigger, so the evaluator is never called again for the page.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from ..analyzer.aggregator import OutcomeAggregator
from ..analyzer.models import DetectionResult
from ..analyzer.squatting import DomainSquattingDetector, SquattingVerdict
from ..analyzer.trust import DomainTrustClassifier
from ..errors import RecursionGuardTripped
from ..metrics import metrics
from ..page import PageContent
from ..rules.evaluator import RuleEvaluator
from ..rules.models import Action, Indicator, IndicatorMatch
from ..rules.store import RuleStore
from ..telemetry import build_squatting_event
from .interfaces import ContentSource, MutationSource, TelemetrySink, VerdictSink
from .session import EscalationState, GateDecision, ScanPhase, ScanSession, ScanSettings
from .triggers import MutationRecord, Trigger, TriggerKind, material_insertions

logger = logging.getLogger(__name__)

# Gate reason codes, in evaluation order.
ACCEPTED = "accepted"
REJECT_NO_SESSION = "no_session"
REJECT_BLOCKED = "blocked"
REJECT_IN_FLIGHT = "in_flight"
REJECT_WARNED = "warned_no_reevaluation"
REJECT_COOLDOWN = "cooldown"
REJECT_SCAN_CAP = "scan_cap"
REJECT_UNCHANGED = "content_unchanged"


@dataclass
class ScanPhaseResult:
    """Indicator results gathered by one evaluation phase."""

    matches: list[IndicatorMatch] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    evaluated: int = 0
    remaining: list[Indicator] = field(default_factory=list)
    budget_exceeded: bool = False


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class ScanScheduler:
    """Decides when a page is scanned and applies the resulting escalation."""

    def __init__(
        self,
        store: RuleStore,
        content_source: ContentSource,
        verdict_sink: Optional[VerdictSink] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        mutation_source: Optional[MutationSource] = None,
        settings: Optional[ScanSettings] = None,
        clock: Optional[Callable[[], float]] = None,
        evaluator: Optional[RuleEvaluator] = None,
    ):
        self.store = store
        self.content_source = content_source
        self.verdict_sink = verdict_sink
        self.telemetry_sink = telemetry_sink
        self.mutation_source = mutation_source
        self.settings = settings or ScanSettings()
        self._clock = clock or (lambda: time.monotonic() * 1000.0)

        self.evaluator = evaluator or RuleEvaluator(
            store, indicator_budget_ms=self.settings.indicator_budget_ms, clock=self._clock
        )
        self.classifier = DomainTrustClassifier(store)
        self.detector = DomainSquattingDetector(store.squatting)
        self.aggregator = OutcomeAggregator()

        self.session: Optional[ScanSession] = None
        self.last_result: Optional[DetectionResult] = None
        self.last_background_result: Optional[DetectionResult] = None

        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._rescan_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._armed = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, url: str) -> GateDecision:
        """Create the session for a freshly loaded page and run the page-load scan."""
        if self.session is not None:
            self.close()
        self._closed = False
        self.session = ScanSession(url=url)
        logger.info("Scan session started for %s", url)

        decision = await self.handle_trigger(Trigger.page_load())
        self._arm_observation()
        return decision

    def close(self) -> None:
        """Page unload: cancel every timer, the background pass and observation."""
        if self._closed:
            return
        self._closed = True
        self._cancel_timers()
        self._disarm_observation()
        current = _current_task()
        for task in list(self._tasks):
            if task is not current and not task.done():
                task.cancel()
        if self.session is not None:
            logger.info(
                "Scan session closed for %s after %d scan(s), state %s",
                self.session.url,
                self.session.scan_count,
                self.session.escalation_state.value,
            )

    @property
    def closed(self) -> bool:
        return self._closed

    async def wait_idle(self) -> None:
        """Wait for the background pass and trigger tasks spawned so far."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Eligibility gate
    # ------------------------------------------------------------------

    async def handle_trigger(self, trigger: Trigger) -> GateDecision:
        """Single entry point for every scan request."""
        decision = self.check_eligibility(trigger)
        if not decision.accepted:
            metrics.record_gate_rejection(decision.reason)
            logger.debug(
                "Rejected %s trigger for %s: %s",
                trigger.kind.value,
                self.session.url if self.session else "-",
                decision.reason,
            )
            if trigger.kind == TriggerKind.BACKGROUND_ESCALATION:
                self._apply_deferred_escalation(decision.reason)
            return decision

        if trigger.kind == TriggerKind.BACKGROUND_ESCALATION:
            self.session.deferred_escalation = None
        self._run_scan(trigger, decision.content)
        return decision

    def check_eligibility(self, trigger: Trigger) -> GateDecision:
        """Run the six guards in order; the first rejection wins."""
        session = self.session
        kind = trigger.kind.value
        if session is None or self._closed:
            return GateDecision(False, REJECT_NO_SESSION, kind)

        guards = (
            self.guard_blocked,
            self.guard_in_flight,
            self.guard_warned,
            self.guard_cooldown,
            self.guard_scan_cap,
        )
        for guard in guards:
            reason = guard(session, trigger)
            if reason:
                return GateDecision(False, reason, kind)

        content = self.content_source.snapshot(clean=True)
        reason = self.guard_content_unchanged(session, trigger, content.fingerprint())
        if reason:
            return GateDecision(False, reason, kind)
        return GateDecision(True, ACCEPTED, kind, content)

    def guard_blocked(self, session: ScanSession, trigger: Trigger) -> Optional[str]:
        return REJECT_BLOCKED if session.blocked else None

    def guard_in_flight(self, session: ScanSession, trigger: Trigger) -> Optional[str]:
        return REJECT_IN_FLIGHT if session.in_flight else None

    def guard_warned(self, session: ScanSession, trigger: Trigger) -> Optional[str]:
        if session.escalation_state == EscalationState.WARNED and not trigger.reevaluation:
            return REJECT_WARNED
        return None

    def guard_cooldown(self, session: ScanSession, trigger: Trigger) -> Optional[str]:
        if session.last_scan_time_ms is None:
            return None
        cooldown = (
            self.settings.threat_cooldown_ms if trigger.threat_related else self.settings.cooldown_ms
        )
        if self._clock() - session.last_scan_time_ms < cooldown:
            return REJECT_COOLDOWN
        return None

    def guard_scan_cap(self, session: ScanSession, trigger: Trigger) -> Optional[str]:
        return REJECT_SCAN_CAP if session.scan_count >= self.settings.max_scans else None

    def guard_content_unchanged(
        self, session: ScanSession, trigger: Trigger, fingerprint: str
    ) -> Optional[str]:
        if trigger.threat_related:
            return None
        if session.last_content_hash is not None and session.last_content_hash == fingerprint:
            return REJECT_UNCHANGED
        return None

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _run_scan(self, trigger: Trigger, content: PageContent) -> DetectionResult:
        session = self.session
        started = self._clock()
        session.in_flight = True
        session.phase = ScanPhase.SCANNING
        session.scan_count += 1
        session.last_scan_time_ms = started
        session.last_content_hash = content.fingerprint()

        url = content.url or session.url
        result = DetectionResult(
            url=url,
            scan_number=session.scan_count,
            trigger=trigger.kind.value,
            total_indicators=len(self.store.indicators),
        )
        background_started = False
        try:
            result.trust = self.classifier.classify(url)
            if result.trust.short_circuits:
                result.reasons.append(f"Trusted origin ({result.trust.decision})")
                self._conclude(result, started)
                return result

            result.squatting_verdict = self._check_squatting(url, result)
            phase = self._evaluate_sync(content, url, started + self.settings.scan_budget_ms)
            result.matched_indicators = list(phase.matches)
            result.errors.extend(phase.errors)
            result.evaluated = phase.evaluated
            result.partial = phase.budget_exceeded
            self.aggregator.apply(result)
            self._conclude(result, started, budget_exceeded=phase.budget_exceeded)

            if phase.budget_exceeded and not session.blocked:
                try:
                    self._start_background(result, content, url, phase.remaining)
                    background_started = True
                except RecursionGuardTripped as exc:
                    logger.debug("Dropped background pass: %s", exc)

            if session.escalation_state == EscalationState.WARNED and result.action == Action.WARN:
                self._schedule_threat_rescan()
            return result
        finally:
            if not background_started:
                session.in_flight = False

    def _check_squatting(self, url: str, result: DetectionResult) -> Optional[SquattingVerdict]:
        if not self.detector.enabled:
            return None
        try:
            verdict = self.detector.check(url)
        except Exception as exc:  # a detector failure must not abort the scan
            logger.warning("Squatting check failed for %s: %s", url, exc)
            result.errors.append(f"squatting: {exc}")
            return None
        if verdict:
            metrics.record_squatting(verdict.technique_names)
            self._emit_telemetry(build_squatting_event(verdict, url))
        return verdict

    def _evaluate_sync(self, content: PageContent, url: str, deadline: float) -> ScanPhaseResult:
        phase = ScanPhaseResult()
        indicators = self.store.indicators
        for position, indicator in enumerate(indicators):
            if self._clock() >= deadline:
                phase.budget_exceeded = True
                phase.remaining = list(indicators[position:])
                logger.warning(
                    "Scan budget of %.0fms exceeded on %s after %d/%d indicators",
                    self.settings.scan_budget_ms,
                    url,
                    position,
                    len(indicators),
                )
                break
            self._evaluate_into(phase, indicator, content, url)
        return phase

    def _evaluate_into(
        self, phase: ScanPhaseResult, indicator: Indicator, content: PageContent, url: str
    ) -> None:
        outcome = self.evaluator.evaluate(indicator, content, url)
        phase.evaluated += 1
        if outcome.error:
            phase.errors.append(f"{indicator.id}: {outcome.error}")
        elif outcome.matched:
            phase.matches.append(IndicatorMatch(indicator, outcome.detail, outcome.snippet))

    def _conclude(self, result: DetectionResult, started: float, budget_exceeded: bool = False) -> None:
        session = self.session
        result.elapsed_ms = max(0.0, self._clock() - started)
        if session.first_scan_duration_ms is None:
            session.first_scan_duration_ms = result.elapsed_ms
        metrics.record_scan(result.action.value, budget_exceeded)
        self._apply_result(result)

    def _apply_result(self, result: DetectionResult) -> None:
        session = self.session
        state = session.escalate(result.action)
        self.last_result = result
        logger.info(
            "Scan #%d of %s (%s): %s%s, state %s",
            result.scan_number,
            result.url,
            result.trigger,
            result.action.value,
            " (partial)" if result.partial else "",
            state.value,
        )
        self._deliver(result)
        if state == EscalationState.BLOCKED:
            self._enter_blocked()

    # ------------------------------------------------------------------
    # Background continuation
    # ------------------------------------------------------------------

    def _start_background(
        self,
        partial: DetectionResult,
        content: PageContent,
        url: str,
        remaining: list[Indicator],
    ) -> None:
        session = self.session
        if session.background_pending:
            raise RecursionGuardTripped(f"background pass already pending for {session.url}")
        task = asyncio.get_running_loop().create_task(
            self._run_background(session, partial, content, url, remaining)
        )
        session.pending_background = task
        self._track(task)

    async def _run_background(
        self,
        session: ScanSession,
        partial: DetectionResult,
        content: PageContent,
        url: str,
        remaining: list[Indicator],
    ) -> None:
        phase = ScanPhaseResult(
            matches=list(partial.matched_indicators),
            errors=list(partial.errors),
            evaluated=partial.evaluated,
        )
        try:
            for indicator in remaining:
                await asyncio.sleep(0)
                if self._closed or session.blocked:
                    logger.debug("Background pass for %s stopped early", url)
                    return
                self._evaluate_into(phase, indicator, content, url)
        finally:
            session.pending_background = None
            session.in_flight = False

        final = DetectionResult(
            url=url,
            matched_indicators=phase.matches,
            squatting_verdict=partial.squatting_verdict,
            trust=partial.trust,
            evaluated=phase.evaluated,
            total_indicators=partial.total_indicators,
            errors=phase.errors,
            scan_number=partial.scan_number,
            trigger=partial.trigger,
        )
        self.aggregator.apply(final)
        final.elapsed_ms = partial.elapsed_ms
        self.last_background_result = final
        logger.info(
            "Background pass for %s finished: %d/%d indicators, action %s",
            url,
            final.evaluated,
            final.total_indicators,
            final.action.value,
        )

        if final.action == Action.BLOCK and not session.escalation_reentry_scheduled:
            session.escalation_reentry_scheduled = True
            session.deferred_escalation = final
            self._schedule_escalation_reentry()
            return

        self._apply_result(final)
        if session.escalation_state == EscalationState.WARNED and final.action == Action.WARN:
            self._schedule_threat_rescan()

    # ------------------------------------------------------------------
    # Timers and mutation triggers
    # ------------------------------------------------------------------

    def notify_mutations(self, records: Iterable[MutationRecord]) -> bool:
        """Debounce a batch of DOM mutations into one re-entry; True if scheduled."""
        session = self.session
        if session is None or self._closed or session.blocked:
            return False
        inserted = material_insertions(records)
        if inserted <= self.settings.mutation_node_threshold:
            return False
        self._set_timer(
            "_debounce_handle",
            self.settings.mutation_debounce_ms,
            Trigger.mutation(f"{inserted} element(s) inserted"),
        )
        return True

    def _schedule_threat_rescan(self) -> None:
        session = self.session
        delays = self.settings.threat_rescan_delays_ms
        if session.threat_triggered_rescan_count >= len(delays):
            return
        first = session.first_scan_duration_ms or 0.0
        if first > self.settings.slow_page_threshold_ms:
            logger.info(
                "Skipping threat rescans for %s: first scan took %.0fms", session.url, first
            )
            return
        delay = delays[session.threat_triggered_rescan_count]
        session.threat_triggered_rescan_count += 1
        self._set_timer(
            "_rescan_handle",
            delay,
            Trigger(TriggerKind.THREAT_RESCAN, f"follow-up {session.threat_triggered_rescan_count}"),
        )

    def _apply_deferred_escalation(self, reason: str) -> None:
        """Apply a blocking background result whose re-entry scan was refused."""
        session = self.session
        if session is None or self._closed or session.blocked:
            return
        result = session.deferred_escalation
        if result is None:
            return
        session.deferred_escalation = None
        logger.info(
            "Escalation re-entry for %s rejected (%s); applying background result", session.url, reason
        )
        self._apply_result(result)

    def _schedule_escalation_reentry(self) -> None:
        session = self.session
        elapsed = self._clock() - (session.last_scan_time_ms or 0.0)
        delay = max(0.0, self.settings.threat_cooldown_ms - elapsed)
        logger.info("Background pass on %s found a blocking result; re-entering in %.0fms", session.url, delay)
        self._set_timer("_rescan_handle", delay, Trigger(TriggerKind.BACKGROUND_ESCALATION))

    def _set_timer(self, slot: str, delay_ms: float, trigger: Trigger) -> None:
        existing = getattr(self, slot)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        handle = loop.call_later(max(0.0, delay_ms) / 1000.0, self._fire, slot, trigger)
        setattr(self, slot, handle)

    def _fire(self, slot: str, trigger: Trigger) -> None:
        setattr(self, slot, None)
        if self._closed or self.session is None or self.session.blocked:
            return
        self._track(asyncio.get_running_loop().create_task(self.handle_trigger(trigger)))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timers(self) -> None:
        for slot in ("_debounce_handle", "_rescan_handle"):
            handle = getattr(self, slot)
            if handle is not None:
                handle.cancel()
                setattr(self, slot, None)

    def _enter_blocked(self) -> None:
        session = self.session
        session.phase = ScanPhase.BLOCKED
        self._cancel_timers()
        self._disarm_observation()
        task = session.pending_background
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        logger.warning("Page %s blocked; scanning stopped for this page", session.url)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _arm_observation(self) -> None:
        if self.mutation_source is None or self._armed or self._closed:
            return
        if self.session is None or self.session.blocked:
            return
        self.mutation_source.arm(self.notify_mutations)
        self._armed = True

    def _disarm_observation(self) -> None:
        if self.mutation_source is None or not self._armed:
            return
        self._armed = False
        self.mutation_source.disarm()

    def _deliver(self, result: DetectionResult) -> None:
        if self.verdict_sink is None:
            return
        try:
            self.verdict_sink.deliver(result)
        except Exception as exc:  # presentation failures must not stop scanning
            logger.warning("Verdict sink failed for %s: %s", result.url, exc)

    def _emit_telemetry(self, event: dict) -> None:
        if self.telemetry_sink is None:
            return
        try:
            self.telemetry_sink.emit(event)
        except Exception as exc:
            logger.warning("Telemetry sink failed: %s", exc)

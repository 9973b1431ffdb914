"""Scan session state owned by the scheduler."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..page import PageContent
from ..rules.models import Action

if TYPE_CHECKING:
    from ..analyzer.models import DetectionResult


class EscalationState(str, Enum):
    """Response level applied to the page; only ever moves towards BLOCKED."""

    NONE = "none"
    WARNED = "warned"
    BLOCKED = "blocked"


class ScanPhase(str, Enum):
    """Scheduler state machine states."""

    IDLE = "idle"
    SCANNING = "scanning"
    ALLOWED = "allowed"
    WARNED = "warned"
    BLOCKED = "blocked"


_ESCALATION_RANK = {
    EscalationState.NONE: 0,
    EscalationState.WARNED: 1,
    EscalationState.BLOCKED: 2,
}

_ACTION_STATE = {
    Action.ALLOW: EscalationState.NONE,
    Action.WARN: EscalationState.WARNED,
    Action.BLOCK: EscalationState.BLOCKED,
}

_STATE_PHASE = {
    EscalationState.NONE: ScanPhase.ALLOWED,
    EscalationState.WARNED: ScanPhase.WARNED,
    EscalationState.BLOCKED: ScanPhase.BLOCKED,
}


@dataclass
class ScanSettings:
    """Timing and limits for the scan scheduler (milliseconds)."""

    cooldown_ms: float = 1200.0
    threat_cooldown_ms: float = 500.0
    max_scans: int = 5
    scan_budget_ms: float = 10_000.0
    indicator_budget_ms: float = 250.0
    threat_rescan_delays_ms: tuple[float, ...] = (800.0, 2000.0)
    slow_page_threshold_ms: float = 5000.0
    mutation_debounce_ms: float = 1000.0
    mutation_node_threshold: int = 2


@dataclass
class ScanSession:
    """Mutable per-page state; created on page load, discarded on unload."""

    url: str
    escalation_state: EscalationState = EscalationState.NONE
    phase: ScanPhase = ScanPhase.IDLE
    scan_count: int = 0
    last_scan_time_ms: Optional[float] = None
    last_content_hash: Optional[str] = None
    in_flight: bool = False
    pending_background: Optional[asyncio.Task] = None
    threat_triggered_rescan_count: int = 0
    first_scan_duration_ms: Optional[float] = None
    escalation_reentry_scheduled: bool = False
    deferred_escalation: Optional[DetectionResult] = None  # Blocking background result awaiting re-entry
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def blocked(self) -> bool:
        return self.escalation_state == EscalationState.BLOCKED

    @property
    def background_pending(self) -> bool:
        return self.pending_background is not None and not self.pending_background.done()

    def escalate(self, action: Action) -> EscalationState:
        """Raise the escalation state for an action; never lowers it."""
        target = _ACTION_STATE[action]
        if _ESCALATION_RANK[target] > _ESCALATION_RANK[self.escalation_state]:
            self.escalation_state = target
        self.phase = _STATE_PHASE[self.escalation_state]
        return self.escalation_state

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "escalation_state": self.escalation_state.value,
            "phase": self.phase.value,
            "scan_count": self.scan_count,
            "last_scan_time_ms": self.last_scan_time_ms,
            "in_flight": self.in_flight,
            "background_pending": self.background_pending,
            "threat_triggered_rescan_count": self.threat_triggered_rescan_count,
            "first_scan_duration_ms": self.first_scan_duration_ms,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class GateDecision:
    """Outcome of the eligibility gate for one trigger."""

    accepted: bool
    reason: str
    trigger_kind: str = ""
    content: Optional[PageContent] = field(default=None, compare=False, repr=False)

    def __bool__(self) -> bool:
        return self.accepted

"""Scan scheduling for PageSentry."""

from .content import HttpContentSource, StaticContentSource
from .scheduler import ScanPhaseResult, ScanScheduler
from .session import EscalationState, GateDecision, ScanPhase, ScanSession, ScanSettings
from .triggers import MutationRecord, Trigger, TriggerKind, material_insertions

__all__ = [
    "HttpContentSource",
    "StaticContentSource",
    "ScanPhaseResult",
    "ScanScheduler",
    "EscalationState",
    "GateDecision",
    "ScanPhase",
    "ScanSession",
    "ScanSettings",
    "MutationRecord",
    "Trigger",
    "TriggerKind",
    "material_insertions",
]

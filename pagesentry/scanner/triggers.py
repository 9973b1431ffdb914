"""Scan triggers and DOM mutation records."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class TriggerKind(str, Enum):
    """Why a scan is being requested."""

    PAGE_LOAD = "page_load"
    MUTATION = "mutation"  # Debounced DOM change
    THREAT_RESCAN = "threat_rescan"  # Follow-up after a warn outcome
    BACKGROUND_ESCALATION = "background_escalation"  # Background pass found a block
    REEVALUATE = "reevaluate"  # Explicit request from the presentation layer


THREAT_KINDS = {TriggerKind.THREAT_RESCAN, TriggerKind.BACKGROUND_ESCALATION}
REEVALUATION_KINDS = THREAT_KINDS | {TriggerKind.REEVALUATE}


@dataclass(frozen=True)
class Trigger:
    """A request to enter the eligibility gate."""

    kind: TriggerKind
    note: str = ""

    @property
    def threat_related(self) -> bool:
        return self.kind in THREAT_KINDS

    @property
    def reevaluation(self) -> bool:
        return self.kind in REEVALUATION_KINDS

    @classmethod
    def page_load(cls) -> "Trigger":
        return cls(TriggerKind.PAGE_LOAD)

    @classmethod
    def mutation(cls, note: str = "") -> "Trigger":
        return cls(TriggerKind.MUTATION, note)

    @classmethod
    def reevaluate(cls, note: str = "") -> "Trigger":
        return cls(TriggerKind.REEVALUATE, note)


@dataclass(frozen=True)
class MutationRecord:
    """Summary of one DOM mutation batch entry."""

    added_elements: int = 0
    removed_elements: int = 0
    inside_injected: bool = False  # Change confined to an element we injected
    target: str = ""


def material_insertions(records: Iterable[MutationRecord]) -> int:
    """Count inserted element nodes outside self-injected elements."""
    return sum(
        max(0, record.added_elements)
        for record in records or []
        if not record.inside_injected
    )

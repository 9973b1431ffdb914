"""Collaborator interfaces consumed and produced by the scan scheduler."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Protocol

if TYPE_CHECKING:
    from ..analyzer.models import DetectionResult
    from ..page import PageContent
    from .triggers import MutationRecord


class RuleSource(Protocol):
    """Supplies the raw rule document (indicators, domain patterns, squatting)."""

    def load(self) -> Mapping[str, Any]:  # pragma: no cover - interface
        ...


class ContentSource(Protocol):
    """Supplies the current page content.

    ``clean=True`` must exclude every element carrying the injected marker
    attribute so banners we render never trigger detection themselves.
    """

    def snapshot(self, clean: bool = True) -> "PageContent":  # pragma: no cover - interface
        ...


class VerdictSink(Protocol):
    """Presentation collaborator; decides how allow/warn/block is rendered."""

    def deliver(self, result: "DetectionResult") -> None:  # pragma: no cover - interface
        ...


class TelemetrySink(Protocol):
    """Fire-and-forget receiver of ``domain_squatting_detected`` events."""

    def emit(self, event: dict) -> None:  # pragma: no cover - interface
        ...


MutationCallback = Callable[[Iterable["MutationRecord"]], Any]


class MutationSource(Protocol):
    """DOM observation hook."""

    def arm(self, callback: MutationCallback) -> None:  # pragma: no cover - interface
        ...

    def disarm(self) -> None:  # pragma: no cover - interface
        ...

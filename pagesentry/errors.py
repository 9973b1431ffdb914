"""Error taxonomy for PageSentry."""

from __future__ import annotations


class PageSentryError(Exception):
    """Base class for all PageSentry errors."""


class ConfigError(PageSentryError):
    """A single indicator or domain pattern is malformed.

    Raised by the per-entry parsers; the loader skips the entry and continues.
    """

    def __init__(self, message: str, entry_id: str | None = None):
        super().__init__(message)
        self.entry_id = entry_id

    def __str__(self) -> str:
        base = super().__str__()
        if self.entry_id:
            return f"{self.entry_id}: {base}"
        return base


class EvaluationError(PageSentryError):
    """A match strategy could not execute (e.g. invalid regex)."""


class RuleStoreUnavailable(PageSentryError):
    """No rule configuration could be loaded for the session."""


class RecursionGuardTripped(PageSentryError):
    """A background pass was requested while another one is still pending."""

"""Page content snapshots handed to the evaluator."""

from __future__ import annotations

import hashlib
import html as html_lib
import re
from dataclasses import dataclass, field

from .rules.models import AppliesTo

# Attribute carried by every element the presentation layer injects.
INJECTED_MARKER = "data-pagesentry-injected"

_INJECTED_ELEMENT = re.compile(
    r"<(?P<tag>[a-zA-Z][\w-]*)\b[^>]*\b" + re.escape(INJECTED_MARKER) + r"\b[^>]*>.*?</(?P=tag)\s*>",
    re.DOTALL | re.IGNORECASE,
)
_INJECTED_VOID = re.compile(
    r"<[a-zA-Z][\w-]*\b[^>]*\b" + re.escape(INJECTED_MARKER) + r"\b[^>]*/>",
    re.IGNORECASE,
)
_SCRIPT_STYLE = re.compile(r"<(script|style|noscript)\b[^>]*>.*?</\1\s*>", re.DOTALL | re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_TITLE = re.compile(r"<title\b[^>]*>(.*?)</title\s*>", re.DOTALL | re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def strip_injected(html: str) -> str:
    """Remove elements carrying the injected marker from raw HTML."""
    if not html or INJECTED_MARKER not in html:
        return html or ""
    cleaned = _INJECTED_ELEMENT.sub("", html)
    return _INJECTED_VOID.sub("", cleaned)


def html_to_text(html: str) -> str:
    """Best-effort visible text of an HTML document."""
    if not html:
        return ""
    text = _SCRIPT_STYLE.sub(" ", html)
    text = _TAG.sub(" ", text)
    text = html_lib.unescape(text)
    return _WHITESPACE.sub(" ", text).strip()


def extract_title(html: str) -> str:
    match = _TITLE.search(html or "")
    if not match:
        return ""
    return _WHITESPACE.sub(" ", html_lib.unescape(match.group(1))).strip()


@dataclass
class PageContent:
    """A point-in-time view of the page being scanned."""

    url: str
    html: str = ""
    title: str = ""
    text: str = field(default="")

    def __post_init__(self) -> None:
        self.html = self.html or ""
        if not self.title:
            self.title = extract_title(self.html)
        if not self.text:
            self.text = html_to_text(self.html)

    @classmethod
    def from_html(cls, url: str, html: str, *, clean: bool = True) -> "PageContent":
        return cls(url=url, html=strip_injected(html) if clean else (html or ""))

    def field_for(self, applies_to: AppliesTo, url: str | None = None) -> str:
        if applies_to == AppliesTo.URL:
            return url if url is not None else self.url
        if applies_to == AppliesTo.TITLE:
            return self.title
        if applies_to == AppliesTo.PAGE_TEXT:
            return self.text
        return self.html

    def fingerprint(self) -> str:
        """Hash of the content used to skip rescans of unchanged pages."""
        digest = hashlib.sha256()
        digest.update(self.title.encode("utf-8", "replace"))
        digest.update(b"\x00")
        digest.update(self.html.encode("utf-8", "replace"))
        return digest.hexdigest()

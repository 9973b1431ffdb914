"""Tests for domain, allow-list and page helpers."""

import pytest

from pagesentry.page import INJECTED_MARKER, PageContent, extract_title, html_to_text, strip_injected
from pagesentry.rules.models import AppliesTo
from pagesentry.utils.allowlist import (
    extract_domains_from_allowlist,
    normalize_patterns,
    read_allowlist_patterns,
)
from pagesentry.utils.domains import (
    base_label,
    canonicalize_domain,
    extract_hostname,
    origin_of,
    registered_domain,
    split_origin,
)


class TestDomainHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Example.com", "example.com"),
            ("https://www.example.com/path?q=1", "example.com"),
            ("example.com:8443/login", "example.com:8443"),
            ("", ""),
        ],
    )
    def test_canonicalize(self, value, expected):
        assert canonicalize_domain(value) == expected

    def test_extract_hostname_keeps_www_drops_port(self):
        assert extract_hostname("https://WWW.Example.com:8080/x") == "www.example.com"
        assert extract_hostname("login.example.com/path") == "login.example.com"

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("https://login.microsoft.com:443/x", "microsoft"),
            ("shop.example.co.uk", "example"),
            ("micrsoft", "micrsoft"),
            ("login-microsoft.com", "login-microsoft"),
        ],
    )
    def test_base_label(self, value, expected):
        assert base_label(value) == expected

    def test_registered_domain(self):
        assert registered_domain("https://a.b.example.co.uk/") == "example.co.uk"

    def test_origin_of(self):
        assert origin_of("HTTPS://user:pw@Login.Example.com:8443/a?b") == "https://login.example.com:8443"
        assert origin_of("example.com/path") == "https://example.com"
        assert origin_of("") == ""

    def test_split_origin_parses_once(self, monkeypatch):
        import pagesentry.utils.domains as domains

        calls = []
        real = domains.urlparse
        monkeypatch.setattr(domains, "urlparse", lambda value: calls.append(value) or real(value))

        assert split_origin("https://WWW.Example.com:8443/a") == ("https://www.example.com:8443", "www.example.com")
        assert len(calls) == 1
        assert split_origin("https://example.com:99999/") == ("", "example.com")
        assert split_origin("") == ("", "")


class TestAllowlist:
    def test_normalize(self):
        assert normalize_patterns(["A.com", "a.com", "# comment", "  ", "b.com"]) == ["a.com", "b.com"]

    def test_normalize_keeps_regex_case(self):
        raw = r"^https://portal\.example\.com/\S+$"
        assert normalize_patterns([raw, "  " + raw, "Portal.Example.com"]) == [raw, "portal.example.com"]

    def test_extract_domains(self):
        domains = extract_domains_from_allowlist(
            [
                "^https://portal\\.contoso\\.com/.*$",
                "*.fabrikam.com",
                "https://*.tailspin.io/login",
                "http://intranet",
                "corp.example.org",
                "corp.example.org/other",
            ]
        )
        assert domains == ["portal.contoso.com", "fabrikam.com", "tailspin.io", "corp.example.org"]

    def test_read_file_skips_comments(self, tmp_path):
        path = tmp_path / "allowlist.txt"
        path.write_text("# partners\nB.com\n\na.com\nb.com\n")
        assert read_allowlist_patterns(path) == ["b.com", "a.com"]

    def test_missing_file(self, tmp_path):
        assert read_allowlist_patterns(tmp_path / "none.txt") == []


class TestPageContent:
    HTML = (
        "<html><head><title> Sign in &amp; verify </title><style>.x{}</style></head>"
        "<body><p>Enter password</p>"
        f'<div {INJECTED_MARKER}="1"><b>PageSentry warning: verify your account</b></div>'
        f'<img {INJECTED_MARKER} src="x.png"/>'
        "</body></html>"
    )

    def test_strip_injected(self):
        cleaned = strip_injected(self.HTML)
        assert INJECTED_MARKER not in cleaned
        assert "Enter password" in cleaned

    def test_clean_snapshot_excludes_banner(self):
        content = PageContent.from_html("https://x.test/", self.HTML)
        assert "verify your account" not in content.text
        assert content.title == "Sign in & verify"

    def test_raw_snapshot_keeps_banner(self):
        content = PageContent.from_html("https://x.test/", self.HTML, clean=False)
        assert "verify your account" in content.text

    def test_fingerprint_ignores_injected(self):
        clean = PageContent.from_html("https://x.test/", self.HTML)
        bare = PageContent.from_html("https://x.test/", strip_injected(self.HTML))
        assert clean.fingerprint() == bare.fingerprint()
        changed = PageContent.from_html("https://x.test/", self.HTML.replace("Enter", "Type"))
        assert changed.fingerprint() != clean.fingerprint()

    def test_field_for(self):
        content = PageContent.from_html("https://x.test/a", self.HTML)
        assert content.field_for(AppliesTo.URL) == "https://x.test/a"
        assert content.field_for(AppliesTo.URL, "https://other/") == "https://other/"
        assert content.field_for(AppliesTo.TITLE) == "Sign in & verify"
        assert content.field_for(AppliesTo.PAGE_SOURCE) == content.html

    def test_text_helpers(self):
        assert html_to_text("<script>var a=1</script><p>Hi&nbsp;there</p>") == "Hi there"
        assert extract_title("<p>no title</p>") == ""

"""Domain normalization utilities."""

from __future__ import annotations

from urllib.parse import urlparse

import tldextract

# Bundled public suffix snapshot only; scans never wait on a network fetch.
_extract = tldextract.TLDExtract(suffix_list_urls=())


def canonicalize_domain(value: str) -> str:
    """
    Normalize a domain/URL to a canonical host key.

    - Lowercase
    - Strip leading "www."
    - Preserve port (if present)
    - Ignore path/query/fragment
    """
    raw = (value or "").strip()
    if not raw:
        return ""

    candidate = raw if "://" in raw else f"https://{raw}"
    try:
        parsed = urlparse(candidate)
        host = (parsed.hostname or raw.split("/")[0]).strip().lower().strip(".")
        port = parsed.port
    except ValueError:
        host = raw.split("/")[0].strip().lower().strip(".")
        port = None
    if not host:
        return ""

    if host.startswith("www.") and len(host) > 4:
        host = host[4:]

    if port:
        host = f"{host}:{port}"

    return host


def _strip_port(host: str) -> str:
    if not host:
        return ""
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


def extract_hostname(value: str) -> str:
    """Return the bare lowercase hostname of a URL or host (no port, keeps www)."""
    return split_origin(value)[1]


def registered_domain(value: str) -> str:
    """Return the registrable domain for a host or URL (best-effort)."""
    host = canonicalize_domain(value)
    if not host:
        return ""
    host = _strip_port(host)
    extracted = _extract(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()
    return host.lower()


def base_label(value: str) -> str:
    """
    Reduce a URL or host to the label directly left of its public suffix.

    ``https://login.microsoft.com:443/x`` -> ``microsoft``,
    ``shop.example.co.uk`` -> ``example``. Hosts without a known suffix
    (``micrsoft``) return their last label.
    """
    host = extract_hostname(value)
    if not host:
        return ""
    extracted = _extract(host)
    if extracted.domain:
        return extracted.domain.lower()
    return host.split(".")[-1].lower()


def split_origin(url: str) -> tuple[str, str]:
    """
    Parse a URL once and return ``(origin, hostname)``.

    The hostname follows ``extract_hostname``; the origin is empty when the
    URL has no parseable host or port.
    """
    raw = (url or "").strip()
    if not raw:
        return "", ""
    candidate = raw if "://" in raw else f"https://{raw}"
    try:
        parsed = urlparse(candidate)
    except ValueError:
        parsed = None
    hostname = (parsed.hostname or "") if parsed else ""
    host = hostname or _strip_port(raw.split("://", 1)[-1].split("/", 1)[0])
    host = host.strip().lower().strip(".")
    if not hostname:
        return "", host
    try:
        port = parsed.port
    except ValueError:
        return "", host
    scheme = (parsed.scheme or "https").lower()
    origin = f"{scheme}://{hostname.lower()}"
    if port:
        origin = f"{origin}:{port}"
    return origin, host


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for a URL, or an empty string."""
    return split_origin(url)[0]

"""
Website URL cleanup for startup records.

Collectors and the language model hand us websites in many shapes:
bare hosts, "www." prefixes, trailing slashes, or filler like "n/a".
Everything stored on a Startup goes through sanitize_url so the
duplicate check can compare websites with plain equality.
"""

from typing import Optional
from urllib.parse import urlsplit, urlunsplit

# Filler values seen in feed payloads and model output
PLACEHOLDER_URLS = frozenset({
    "", "n/a", "na", "none", "null", "undefined", "unknown", "<unknown>",
    "tbd", "not available", "not mentioned", "not specified",
})


def is_valid_url(url: Optional[str]) -> bool:
    """
    True for http(s) URLs and bare "www." hosts.

        >>> is_valid_url("www.acme.example")
        True
        >>> is_valid_url("n/a")
        False
    """
    if not url:
        return False
    lowered = url.strip().lower()
    if lowered in PLACEHOLDER_URLS:
        return False
    return lowered.startswith(("http://", "https://", "www."))


def sanitize_url(url: Optional[str]) -> Optional[str]:
    """Canonical form of a website URL, or None when it is not a URL."""
    if not is_valid_url(url):
        return None
    url = url.strip()
    if url.lower().startswith("www."):
        url = f"https://{url}"

    parts = urlsplit(url)
    if not parts.netloc:
        return None
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))

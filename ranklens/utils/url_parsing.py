"""
URL parsing utilities for page identity and site derivation.
"""
import re
from urllib.parse import urlparse, unquote
from typing import Optional

# Numeric article identifier embedded in content URLs, e.g. /article/123456
ARTICLE_ID_PATTERN = re.compile(r"/article/(\d+)")

_SCHEME_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


def extract_article_id(url: Optional[str]) -> Optional[str]:
    """Return the numeric article id in a URL path, or None."""
    if not isinstance(url, str):
        return None
    match = ARTICLE_ID_PATTERN.search(url)
    return match.group(1) if match else None


def safe_decode_url(url):
    """Percent-decode a URL once; returns the input unchanged if it can't be decoded."""
    if not url or not isinstance(url, str):
        return url
    if "%" not in url:
        return url
    try:
        return unquote(url, errors="strict")
    except UnicodeDecodeError:
        return url


def normalize_url_candidate(value) -> Optional[str]:
    """
    Turn a loosely written URL ("example.com/a", "//example.com/a") into an
    absolute https URL.  Returns None when no host can be parsed.
    """
    if value is None:
        return None
    trimmed = str(value).strip()
    if not trimmed:
        return None

    if _SCHEME_PATTERN.match(trimmed):
        candidate = trimmed
    elif trimmed.startswith("//"):
        candidate = f"https:{trimmed}"
    else:
        candidate = f"https://{trimmed}"

    try:
        parsed = urlparse(candidate)
    except ValueError:
        return None
    if not parsed.hostname or " " in parsed.hostname:
        return None
    return parsed.geturl()


def derive_site(url) -> Optional[str]:
    """Search Console domain property for a URL: sc-domain:<host without www>."""
    normalized = normalize_url_candidate(url)
    if not normalized:
        return None
    host = (urlparse(normalized).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return f"sc-domain:{host}" if host else None

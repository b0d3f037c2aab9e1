"""
Domain utilities for extension activation and request matching.
"""

import logging
import urllib.parse
from typing import Iterable, Optional

import tldextract

logger = logging.getLogger(__name__)

# Offline extractor: use the public suffix snapshot bundled with tldextract
# and never fetch the live list.
_extractor = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)

# Schemes that never carry a host worth matching against
SPECIAL_SCHEMES = {'about', 'data', 'javascript', 'blob', 'file'}


def normalize_domain(domain: Optional[str]) -> str:
    """
    Normalize a domain for comparison.

    Args:
        domain: Domain or host name

    Returns:
        str: Lower-cased domain without surrounding dots or whitespace
    """
    if not domain:
        return ""
    return domain.strip().strip('.').lower()


def host_from_url(url: Optional[str]) -> str:
    """
    Extract the host of a URL.

    A URL without a scheme is treated as https, the way the address bar
    treats typed input.

    Args:
        url: URL string

    Returns:
        str: Normalized host, or an empty string when the URL has none
    """
    if not url:
        return ""

    if any(url.startswith(f"{scheme}:") for scheme in SPECIAL_SCHEMES):
        return ""

    if "://" not in url:
        url = "https://" + url

    try:
        return normalize_domain(urllib.parse.urlparse(url).hostname)
    except ValueError as e:
        logger.debug(f"Could not parse host from {url!r}: {e}")
        return ""


def domain_matches(domain: Optional[str], entry: Optional[str]) -> bool:
    """
    Check whether a domain is covered by a list entry.

    Matching is suffix based on label boundaries: ``example.com`` covers
    ``example.com`` and ``ads.example.com`` but neither ``notexample.com``
    nor ``example.com.evil.com``.

    Args:
        domain: Domain being checked
        entry: Allow/block list entry

    Returns:
        bool: True if the entry covers the domain
    """
    domain = normalize_domain(domain)
    entry = normalize_domain(entry)
    if not domain or not entry:
        return False
    return domain == entry or domain.endswith("." + entry)


def matches_any(domain: Optional[str], entries: Iterable[str]) -> bool:
    """Check whether any entry covers the domain."""
    return any(domain_matches(domain, entry) for entry in entries)


def registrable_domain(host: Optional[str]) -> str:
    """
    Get the registrable domain (eTLD+1) of a host.

    Examples:
        ads.example.com -> example.com
        news.bbc.co.uk -> bbc.co.uk
        localhost -> localhost

    Args:
        host: Host name

    Returns:
        str: Registrable domain, or the host itself when it has no public suffix
    """
    host = normalize_domain(host)
    if not host:
        return ""

    extracted = _extractor(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}"
    return host


def registrable_domain_from_url(url: Optional[str]) -> str:
    """Get the registrable domain of a URL's host."""
    return registrable_domain(host_from_url(url))


def path_from_url(url: Optional[str]) -> str:
    """Path component of a URL ('' when missing or unparsable)."""
    if not url:
        return ""
    if "://" not in url:
        url = "https://" + url
    try:
        return urllib.parse.urlparse(url).path or ""
    except ValueError:
        return ""

# directory_pipeline/domains.py
"""
Domain normalization: the deduplication key for every other component.

Two URLs normalize equal iff they should be treated as the same business.
"""
from __future__ import annotations

import re
from urllib.parse import urlsplit

import tldextract

from directory_pipeline.errors import InvalidURL

_HOST_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)+$")

# Bundled public suffix snapshot only; never fetch the list over the network.
_EXTRACT = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


def normalize_domain(url_or_host: str) -> str:
    """
    Canonicalize a URL or bare host into a domain key.

    - lowercases the host
    - strips a leading "www." label and a trailing dot
    - drops scheme, credentials, port, path, query and fragment

    Raises InvalidURL when no host can be parsed.
    """
    if not isinstance(url_or_host, str):
        raise InvalidURL(url_or_host, "not a string")
    raw = url_or_host.strip()
    if not raw:
        raise InvalidURL(url_or_host, "empty")

    if raw.startswith("//"):
        raw = "http:" + raw
    elif "://" not in raw:
        raw = "http://" + raw

    try:
        host = urlsplit(raw).hostname
    except ValueError as e:
        raise InvalidURL(url_or_host, str(e)) from e

    if not host:
        raise InvalidURL(url_or_host, "no host")

    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]

    if not _HOST_RE.match(host):
        raise InvalidURL(url_or_host, "malformed host")
    return host


def is_valid_domain(url_or_host: str) -> bool:
    try:
        normalize_domain(url_or_host)
    except InvalidURL:
        return False
    return True


def registrable_domain(domain: str) -> str:
    """
    Returns eTLD+1 ("shop.example.co.uk" -> "example.co.uk").
    Falls back to the domain itself when the suffix is unknown.
    """
    ext = _EXTRACT(domain)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}".lower()
    return domain


def domain_label(domain: str) -> str:
    """The registrable label without its suffix ("joesplumbing.com" -> "joesplumbing")."""
    ext = _EXTRACT(domain)
    if ext.domain:
        return ext.domain.lower()
    return domain.split(".", 1)[0]


def same_site(url: str, domain: str) -> bool:
    """True if url belongs to domain or one of its subdomains."""
    try:
        host = normalize_domain(url)
    except InvalidURL:
        return False
    return host == domain or host.endswith("." + domain)

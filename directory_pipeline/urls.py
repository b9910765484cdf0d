# directory_pipeline/urls.py
"""URL helpers shared by the crawler and the blacklist filter."""

from __future__ import annotations

import fnmatch
import posixpath
from typing import Iterable
from urllib.parse import urljoin, urlsplit, urlunsplit

# Links to these are never business pages worth crawling.
ASSET_EXTENSIONS = frozenset(
    """
    .png .jpg .jpeg .gif .webp .bmp .ico .svg .avif .heic
    .mp4 .mov .webm .mp3 .wav .m4a
    .pdf .zip .gz .rar .7z .exe .dmg .apk
    .doc .docx .xls .xlsx .ppt .pptx .csv
    .woff .woff2 .ttf .otf .css .js .map .xml .json .rss
    """.split()
)

FETCHABLE_SCHEMES = frozenset({"http", "https"})


def is_fetchable_url(url: str) -> bool:
    try:
        return urlsplit(url).scheme.lower() in FETCHABLE_SCHEMES
    except ValueError:
        return False


def is_probably_html_url(url: str) -> bool:
    """http(s) and not an obvious asset by extension. Extensionless paths pass."""
    if not is_fetchable_url(url):
        return False
    ext = posixpath.splitext(urlsplit(url).path.lower())[1]
    return ext not in ASSET_EXTENSIONS


def normalize_url(url: str) -> str:
    """
    Lowercase scheme and host, drop the fragment and any trailing slash.
    Unparseable input comes back unchanged.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    path = parts.path.rstrip("/") if parts.path != "/" else ""
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def resolve(base_url: str, href: str) -> str:
    return normalize_url(urljoin(base_url, href))


def host_and_path(url: str) -> tuple[str, str]:
    """
    ("joesplumbing.com", "joesplumbing.com/services/drains") for
    "https://www.JoesPlumbing.com/services/drains/?ref=x". Query and fragment
    never take part in matching.
    """
    try:
        parts = urlsplit(normalize_url(url))
        host = (parts.hostname or "").lower()
    except ValueError:
        return "", ""
    if host.startswith("www."):
        host = host[4:]
    path = parts.path.strip("/").lower()
    return host, (f"{host}/{path}" if path else host)


def match_url_patterns(url: str, patterns: Iterable[str]) -> str | None:
    """
    First fnmatch pattern ('*' and '?') that matches the URL, or None.

    A pattern is tried against the host and host+path, each also with '/'
    and '/*' appended, so 'yelp.com/biz/*' matches '/biz' itself as well as
    anything below it. '*.example.com' also covers every subdomain.
    """
    host, hostpath = host_and_path(url)
    if not host:
        return None
    targets = [t + tail for t in (host, hostpath) for tail in ("", "/", "/*")]
    for pattern in patterns:
        p = pattern.strip().lower()
        if not p:
            continue
        if any(fnmatch.fnmatchcase(t, p) for t in targets):
            return pattern
        if p.startswith("*.") and host.endswith("." + p[2:].split("/", 1)[0]):
            return pattern
    return None

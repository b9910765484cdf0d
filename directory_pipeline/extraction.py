# directory_pipeline/extraction.py
"""
Structured-field extraction from fetched pages.

Each field has several independent methods. Results are merged by priority,
not by voting: the first method (across all pages, in page order) that
yields anything wins.

  phone:   tel: links -> data attributes -> JSON-LD telephone -> body regex
  email:   mailto: links -> JSON-LD email -> body regex -> de-obfuscated body
  address: JSON-LD PostalAddress -> microdata PostalAddress -> body regex
  name:    JSON-LD name -> og:site_name -> logo alt -> copyright line
           -> <title> -> first <h1>

Page-level signals must be collected before the page is cleaned, since
JSON-LD lives inside <script> tags that cleaning removes.
"""
from __future__ import annotations

import json
import logging
import re
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

import phonenumbers
from bs4 import BeautifulSoup, Tag

from directory_pipeline.models import Contacts

log = logging.getLogger(__name__)

MAX_TEXT_CHARS = 50_000
MAX_HEADINGS = 25

NON_CONTENT_TAGS = ("script", "style", "noscript", "iframe", "svg", "template", "object", "embed")

_WS_RE = re.compile(r"\s+")

# ---- phones -----------------------------------------------------------------

_PHONE_RE = re.compile(
    r"(?<!\d)(?:\+?1[\s.-]?)?\(?([2-9]\d{2})\)?[\s.-]?([2-9]\d{2})[\s.-]?(\d{4})(?!\d)"
)
_PHONE_DATA_ATTRS = ("data-phone", "data-telephone", "data-tel", "data-phone-number")

# ---- emails -----------------------------------------------------------------

_EMAIL_RE = re.compile(r"\b[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}\b")

_OBFUSCATED = [
    (re.compile(r"\s*\[\s*at\s*\]\s*", re.I), "@"),
    (re.compile(r"\s*\(\s*at\s*\)\s*", re.I), "@"),
    (re.compile(r"\s*\{\s*at\s*\}\s*", re.I), "@"),
    (re.compile(r"\s+at\s+", re.I), "@"),
    (re.compile(r"\s*\[\s*dot\s*\]\s*", re.I), "."),
    (re.compile(r"\s*\(\s*dot\s*\)\s*", re.I), "."),
    (re.compile(r"\s*\{\s*dot\s*\}\s*", re.I), "."),
    (re.compile(r"\s+dot\s+", re.I), "."),
]

# Vendor/junk domains we never want to treat as a business email
_EMAIL_BLOCKLIST_EXACT = {
    "robot.zapier.com",
    "sentry.wixpress.com",
}
_EMAIL_BLOCKLIST_SUBSTR = (
    "wixpress.com",
    "sentry.io",
    "sentry-next.",
    "example.com",
    "domain.com",
    "godaddy.com",
    "yourdomain",
)
_BAD_EMAIL_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".css", ".js")

# ---- addresses --------------------------------------------------------------

STREET_TYPES = (
    "Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln|Way|Court|Ct|"
    "Parkway|Pkwy|Highway|Hwy|Place|Pl|Circle|Cir|Trail|Trl|Freeway|Fwy|Terrace|Ter|"
    "Square|Sq|Loop|Expressway|Expy|Pike|Plaza"
)
_ADDRESS_RE = re.compile(
    r"\b(?P<street>\d{1,6}(?:\s+[A-Za-z0-9.'-]+){1,6}?\s+(?i:" + STREET_TYPES + r")\.?"
    r"(?:,?\s+(?i:Suite|Ste|Unit|Bldg|#)\.?\s*[\w-]+)?)"
    r",?\s+(?P<city>[A-Za-z][A-Za-z .'-]*?),\s*(?P<state>[A-Z]{2})\s+(?P<postal_code>\d{5})(?:-\d{4})?\b"
)

# ---- names ------------------------------------------------------------------

_TITLE_SPLIT_RE = re.compile(r"\s*\|\s*|\s+[-–—]\s+")
_COPYRIGHT_RE = re.compile(
    r"(?:©|\(c\)|copyright)\s*(?:©\s*)?(?:\d{4}(?:\s*[-–]\s*\d{4})?\s*)?,?\s*(?:by\s+)?"
    r"(?P<name>[^|©\n]{2,80}?)\s*(?:\.\s|\.$|\||all rights reserved|$)",
    re.I,
)
_CTA_RE = re.compile(
    r"\b(call (us|now|today)|get (a |your )?(free )?(quote|estimate)|free (quote|estimate)s?|"
    r"book (now|online|an appointment)|schedule (now|today|service|online)|contact us|"
    r"click here|request (a )?(quote|service|estimate)|learn more|shop now|sign up|log ?in)\b",
    re.I,
)
_GENERIC_TITLES = {
    "home",
    "homepage",
    "home page",
    "welcome",
    "index",
    "about",
    "about us",
    "contact",
    "contact us",
    "services",
    "our services",
    "untitled",
    "default",
    "page not found",
    "not found",
    "404",
    "blog",
    "menu",
    "main",
    "coming soon",
}
_BARE_DOMAIN_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?[a-z0-9-]+(?:\.[a-z0-9-]+)*\.[a-z]{2,}/?$", re.I
)

_SOCIAL_HOSTS = {
    "facebook.com": "facebook",
    "instagram.com": "instagram",
    "linkedin.com": "linkedin",
    "twitter.com": "twitter",
    "x.com": "twitter",
    "youtube.com": "youtube",
    "tiktok.com": "tiktok",
    "pinterest.com": "pinterest",
}
_SHARE_MARKERS = ("sharer", "share?", "/share", "intent/", "shareArticle", "/plugins/")

_BUSINESS_TYPE_RE = re.compile(
    r"(Business|Organi[sz]ation|Store|Contractor|Service|Plumber|Electrician|Locksmith|"
    r"Dentist|Restaurant|Shop|Office|Clinic|Agency|Company|HVAC|Roofing|Mover|Physician|"
    r"Attorney|Salon|Spa|Center|Place)",
    re.I,
)


@dataclass
class PageSignals:
    """Raw per-page findings, gathered before the page is cleaned."""

    url: str
    tel_links: list[str] = field(default_factory=list)
    data_phones: list[str] = field(default_factory=list)
    jsonld_phones: list[str] = field(default_factory=list)
    mailto_emails: list[str] = field(default_factory=list)
    jsonld_emails: list[str] = field(default_factory=list)
    jsonld_address: dict[str, str] = field(default_factory=dict)
    microdata_address: dict[str, str] = field(default_factory=dict)
    # (source, name) in priority order
    names: list[tuple[str, str]] = field(default_factory=list)
    social_links: dict[str, str] = field(default_factory=dict)
    meta_description: str | None = None
    body_text: str = ""


# ---- text helpers -----------------------------------------------------------


def collapse_ws(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def clean_page(soup: BeautifulSoup, max_chars: int = MAX_TEXT_CHARS) -> tuple[str, str, list[str]]:
    """
    Strip non-content tags (mutates soup) and return (title, body_text, headings).
    body_text is whitespace-normalized and truncated to max_chars.
    """
    title = collapse_ws(soup.title.get_text()) if soup.title else ""
    for tag in soup.find_all(NON_CONTENT_TAGS):
        tag.decompose()
    headings = [
        h for h in (collapse_ws(t.get_text(" ")) for t in soup.find_all(["h1", "h2", "h3"])) if h
    ][:MAX_HEADINGS]
    root = soup.body or soup
    body_text = collapse_ws(root.get_text(" "))
    if len(body_text) > max_chars:
        log.debug("Truncating page text from %d to %d chars.", len(body_text), max_chars)
        body_text = body_text[:max_chars]
    return title, body_text, headings


def split_title(title: str) -> str:
    """First segment of a page/search title, split at '|' or a spaced dash."""
    return _TITLE_SPLIT_RE.split(title or "", maxsplit=1)[0].strip()


def is_bad_name(name: str | None) -> bool:
    """
    True if a name candidate looks like something other than a business
    name: a phone number, a call to action, a generic page word, or a bare domain.
    """
    if not name:
        return True
    n = collapse_ws(name)
    if len(n) < 2 or len(n) > 80:
        return True
    if _PHONE_RE.search(n) or sum(ch.isdigit() for ch in n) >= 7:
        return True
    if _CTA_RE.search(n):
        return True
    if n.lower().strip(" .!:-") in _GENERIC_TITLES:
        return True
    if _BARE_DOMAIN_RE.match(n):
        return True
    return False


# ---- phones / emails --------------------------------------------------------


def format_phone(raw: str) -> str | None:
    """Parse a US phone number and return it in national format, or None."""
    try:
        number = phonenumbers.parse(raw, "US")
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_possible_number(number):
        return None
    return phonenumbers.format_number(number, phonenumbers.PhoneNumberFormat.NATIONAL)


def find_phones(text: str) -> list[str]:
    return [m.group(0) for m in _PHONE_RE.finditer(text or "")]


def _deobfuscate(text: str) -> str:
    out = text
    for rx, repl in _OBFUSCATED:
        out = rx.sub(repl, out)
    return out


def _clean_email(raw: str) -> str:
    s = urllib.parse.unquote((raw or "").strip())
    s = s.strip(" \t\r\n\"'<>[](){}.,;:")
    return s.lower()


def is_junk_email(email: str) -> bool:
    low = (email or "").strip().lower()
    if not low or "@" not in low:
        return True
    if any(low.endswith(suf) for suf in _BAD_EMAIL_SUFFIXES):
        return True
    dom = low.split("@", 1)[1]
    if not dom or dom in _EMAIL_BLOCKLIST_EXACT:
        return True
    return any(bad in dom for bad in _EMAIL_BLOCKLIST_SUBSTR)


def find_emails(text: str) -> list[str]:
    out = []
    for m in _EMAIL_RE.findall(text or ""):
        e = _clean_email(m)
        if e and not is_junk_email(e):
            out.append(e)
    return out


def find_obfuscated_emails(text: str) -> list[str]:
    return find_emails(_deobfuscate(text or ""))


# ---- addresses --------------------------------------------------------------


def find_address(text: str) -> dict[str, str]:
    """First street address in text that carries a state abbreviation and ZIP."""
    m = _ADDRESS_RE.search(text or "")
    if not m:
        return {}
    return {k: collapse_ws(v) for k, v in m.groupdict().items() if v}


def format_address(parts: dict[str, str]) -> str | None:
    street = parts.get("street")
    city = parts.get("city")
    state = parts.get("state")
    postal = parts.get("postal_code")
    tail = " ".join(p for p in (state, postal) if p)
    pieces = [p for p in (street, city, tail) if p]
    return ", ".join(pieces) or None


# ---- structured data --------------------------------------------------------


def _walk_jsonld(node: Any) -> Iterator[dict[str, Any]]:
    if isinstance(node, list):
        for item in node:
            yield from _walk_jsonld(item)
    elif isinstance(node, dict):
        yield node
        for key in ("@graph", "mainEntity", "publisher", "provider", "author"):
            if key in node:
                yield from _walk_jsonld(node[key])


def jsonld_items(soup: BeautifulSoup) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": re.compile(r"ld\+json", re.I)}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except ValueError as e:
            log.debug("Ignoring unparsable JSON-LD block: %s", e)
            continue
        items.extend(_walk_jsonld(data))
    return items


def _types(item: dict[str, Any]) -> list[str]:
    t = item.get("@type", [])
    return [t] if isinstance(t, str) else [x for x in t if isinstance(x, str)]


def _is_business(item: dict[str, Any]) -> bool:
    return any(_BUSINESS_TYPE_RE.search(t) for t in _types(item))


def _as_strings(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return []


def _postal_from_jsonld(value: Any) -> dict[str, str]:
    if isinstance(value, list):
        for v in value:
            parts = _postal_from_jsonld(v)
            if parts:
                return parts
        return {}
    if isinstance(value, str):
        return find_address(value) or ({"street": collapse_ws(value)} if value.strip() else {})
    if not isinstance(value, dict):
        return {}
    mapping = {
        "street": value.get("streetAddress"),
        "city": value.get("addressLocality"),
        "state": value.get("addressRegion"),
        "postal_code": value.get("postalCode"),
    }
    return {k: collapse_ws(str(v)) for k, v in mapping.items() if v}


def _microdata_address(soup: BeautifulSoup) -> dict[str, str]:
    scope = soup.find(attrs={"itemtype": re.compile(r"schema\.org/PostalAddress", re.I)})
    if not isinstance(scope, Tag):
        return {}
    props = {
        "street": "streetAddress",
        "city": "addressLocality",
        "state": "addressRegion",
        "postal_code": "postalCode",
    }
    out: dict[str, str] = {}
    for key, prop in props.items():
        el = scope.find(attrs={"itemprop": prop})
        if isinstance(el, Tag):
            value = el.get("content") or el.get_text(" ")
            if value and str(value).strip():
                out[key] = collapse_ws(str(value))
    return out


# ---- names ------------------------------------------------------------------


def _logo_alt(soup: BeautifulSoup) -> str | None:
    for img in soup.find_all("img"):
        alt = collapse_ws(str(img.get("alt") or ""))
        if not alt:
            continue
        hints = " ".join(
            str(v) for v in (img.get("class"), img.get("id"), img.get("src"), alt) if v
        ).lower()
        if "logo" in hints:
            return re.sub(r"\s+logo$", "", alt, flags=re.I).strip() or None
    return None


def _copyright_name(soup: BeautifulSoup) -> str | None:
    for text in soup.find_all(string=re.compile(r"©|copyright|\(c\)", re.I)):
        # the name is often in a sibling <a>/<span>, so read the whole container
        container = text.parent if isinstance(text.parent, Tag) else None
        line = collapse_ws(container.get_text(" ") if container is not None else str(text))
        m = _COPYRIGHT_RE.search(line)
        if m:
            name = m.group("name").strip(" ,.-")
            if re.search(r"[A-Za-z]", name):
                return name
    return None


def _name_candidates(soup: BeautifulSoup, items: list[dict[str, Any]]) -> list[tuple[str, str]]:
    names: list[tuple[str, str]] = []
    for item in items:
        if _is_business(item):
            for n in _as_strings(item.get("name")):
                names.append(("structured_data", collapse_ws(n)))
    og = soup.find("meta", attrs={"property": "og:site_name"})
    if isinstance(og, Tag) and og.get("content"):
        names.append(("site_metadata", collapse_ws(str(og["content"]))))
    logo = _logo_alt(soup)
    if logo:
        names.append(("logo_alt", logo))
    copyright_name = _copyright_name(soup)
    if copyright_name:
        names.append(("copyright", copyright_name))
    if soup.title and soup.title.get_text(strip=True):
        names.append(("title", split_title(collapse_ws(soup.title.get_text()))))
    h1 = soup.find("h1")
    if isinstance(h1, Tag):
        names.append(("heading", collapse_ws(h1.get_text(" "))))
    return [(src, n) for src, n in names if n]


def _social_links(soup: BeautifulSoup) -> dict[str, str]:
    out: dict[str, str] = {}
    for a in soup.find_all("a", href=True):
        href = str(a["href"]).strip()
        try:
            host = (urllib.parse.urlparse(href).hostname or "").lower()
        except ValueError:
            continue
        if host.startswith("www.") or host.startswith("m."):
            host = host.split(".", 1)[1]
        network = _SOCIAL_HOSTS.get(host)
        if not network or network in out:
            continue
        if any(marker.lower() in href.lower() for marker in _SHARE_MARKERS):
            continue
        out[network] = href
    return out


# ---- page + site level ------------------------------------------------------


def extract_page_signals(soup: BeautifulSoup, url: str) -> PageSignals:
    """Collect every method's raw findings for one page. Does not mutate soup."""
    signals = PageSignals(url=url)
    items = jsonld_items(soup)

    for a in soup.find_all("a", href=True):
        href = str(a["href"]).strip()
        low = href.lower()
        if low.startswith("tel:"):
            signals.tel_links.append(urllib.parse.unquote(href[4:]))
        elif low.startswith("mailto:"):
            addr = _clean_email(href[7:].split("?", 1)[0])
            if _EMAIL_RE.fullmatch(addr) and not is_junk_email(addr):
                signals.mailto_emails.append(addr)

    for attr in _PHONE_DATA_ATTRS:
        for el in soup.find_all(attrs={attr: True}):
            signals.data_phones.append(str(el.get(attr)))

    for item in items:
        signals.jsonld_phones.extend(_as_strings(item.get("telephone")))
        for e in _as_strings(item.get("email")):
            addr = _clean_email(e[7:] if e.lower().startswith("mailto:") else e)
            if _EMAIL_RE.fullmatch(addr) and not is_junk_email(addr):
                signals.jsonld_emails.append(addr)
        if not signals.jsonld_address and "address" in item:
            signals.jsonld_address = _postal_from_jsonld(item["address"])

    signals.microdata_address = _microdata_address(soup)
    signals.names = _name_candidates(soup, items)
    signals.social_links = _social_links(soup)

    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)}) or soup.find(
        "meta", attrs={"property": "og:description"}
    )
    if isinstance(meta, Tag) and meta.get("content"):
        signals.meta_description = collapse_ws(str(meta["content"])) or None
    return signals


def _first_non_empty(methods: Iterable[tuple[str, list[str]]]) -> tuple[str | None, list[str]]:
    for name, values in methods:
        unique = list(dict.fromkeys(v for v in values if v))
        if unique:
            return name, unique
    return None, []


def merge_contacts(signals: list[PageSignals]) -> Contacts:
    """Combine per-page signals into Contacts using per-field method priority."""

    def phones(values: Iterable[str]) -> list[str]:
        return [p for p in (format_phone(v) for v in values) if p]

    phone_method, phone_values = _first_non_empty(
        [
            ("tel_link", phones(v for s in signals for v in s.tel_links)),
            ("data_attribute", phones(v for s in signals for v in s.data_phones)),
            ("structured_data", phones(v for s in signals for v in s.jsonld_phones)),
            ("regex", phones(v for s in signals for v in find_phones(s.body_text))),
        ]
    )
    email_method, email_values = _first_non_empty(
        [
            ("mailto", [e for s in signals for e in s.mailto_emails]),
            ("structured_data", [e for s in signals for e in s.jsonld_emails]),
            ("regex", [e for s in signals for e in find_emails(s.body_text)]),
        ]
    )
    if not email_values:
        email_method, email_values = _first_non_empty(
            [("deobfuscated", [e for s in signals for e in find_obfuscated_emails(s.body_text)])]
        )

    address_parts: dict[str, str] = {}
    address_method = None
    for method, getter in (
        ("structured_data", lambda s: s.jsonld_address),
        ("microdata", lambda s: s.microdata_address),
        ("regex", lambda s: find_address(s.body_text)),
    ):
        for s in signals:
            parts = getter(s)
            if parts:
                address_parts, address_method = dict(parts), method
                break
        if address_parts:
            break

    social: dict[str, str] = {}
    for s in signals:
        for network, link in s.social_links.items():
            social.setdefault(network, link)

    log.debug(
        "Contact methods used: phone=%s email=%s address=%s",
        phone_method,
        email_method,
        address_method,
    )
    return Contacts(
        phones=phone_values,
        emails=email_values,
        address=format_address(address_parts) if address_parts else None,
        address_parts=address_parts,
        social_links=social,
    )


def best_business_name(signals: list[PageSignals]) -> str | None:
    """First name, in source priority order, that does not look like junk."""
    order = ["structured_data", "site_metadata", "logo_alt", "copyright", "title", "heading"]
    for source in order:
        for s in signals:
            for src, name in s.names:
                if src == source and not is_bad_name(name):
                    return name
    return None


def best_meta_description(signals: list[PageSignals]) -> str | None:
    for s in signals:
        if s.meta_description:
            return s.meta_description
    return None

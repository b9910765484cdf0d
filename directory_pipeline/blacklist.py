# directory_pipeline/blacklist.py
"""
Blacklist filter.

Checks, in order, first match wins:
  1. exact domain (the domain itself or its registrable root)
  2. domain pattern (regex search; plain strings act as substrings)
  3. URL pattern (fnmatch against host and host+path)
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Mapping

from directory_pipeline.domains import normalize_domain, registrable_domain
from directory_pipeline.errors import InvalidURL
from directory_pipeline.models import BlacklistRule
from directory_pipeline.storage import read_json
from directory_pipeline.urls import match_url_patterns

log = logging.getLogger(__name__)


def _compile(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        log.warning("Blacklist pattern %r is not a valid regex; matching literally.", pattern)
        return re.compile(re.escape(pattern), re.IGNORECASE)


class BlacklistFilter:
    """Decides whether a discovered URL must be excluded."""

    def __init__(self, rule: BlacklistRule) -> None:
        self.rule = rule
        self._patterns = [(p, _compile(p)) for p in rule.domain_patterns]

    def is_excluded(self, url: str, domain: str) -> tuple[bool, str | None]:
        try:
            domain = normalize_domain(domain)
        except InvalidURL:
            return True, "malformed"

        reasons = self.rule.reasons

        for key in (domain, registrable_domain(domain)):
            if key in self.rule.exact_domains:
                return True, reasons.get(key, f"blacklisted domain: {key}")

        for raw, rx in self._patterns:
            if rx.search(domain):
                return True, reasons.get(raw, f"domain matches pattern {raw!r}")

        if url and self.rule.url_patterns:
            matched = match_url_patterns(url, self.rule.url_patterns)
            if matched is not None:
                return True, reasons.get(matched, f"URL matches pattern {matched!r}")

        return False, None


def blacklist_from_config(config: Mapping[str, Any]) -> BlacklistRule:
    return BlacklistRule.from_dict(config.get("blacklist", {}))


def load_blacklist(path: Path, defaults: Mapping[str, Any] | None = None) -> BlacklistRule:
    """
    Load a blacklist JSON document. Missing file -> defaults (or an empty rule).
    """
    data = read_json(path, default=None)
    if data is None:
        log.info("No blacklist at %s; using %s.", path, "defaults" if defaults else "empty rule")
        return BlacklistRule.from_dict(defaults or {})
    return BlacklistRule.from_dict(data)

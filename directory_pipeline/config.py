# directory_pipeline/config.py
"""
Centralized configuration management.

Handles loading defaults, merging in settings from pyproject.toml,
and turning config sections into the typed objects each stage consumes.
"""
from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, MutableMapping

from directory_pipeline.models import Category, Region

try:
    import tomli
except ImportError:
    tomli = None  # type: ignore

log = logging.getLogger(__name__)

# Aggregators, directories and social networks: never a business's own site.
DEFAULT_BLACKLIST: dict[str, Any] = {
    "exact_domains": [
        "yelp.com",
        "yellowpages.com",
        "angi.com",
        "angieslist.com",
        "homeadvisor.com",
        "thumbtack.com",
        "bbb.org",
        "nextdoor.com",
        "houzz.com",
        "porch.com",
        "manta.com",
        "mapquest.com",
        "tripadvisor.com",
        "google.com",
        "facebook.com",
        "instagram.com",
        "linkedin.com",
        "twitter.com",
        "x.com",
        "youtube.com",
        "reddit.com",
        "wikipedia.org",
        "indeed.com",
        "groupon.com",
    ],
    "domain_patterns": [
        "yelp",
        "yellowpages",
        "directory",
        "reviews?\\.",
        "\\.gov$",
        "\\.edu$",
    ],
    "url_patterns": [
        "*/blog/*",
        "*/news/*",
        "*/articles/*",
        "*/best-*",
        "*/top-10*",
        "*/directory/*",
    ],
    "reasons": {
        "yelp.com": "review aggregator",
        "yellowpages.com": "directory",
        "homeadvisor.com": "lead marketplace",
        "angi.com": "lead marketplace",
        "thumbtack.com": "lead marketplace",
        "facebook.com": "social network",
        "\\.gov$": "government site",
        "\\.edu$": "educational site",
    },
}

# Named link patterns used to find related pages from the home page.
# Matched (case-insensitive) against anchor text and href.
DEFAULT_LINK_PATTERNS: dict[str, list[str]] = {
    "contact": ["contact", "get-in-touch", "reach-us", "locations?"],
    "about": ["about", "our-story", "who-we-are", "our-team", "company"],
    "services": ["services?", "what-we-do", "solutions", "pricing"],
}

DEFAULT_CHAIN_KEYWORDS = [
    "franchise",
    "franchising",
    "locations nationwide",
    "nationwide locations",
    "find a location",
    "locations near you",
    "corporate office",
    "independently owned and operated",
    "own a franchise",
]

# Audit rule table. Data, not code: each entry is evaluated against every record.
DEFAULT_AUDIT_RULES: list[dict[str, Any]] = [
    {"field": "name", "check": "present", "severity": "critical", "message": "Missing business name"},
    {"field": "city", "check": "present", "severity": "critical", "message": "Missing city"},
    {"field": "state", "check": "present", "severity": "critical", "message": "Missing state"},
    {"field": "phone", "check": "present", "severity": "warning", "message": "Missing phone number"},
    {"field": "street", "check": "present", "severity": "warning", "message": "Missing street address"},
    {
        "field": "description",
        "check": "min_length",
        "value": 100,
        "severity": "warning",
        "message": "Description too short",
    },
    {"field": "tags", "check": "min_count", "value": 3, "severity": "warning", "message": "Too few tags"},
    {
        "field": "is_potential_chain",
        "check": "not_equal",
        "value": True,
        "severity": "warning",
        "message": "Possible chain or franchise",
    },
    {"field": "email", "check": "present", "severity": "info", "message": "No email address"},
    {"field": "summary", "check": "present", "severity": "info", "message": "No summary"},
    {"field": "rating", "check": "present", "severity": "info", "message": "No rating data"},
    {
        "field": "external_verified",
        "check": "not_equal",
        "value": False,
        "severity": "info",
        "message": "Not verified against places provider",
    },
    {"field": "latitude", "check": "present", "severity": "info", "message": "Missing coordinates"},
]

# This is the baseline configuration dictionary.
DEFAULT_CONFIG: dict[str, Any] = {
    "data_dir": "data",
    "search": {
        "delay_seconds": 0.5,
        "max_queries": 50,
        "page_limit": 1,
        "query_templates": [
            "{category} {region}",
            "{category} near {region}",
            "best {category} in {region}",
        ],
    },
    "crawl": {
        "use_playwright": True,
        "timeout": 30.0,
        "delay_min": 1.0,
        "delay_max": 1.5,
        "max_text_chars": 50_000,
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        "link_patterns": DEFAULT_LINK_PATTERNS,
    },
    "classifier": {
        "niche_keywords": [],
        "chain_keywords": DEFAULT_CHAIN_KEYWORDS,
        "relevance_threshold": 2,
        "chain_threshold": 2,
        "high_confidence_threshold": 3,
        "reject_irrelevant": True,
    },
    "enrichment": {
        "delay_seconds": 1.0,
        "name_similarity_threshold": 0.5,
    },
    "generation": {
        "delay_seconds": 1.5,
        "max_prompt_chars": 12_000,
    },
    "audit": {
        "rules": DEFAULT_AUDIT_RULES,
    },
    "blacklist": DEFAULT_BLACKLIST,
    "cache": {
        "enabled": True,
        "directory": ".directory_pipeline_cache",
        # Crawl output is the crash-recovery source of truth; keep it until cleared.
        "expire_seconds": None,
    },
}


def _deep_merge_dict(
    base: MutableMapping[str, Any], overrides: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Recursively merge dicts."""
    for key, value in overrides.items():
        if isinstance(value, MutableMapping) and isinstance(
            base.get(key), MutableMapping
        ):
            base[key] = _deep_merge_dict(base[key], value)
        else:
            base[key] = value
    return base


def load_config(pyproject_path: Path | None = None) -> dict[str, Any]:
    """
    Loads configuration from defaults and merges settings from pyproject.toml.

    1. Starts with a deep copy of DEFAULT_CONFIG.
    2. If `tomli` is installed, it looks for `pyproject.toml`.
    3. If `pyproject.toml` is found, it merges settings from
       `[tool.directory_pipeline]` over the defaults.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if tomli is None:
        log.debug("tomli not installed. Skipping pyproject.toml configuration.")
        return config

    if pyproject_path is None:
        pyproject_path = Path.cwd() / "pyproject.toml"

    if not pyproject_path.exists():
        log.debug(
            "No pyproject.toml found at %s. Using default config.", pyproject_path
        )
        return config

    try:
        with pyproject_path.open("rb") as f:
            toml_data = tomli.load(f)
    except (OSError, tomli.TOMLDecodeError) as e:
        log.warning(
            "Failed to load or parse %s: %s. Using default config.",
            pyproject_path,
            e,
        )
        return config

    project_config = toml_data.get("tool", {}).get("directory_pipeline", {})
    if project_config:
        log.info("Loading config from %s", pyproject_path)
        config = _deep_merge_dict(config, project_config)  # type: ignore
    else:
        log.debug("No [tool.directory_pipeline] section in %s.", pyproject_path)

    return config


def load_regions(path: Path) -> tuple[dict[str, Region], dict[str, Category]]:
    """
    Load region/category configuration:

        {"regions": {"dallas": {"display_name": "Dallas, TX", "state": "TX",
                                "sub_regions": [...], "search_terms": [...]}},
         "categories": {"plumbing": {"search_terms": ["plumber", ...]}}}
    """
    with Path(path).open("r", encoding="utf-8") as f:
        data = json.load(f)

    regions = {
        key: Region(
            key=key,
            display_name=value.get("display_name", key),
            state=value.get("state"),
            sub_regions=tuple(value.get("sub_regions", [])),
            search_terms=tuple(value.get("search_terms", [])),
        )
        for key, value in data.get("regions", {}).items()
    }
    categories = {
        key: Category(key=key, search_terms=tuple(value.get("search_terms", [])))
        for key, value in data.get("categories", {}).items()
    }
    log.info("Loaded %d region(s) and %d categor(ies) from %s", len(regions), len(categories), path)
    return regions, categories

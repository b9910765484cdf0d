# directory_pipeline/discovery.py
"""
Discovery engine: templated search queries -> pending candidates.

Queries are the cross product of keyword templates, category terms and
region terms, capped to protect the provider's daily quota. Pages are
fetched one at a time with a hard minimum delay between provider calls.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Collection, Iterable, Mapping

from directory_pipeline.blacklist import BlacklistFilter
from directory_pipeline.candidates import CandidateStore
from directory_pipeline.domains import normalize_domain
from directory_pipeline.errors import InvalidURL, ProviderError
from directory_pipeline.models import BatchReport, Candidate, Category, Region
from directory_pipeline.providers import SearchProvider, SearchResult
from directory_pipeline.throttle import SEARCH_DELAY_FLOOR, RateLimiter

log = logging.getLogger(__name__)

DEFAULT_TEMPLATES = ("{category} {region}",)


class DiscoveryEngine:
    def __init__(
        self,
        provider: SearchProvider,
        store: CandidateStore,
        blacklist: BlacklistFilter,
        regions: Mapping[str, Region],
        categories: Mapping[str, Category],
        *,
        processed: Collection[str] = frozenset(),
        templates: Iterable[str] = DEFAULT_TEMPLATES,
        max_queries: int = 50,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.blacklist = blacklist
        self.regions = regions
        self.categories = categories
        self.processed = processed
        self.templates = list(templates)
        self.max_queries = max_queries
        self.limiter = limiter or RateLimiter(SEARCH_DELAY_FLOOR, floor=SEARCH_DELAY_FLOOR)
        self.last_report = BatchReport(stage="discover")

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        provider: SearchProvider,
        store: CandidateStore,
        blacklist: BlacklistFilter,
        regions: Mapping[str, Region],
        categories: Mapping[str, Category],
        processed: Collection[str] = frozenset(),
    ) -> "DiscoveryEngine":
        search_cfg = config.get("search", {})
        return cls(
            provider,
            store,
            blacklist,
            regions,
            categories,
            processed=processed,
            templates=search_cfg.get("query_templates", DEFAULT_TEMPLATES),
            max_queries=int(search_cfg.get("max_queries", 50)),
            limiter=RateLimiter(
                float(search_cfg.get("delay_seconds", SEARCH_DELAY_FLOOR)),
                floor=SEARCH_DELAY_FLOOR,
            ),
        )

    def build_queries(self, region: str, category: str | None = None) -> list[str]:
        """Ordered, de-duplicated query strings, capped at max_queries."""
        try:
            region_obj = self.regions[region]
        except KeyError:
            raise KeyError(f"Unknown region {region!r}") from None

        if category is not None:
            try:
                category_terms = self.categories[category].terms()
            except KeyError:
                raise KeyError(f"Unknown category {category!r}") from None
        else:
            category_terms = [t for c in self.categories.values() for t in c.terms()]

        queries: list[str] = []
        seen: set[str] = set()
        for template in self.templates:
            for cat_term in category_terms or [""]:
                for region_term in region_obj.terms():
                    q = " ".join(template.format(category=cat_term, region=region_term).split())
                    key = q.lower()
                    if not q or key in seen:
                        continue
                    seen.add(key)
                    queries.append(q)
                    if len(queries) >= self.max_queries:
                        log.info("Query cap of %d reached.", self.max_queries)
                        return queries
        return queries

    async def discover(
        self, region: str, category: str | None = None, page_limit: int = 1
    ) -> list[Candidate]:
        """
        Run every query for region/category and upsert new candidates.

        A failing query is logged and skipped. Per-result outcomes are kept
        on `last_report`.
        """
        report = BatchReport(stage="discover")
        self.last_report = report
        session_seen: set[str] = set()
        found: list[Candidate] = []

        queries = self.build_queries(region, category)
        log.info("Discovery for region=%s category=%s: %d queries.", region, category, len(queries))

        for query in queries:
            for page in range(1, max(1, page_limit) + 1):
                await self.limiter.wait()
                try:
                    results = await self.provider.search(query, page)
                except (ProviderError, asyncio.TimeoutError) as e:
                    log.error("Search failed for %r (page %d): %s", query, page, e)
                    report.add(f"query:{query}#{page}", "error", str(e) or type(e).__name__)
                    break
                except Exception as e:  # one broken query must not stop the rest
                    log.error("Unexpected error searching %r (page %d): %s", query, page, e, exc_info=True)
                    report.add(f"query:{query}#{page}", "error", f"{type(e).__name__}: {e}")
                    break

                if not results:
                    log.debug("No results for %r page %d; stopping pagination.", query, page)
                    break

                for result in results:
                    candidate = self._accept(result, region, category, session_seen, report)
                    if candidate is not None:
                        found.append(candidate)

        tally = report.tally()
        log.info(
            "Discovery finished: %d new/updated, %d rejected, %d failed queries.",
            tally["success"],
            tally["skipped"],
            tally["error"],
        )
        return found

    def _accept(
        self,
        result: SearchResult,
        region: str,
        category: str | None,
        session_seen: set[str],
        report: BatchReport,
    ) -> Candidate | None:
        try:
            domain = normalize_domain(result.url)
        except InvalidURL:
            report.add(result.url, "skipped", "invalid url")
            return None

        excluded, reason = self.blacklist.is_excluded(result.url, domain)
        if excluded:
            report.add(domain, "skipped", f"blacklisted: {reason}")
            return None
        if domain in self.processed:
            report.add(domain, "skipped", "already processed")
            return None
        if domain in session_seen:
            report.add(domain, "skipped", "duplicate in session")
            return None
        session_seen.add(domain)

        stored = self.store.upsert(
            Candidate(
                url=result.url,
                domain=domain,
                title=result.title,
                snippet=result.snippet,
                region=region,
                category=category,
            )
        )
        if stored is None:
            report.add(domain, "skipped", "already decided")
            return None
        report.add(domain, "success", value=stored)
        return stored

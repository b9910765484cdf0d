# directory_pipeline/crawler.py
"""
Crawl & extraction engine.

Responsibilities:
- Fetch the seed page through a PageFetcher (rendered by default).
- Pick at most one related page per named pattern set (contact, about,
  services) from the seed's links, same site only.
- Clean each page and run multi-method contact/name extraction.
- Record per-page failures and keep going; only a failed seed aborts a site.
- Persist the finished CrawledSite to the crawl cache before returning.

Delegates ALL field extraction to extraction.py.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from bs4 import BeautifulSoup, Tag

from directory_pipeline.cache import CrawlCache
from directory_pipeline.domains import normalize_domain, same_site
from directory_pipeline.errors import InvalidURL, PipelineError, ProviderError
from directory_pipeline.extraction import (
    MAX_TEXT_CHARS,
    PageSignals,
    best_business_name,
    best_meta_description,
    clean_page,
    extract_page_signals,
    merge_contacts,
)
from directory_pipeline.models import BatchReport, CrawledSite, Page, PageError, utc_now
from directory_pipeline.providers import PageFetcher
from directory_pipeline.throttle import CRAWL_DELAY_FLOOR, RateLimiter
from directory_pipeline.urls import is_probably_html_url, normalize_url, resolve

log = logging.getLogger(__name__)

DEFAULT_PATTERNS: dict[str, list[str]] = {
    "contact": ["contact"],
    "about": ["about"],
    "services": ["services?"],
}


@dataclass(frozen=True)
class PagePolicy:
    """Which related pages to fetch, and how much text to keep."""

    link_patterns: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: {k: tuple(v) for k, v in DEFAULT_PATTERNS.items()}
    )
    max_text_chars: int = MAX_TEXT_CHARS
    timeout: float = 30.0

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "PagePolicy":
        crawl_cfg = config.get("crawl", {})
        patterns = crawl_cfg.get("link_patterns") or DEFAULT_PATTERNS
        return cls(
            link_patterns={k: tuple(v) for k, v in patterns.items()},
            max_text_chars=int(crawl_cfg.get("max_text_chars", MAX_TEXT_CHARS)),
            timeout=float(crawl_cfg.get("timeout", 30.0)),
        )

    def compiled(self) -> dict[str, re.Pattern[str]]:
        return {
            name: re.compile("|".join(f"(?:{p})" for p in pats), re.I)
            for name, pats in self.link_patterns.items()
            if pats
        }


def discover_related_links(
    soup: BeautifulSoup, base_url: str, domain: str | Iterable[str], policy: PagePolicy
) -> dict[str, str]:
    """
    Map each pattern category to the first matching same-site link.
    Anchor text and href are both tested. One URL serves one category only.
    domain may be several hosts, e.g. the seed and the host it redirected to.
    """
    chosen: dict[str, str] = {}
    domains = (domain,) if isinstance(domain, str) else tuple(domain)
    taken = {normalize_url(base_url)}
    anchors = [a for a in soup.find_all("a", href=True) if isinstance(a, Tag)]

    for category, rx in policy.compiled().items():
        for a in anchors:
            href = str(a.get("href", "")).strip()
            if not href or href.startswith("#"):
                continue
            url = resolve(base_url, href)
            if url in taken or not is_probably_html_url(url) or not any(same_site(url, d) for d in domains):
                continue
            text = a.get_text(" ", strip=True)
            if rx.search(text) or rx.search(href):
                chosen[category] = url
                taken.add(url)
                break
    return chosen


class CrawlEngine:
    def __init__(
        self,
        fetcher: PageFetcher,
        policy: PagePolicy | None = None,
        *,
        cache: CrawlCache | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.policy = policy or PagePolicy()
        self.cache = cache
        self.limiter = limiter or RateLimiter(CRAWL_DELAY_FLOOR, 1.5, floor=CRAWL_DELAY_FLOOR)

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], fetcher: PageFetcher, cache: CrawlCache | None = None
    ) -> "CrawlEngine":
        crawl_cfg = config.get("crawl", {})
        return cls(
            fetcher,
            PagePolicy.from_config(config),
            cache=cache,
            limiter=RateLimiter(
                float(crawl_cfg.get("delay_min", CRAWL_DELAY_FLOOR)),
                float(crawl_cfg.get("delay_max", 1.5)),
                floor=CRAWL_DELAY_FLOOR,
            ),
        )

    async def _fetch_soup(self, url: str, timeout: float) -> tuple[str, BeautifulSoup]:
        await self.limiter.wait()
        try:
            page = await asyncio.wait_for(self.fetcher.fetch(url), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Timed out after {timeout:.0f}s fetching {url}", provider="browser") from e
        return page.final_url or url, BeautifulSoup(page.html, "html.parser")

    def _build_page(
        self, url: str, soup: BeautifulSoup, policy: PagePolicy
    ) -> tuple[Page, PageSignals]:
        signals = extract_page_signals(soup, url)
        title, body_text, headings = clean_page(soup, policy.max_text_chars)
        signals.body_text = body_text
        return Page(url=url, title=title, body_text=body_text, headings=headings), signals

    async def crawl(self, seed_url: str, policy: PagePolicy | None = None) -> CrawledSite:
        """
        Crawl one site starting at seed_url.

        Raises InvalidURL for an unparseable seed and ProviderError when the
        seed page itself cannot be fetched. Related-page failures are recorded
        on the result instead.
        """
        policy = policy or self.policy
        domain = normalize_domain(seed_url)
        if "://" not in seed_url:
            seed_url = f"https://{seed_url}"

        log.info("Crawling %s (%s)", domain, seed_url)
        final_url, soup = await self._fetch_soup(seed_url, policy.timeout)

        hosts = [domain]
        try:
            final_domain = normalize_domain(final_url)
        except InvalidURL:
            final_domain = domain
        if final_domain != domain:
            log.info("%s redirected to %s.", domain, final_domain)
            hosts.append(final_domain)
        related = discover_related_links(soup, final_url, hosts, policy)
        log.info("Found %d related page(s) on %s: %s", len(related), domain, sorted(related))

        home, home_signals = self._build_page(final_url, soup, policy)
        pages = [home]
        signals = [home_signals]
        errors: list[PageError] = []

        for category, url in related.items():
            try:
                page_url, page_soup = await self._fetch_soup(url, policy.timeout)
            except ProviderError as e:
                log.warning("Failed to fetch %s page %s: %s", category, url, e)
                errors.append(PageError(url=url, error=str(e)))
                continue
            page, page_signals = self._build_page(page_url, page_soup, policy)
            pages.append(page)
            signals.append(page_signals)

        site = CrawledSite(
            domain=domain,
            url=seed_url,
            crawled_at=utc_now(),
            pages=pages,
            contacts=merge_contacts(signals),
            business_name=best_business_name(signals),
            meta_description=best_meta_description(signals),
            page_errors=errors,
        )
        if self.cache is not None:
            self.cache.put(site)
        log.info(
            "Crawled %s: %d page(s), %d error(s), %d phone(s), %d email(s).",
            domain,
            len(site.pages),
            len(site.page_errors),
            len(site.contacts.phones),
            len(site.contacts.emails),
        )
        return site

    async def crawl_batch(
        self, seeds: Iterable[str], policy: PagePolicy | None = None
    ) -> BatchReport:
        """Crawl each seed in turn. One failure never stops the rest."""
        report = BatchReport(stage="crawl")
        for seed in seeds:
            try:
                site = await self.crawl(seed, policy)
            except InvalidURL as e:
                log.warning("Skipping %s: %s", seed, e)
                report.add(seed, "skipped", str(e))
            except PipelineError as e:
                log.error("Crawl failed for %s: %s", seed, e)
                report.add(seed, "error", str(e))
            except Exception as e:  # a broken page must not stop the batch
                log.error("Unexpected error crawling %s: %s", seed, e, exc_info=True)
                report.add(seed, "error", f"{type(e).__name__}: {e}")
            else:
                report.add(seed, "success", value=site)
        return report

import asyncio

import pytest
from bs4 import BeautifulSoup

from directory_pipeline.cache import CacheConfig, CrawlCache
from directory_pipeline.crawler import CrawlEngine, PagePolicy, discover_related_links
from directory_pipeline.errors import InvalidURL, ProviderError
from directory_pipeline.models import CrawledSite
from directory_pipeline.providers import FetchedPage
from directory_pipeline.throttle import RateLimiter

HOME = """
<html><head><title>Joe's Plumbing | Dallas</title></head><body>
<nav>
  <a href="#top">Top</a>
  <a href="/contact-us/">Contact</a>
  <a href="/about">About Joe</a>
  <a href="/services">What we do</a>
  <a href="/services">Services again</a>
  <a href="/brochure.pdf">Services brochure</a>
  <a href="https://other.com/contact">Partner contact</a>
</nav>
<h1>Drain cleaning and water heaters</h1>
<a href="tel:2145550142">Call</a>
</body></html>
"""

ABOUT = """
<html><head><title>About | Joe's Plumbing</title></head><body>
<h2>Family owned since 1998</h2>
<p>Find us at 1200 Elm St, Dallas, TX 75201.</p>
<a href="mailto:joe@joesplumbing.com">Email Joe</a>
</body></html>
"""


class FakeFetcher:
    """Serves canned HTML; `failing` raise ProviderError, `hanging` never return in time."""

    def __init__(self, pages, failing=(), hanging=()):
        self.pages = pages
        self.failing = set(failing)
        self.hanging = set(hanging)
        self.fetched: list[str] = []

    async def fetch(self, url):
        self.fetched.append(url)
        if url in self.hanging:
            await asyncio.sleep(5)
        if url in self.failing or url not in self.pages:
            raise ProviderError(f"HTTP error 500 for {url}", provider="fake")
        return FetchedPage(url=url, final_url=url, status=200, html=self.pages[url])


def _engine(fetcher, cache=None, timeout=1.0):
    async def no_sleep(_seconds):
        return None

    limiter = RateLimiter(1.0, 1.5, floor=1.0, sleep=no_sleep)
    return CrawlEngine(fetcher, PagePolicy(timeout=timeout), cache=cache, limiter=limiter)


def test_discover_related_links_one_per_category_same_site_html_only():
    soup = BeautifulSoup(HOME, "html.parser")
    links = discover_related_links(soup, "https://joesplumbing.com", "joesplumbing.com", PagePolicy())
    assert links == {
        "contact": "https://joesplumbing.com/contact-us",
        "about": "https://joesplumbing.com/about",
        "services": "https://joesplumbing.com/services",
    }


def test_crawl_merges_pages_and_records_page_errors(tmp_path):
    fetcher = FakeFetcher(
        {
            "https://joesplumbing.com": HOME,
            "https://joesplumbing.com/about": ABOUT,
            "https://joesplumbing.com/services": "<html><body><h2>Water heaters</h2></body></html>",
        },
        failing={"https://joesplumbing.com/contact-us"},
    )
    with CrawlCache(CacheConfig(directory=str(tmp_path / "cache"))) as cache:
        site = asyncio.run(_engine(fetcher, cache=cache).crawl("https://joesplumbing.com"))

        assert site.domain == "joesplumbing.com"
        assert [p.url for p in site.pages] == [
            "https://joesplumbing.com",
            "https://joesplumbing.com/about",
            "https://joesplumbing.com/services",
        ]
        assert len(site.page_errors) == 1
        assert site.page_errors[0].url == "https://joesplumbing.com/contact-us"
        assert site.contacts.phones == ["(214) 555-0142"]
        assert site.contacts.emails == ["joe@joesplumbing.com"]
        assert site.contacts.address_parts["city"] == "Dallas"
        assert site.business_name == "Joe's Plumbing"
        assert site.pages[0].headings == ["Drain cleaning and water heaters"]

        cached = cache.get("joesplumbing.com")
        assert isinstance(cached, CrawledSite)
        assert cached == site


class RedirectingFetcher(FakeFetcher):
    def __init__(self, pages, redirects):
        super().__init__(pages)
        self.redirects = redirects

    async def fetch(self, url):
        target = self.redirects.get(url, url)
        page = await super().fetch(target)
        self.fetched[-1] = url
        return FetchedPage(url=url, final_url=target, status=200, html=page.html)


def test_crawl_follows_related_links_on_the_redirected_host():
    fetcher = RedirectingFetcher(
        {"https://joesplumbing.com": HOME, "https://joesplumbing.com/about": ABOUT},
        redirects={"https://joes.com": "https://joesplumbing.com"},
    )
    site = asyncio.run(_engine(fetcher).crawl("https://joes.com"))

    assert site.domain == "joes.com"
    assert site.url == "https://joes.com"
    assert "https://joesplumbing.com/about" in fetcher.fetched
    assert "https://other.com/contact" not in fetcher.fetched
    assert [p.url for p in site.pages] == ["https://joesplumbing.com", "https://joesplumbing.com/about"]
    assert site.contacts.emails == ["joe@joesplumbing.com"]


def test_discover_related_links_accepts_several_hosts():
    soup = BeautifulSoup(
        '<a href="https://joes.com/about">About</a><a href="https://joesplumbing.com/contact">Contact</a>',
        "html.parser",
    )
    links = discover_related_links(soup, "https://joesplumbing.com", ["joes.com", "joesplumbing.com"], PagePolicy())
    assert links["about"] == "https://joes.com/about"
    assert links["contact"] == "https://joesplumbing.com/contact"


def test_crawl_bare_host_gets_https_scheme():
    fetcher = FakeFetcher({"https://acme.com": "<html><head><title>Acme Rooter</title></head></html>"})
    site = asyncio.run(_engine(fetcher).crawl("acme.com"))
    assert fetcher.fetched == ["https://acme.com"]
    assert site.business_name == "Acme Rooter"


def test_seed_failure_raises_provider_error():
    with pytest.raises(ProviderError):
        asyncio.run(_engine(FakeFetcher({})).crawl("https://down.com"))


def test_invalid_seed_raises_invalid_url():
    with pytest.raises(InvalidURL):
        asyncio.run(_engine(FakeFetcher({})).crawl("not a url"))


def test_batch_isolates_timeouts_and_errors():
    seeds = [f"https://site{i}.com" for i in range(1, 6)]
    pages = {s: f"<html><head><title>Site {i}</title></head></html>" for i, s in enumerate(seeds, 1)}
    fetcher = FakeFetcher(pages, hanging={"https://site3.com"})

    report = asyncio.run(_engine(fetcher, timeout=0.05).crawl_batch(seeds))

    assert [o.status for o in report.outcomes] == ["success", "success", "error", "success", "success"]
    assert "Timed out" in report.outcomes[2].reason
    assert [site.domain for site in report.values()] == ["site1.com", "site2.com", "site4.com", "site5.com"]
    assert report.tally() == {"success": 4, "skipped": 0, "error": 1, "total": 5}


def test_batch_records_invalid_seed_as_skipped_and_unexpected_errors():
    class Exploding(FakeFetcher):
        async def fetch(self, url):
            if "boom" in url:
                raise RuntimeError("parser exploded")
            return await super().fetch(url)

    fetcher = Exploding({"https://ok.com": "<html></html>"})
    report = asyncio.run(_engine(fetcher).crawl_batch(["", "https://boom.com", "https://ok.com"]))
    assert [o.status for o in report.outcomes] == ["skipped", "error", "success"]
    assert report.outcomes[1].reason == "RuntimeError: parser exploded"

import asyncio
import json

from directory_pipeline.audit import rules_from_config
from directory_pipeline.cache import CacheConfig, CrawlCache
from directory_pipeline.candidates import CandidateStore
from directory_pipeline.classifier import KeywordConfig
from directory_pipeline.config import DEFAULT_CONFIG
from directory_pipeline.crawler import CrawlEngine
from directory_pipeline.enrichment import EnrichmentEngine
from directory_pipeline.errors import ProviderError
from directory_pipeline.generation import ContentGenerator
from directory_pipeline.models import Candidate, Classification, Contacts, CrawledSite, Page, Record, Region
from directory_pipeline.pipeline import (
    reconcile,
    run_audit_stage,
    run_build_stage,
    run_crawl_stage,
    run_enrich_stage,
    run_sync,
)
from directory_pipeline.providers import FetchedPage, PlaceResult
from directory_pipeline.records import RecordBuilder
from directory_pipeline.storage import RecordStore
from directory_pipeline.throttle import RateLimiter

KEYWORDS = KeywordConfig(niche_keywords=("plumb", "drain"))
REGIONS = {"dallas": Region(key="dallas", display_name="Dallas, TX", state="TX")}
RELEVANT = Classification(True, 4, False, 0, "high")
IRRELEVANT = Classification(False, 0, False, 0, "low")

HOME = """
<html><head><title>Joe's Plumbing</title></head><body>
<h1>Plumbing and drain cleaning</h1>
<p>Dallas plumbers for clogged drains.</p>
</body></html>
"""


async def _no_sleep(_seconds):
    return None


class FakeFetcher:
    def __init__(self, pages):
        self.pages = pages
        self.fetched: list[str] = []

    async def fetch(self, url):
        self.fetched.append(url)
        if url not in self.pages:
            raise ProviderError(f"HTTP error 503 for {url}", provider="fake")
        return FetchedPage(url=url, final_url=url, status=200, html=self.pages[url])


def _cache(tmp_path) -> CrawlCache:
    return CrawlCache(CacheConfig(directory=str(tmp_path / "crawl_cache")))


def _store(*domains) -> CandidateStore:
    store = CandidateStore()
    for domain in domains:
        store.upsert(Candidate(url=f"https://{domain}", domain=domain, title="", region="dallas"))
    return store


def _cached_site(domain: str) -> CrawledSite:
    return CrawledSite(
        domain=domain,
        url=f"https://{domain}",
        pages=[Page(url=f"https://{domain}", title="Drains", body_text="drain plumbing plumber")],
    )


def _evaluated(store, domain, classification, title="Joe's Plumbing", region="dallas"):
    store.upsert(Candidate(url=f"https://{domain}", domain=domain, title=title, region=region))
    store.transition(domain, "evaluated", classification=classification)


def test_crawl_stage_classifies_isolates_failures_and_reuses_cache(tmp_path):
    cache = _cache(tmp_path)
    cache.put(_cached_site("cached.com"))
    fetcher = FakeFetcher({"https://joesplumbing.com": HOME})
    engine = CrawlEngine(fetcher, cache=cache, limiter=RateLimiter(1.0, sleep=_no_sleep))
    store = _store("joesplumbing.com", "broken.com", "cached.com")

    report = asyncio.run(run_crawl_stage(store, engine, KEYWORDS))

    assert [(o.key, o.status) for o in report.outcomes] == [
        ("joesplumbing.com", "success"),
        ("broken.com", "error"),
        ("cached.com", "success"),
    ]
    assert report.outcomes[2].reason == "cached"
    assert "https://cached.com" not in fetcher.fetched

    joes = store.get("joesplumbing.com")
    assert joes.status == "evaluated"
    assert joes.classification.is_relevant
    assert joes.crawled_at is not None
    assert store.get("broken.com").status == "error"
    assert "503" in store.get("broken.com").error
    # the fresh crawl landed in the cache too
    assert "joesplumbing.com" in cache
    cache.close()


def test_crawl_stage_limit(tmp_path):
    engine = CrawlEngine(FakeFetcher({}), limiter=RateLimiter(1.0, sleep=_no_sleep))
    store = _store("a.com", "b.com", "c.com")
    report = asyncio.run(run_crawl_stage(store, engine, KEYWORDS, limit=2))
    assert report.tally()["total"] == 2
    assert store.get("c.com").status == "pending"


def test_reconcile_recovers_crawled_candidates_from_cache(tmp_path):
    cache = _cache(tmp_path)
    cache.put(_cached_site("crashed.com"))
    cache.put(_cached_site("failed.com"))
    store = _store("crashed.com", "failed.com", "fresh.com")
    store.transition("failed.com", "error", error="timeout")

    report = reconcile(store, cache, KEYWORDS)

    assert store.get("crashed.com").status == "evaluated"
    assert store.get("failed.com").status == "evaluated"
    assert store.get("failed.com").error is None
    assert store.get("fresh.com").status == "pending"
    assert report.tally() == {"success": 2, "skipped": 1, "error": 0, "total": 3}
    cache.close()


def test_build_stage_lists_rejects_and_resumes(tmp_path):
    store = CandidateStore()
    _evaluated(store, "joesplumbing.com", RELEVANT)
    _evaluated(store, "dental.com", IRRELEVANT, title="Smile Dental")
    _evaluated(store, "nowhere.com", RELEVANT, title="Nowhere Drains", region="atlantis")
    _evaluated(store, "saved.com", RELEVANT, title="Saved Plumbing")

    record_store = RecordStore(tmp_path / "records")
    # a previous run wrote this record and died before the transition
    record_store.add(Record(slug="saved-plumbing-dallas-tx", domain="saved.com", name="Saved Plumbing"))

    builder = RecordBuilder(REGIONS, existing_slugs=record_store.slugs())
    report = asyncio.run(run_build_stage(store, None, builder, record_store))

    assert store.get("joesplumbing.com").status == "listed"
    assert store.get("dental.com").status == "rejected"
    assert store.get("dental.com").reason == "not relevant (score 0)"
    assert store.get("nowhere.com").status == "rejected"
    assert store.get("saved.com").status == "listed"
    assert [o.status for o in report.outcomes] == ["success", "skipped", "skipped", "skipped"]

    record = record_store.get_by_domain("joesplumbing.com")
    assert record.slug == "joes-plumbing-dallas-tx"
    assert (tmp_path / "records" / "joes-plumbing-dallas-tx.json").exists()

    # nothing left to do on a second pass
    again = asyncio.run(run_build_stage(store, None, builder, record_store))
    assert again.outcomes == []


def test_build_stage_uses_generation_and_keeps_candidate_on_bad_output(tmp_path):
    cache = _cache(tmp_path)
    cache.put(_cached_site("joesplumbing.com"))
    cache.put(_cached_site("lonestar.com"))
    store = CandidateStore()
    _evaluated(store, "joesplumbing.com", RELEVANT)
    _evaluated(store, "lonestar.com", RELEVANT, title="Lone Star Drains")

    class PerDomain:
        async def generate(self, prompt):
            if "lonestar.com" in prompt:
                return {"summary": "missing description"}
            return {
                "summary": "Dallas plumbers.",
                "description": "Drain cleaning and water heaters.",
                "tags": ["drains", "water heaters", "repipes"],
            }

    generator = ContentGenerator(PerDomain(), limiter=RateLimiter(1.5, sleep=_no_sleep))
    record_store = RecordStore(tmp_path / "records")
    report = asyncio.run(
        run_build_stage(store, cache, RecordBuilder(REGIONS), record_store, generator)
    )

    assert [o.status for o in report.outcomes] == ["success", "error"]
    assert record_store.get_by_domain("joesplumbing.com").tags == ["drains", "water heaters", "repipes"]
    assert store.get("lonestar.com").status == "evaluated"
    assert record_store.get_by_domain("lonestar.com") is None
    cache.close()


def test_audit_stage_persists_records_and_report(tmp_path):
    record_store = RecordStore(tmp_path / "records")
    record_store.add(Record(slug="a", domain="a.com", name="A", city="Dallas", state="TX", region="dallas"))
    report_path = tmp_path / "audit_report.json"

    batch, summary = run_audit_stage(record_store, rules_from_config(DEFAULT_CONFIG), report_path)

    assert batch.tally()["success"] == 1
    assert summary["needs_review"] == 1
    assert json.loads(report_path.read_text(encoding="utf-8"))["total"] == 1
    saved = json.loads((tmp_path / "records" / "a.json").read_text(encoding="utf-8"))
    assert saved["needs_review"] is True
    assert saved["last_audit_at"] is not None


def test_run_sync_writes_processed_domains(tmp_path):
    store = CandidateStore()
    _evaluated(store, "dental.com", IRRELEVANT)
    store.transition("dental.com", "rejected")
    record_store = RecordStore(tmp_path / "records")
    record_store.add(Record(slug="a", domain="a.com", name="A"))

    path = tmp_path / "processed_domains.json"
    processed = run_sync(record_store, store, path)

    assert processed.domains == frozenset({"a.com", "dental.com"})
    assert json.loads(path.read_text(encoding="utf-8"))["count"] == 2


def test_enrich_stage_saves_enriched_records(tmp_path):
    class Places:
        async def search(self, query):
            return [
                PlaceResult(
                    name="Joe's Plumbing",
                    formatted_address="1200 Elm St, Dallas, TX 75201",
                    website="https://joesplumbing.com",
                    latitude=32.7,
                    longitude=-96.8,
                )
            ]

    record_store = RecordStore(tmp_path / "records")
    record_store.add(Record(slug="joes", domain="joesplumbing.com", name="Joe's Plumbing", city="Dallas", state="TX"))
    engine = EnrichmentEngine(Places(), limiter=RateLimiter(1.0, sleep=_no_sleep))

    report = asyncio.run(run_enrich_stage(record_store, engine))

    assert report.tally()["success"] == 1
    saved = json.loads((tmp_path / "records" / "joes.json").read_text(encoding="utf-8"))
    assert saved["external_verified"] is True
    assert saved["latitude"] == 32.7
    assert saved["street"] == "1200 Elm St"


def test_build_stage_without_cache_uses_contacts_stored_by_the_crawl(tmp_path):
    store = CandidateStore()
    store.upsert(Candidate(url="https://joesplumbing.com", domain="joesplumbing.com", title="Joe's Plumbing", region="dallas"))
    store.transition(
        "joesplumbing.com",
        "evaluated",
        classification=RELEVANT,
        contacts=Contacts(phones=["(214) 555-0142"], emails=["joe@joesplumbing.com"]),
    )
    record_store = RecordStore(tmp_path / "records")

    report = asyncio.run(run_build_stage(store, None, RecordBuilder(REGIONS), record_store))

    assert [(o.status, o.reason) for o in report.outcomes] == [
        ("success", "no cached crawl; used stored contacts")
    ]
    record = record_store.get_by_domain("joesplumbing.com")
    assert record.phone == "(214) 555-0142"
    assert record.email == "joe@joesplumbing.com"

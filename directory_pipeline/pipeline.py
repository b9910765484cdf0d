# directory_pipeline/pipeline.py
"""
Batch orchestration over the stores.

Each stage walks a bounded list of items one at a time, records a per-item
outcome and never lets one item's failure stop the rest. Stages decide what
to do from current status, so re-running one is a no-op for terminal items.

    pending   --crawl/classify-->  evaluated | error
    evaluated --build-->           listed | rejected
    records   --enrich/audit-->    updated in place
    all       --sync-->            processed_domains.json
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from directory_pipeline.audit import AuditRule, audit_all, build_report
from directory_pipeline.cache import CrawlCache
from directory_pipeline.candidates import CandidateStore
from directory_pipeline.classifier import KeywordConfig, classify
from directory_pipeline.crawler import CrawlEngine
from directory_pipeline.enrichment import EnrichmentEngine
from directory_pipeline.errors import InsufficientData, InvalidURL, PipelineError
from directory_pipeline.generation import ContentGenerator
from directory_pipeline.models import BatchReport, Candidate, CrawledSite, ProcessedDomainSet
from directory_pipeline.records import RecordBuilder
from directory_pipeline.storage import RecordStore, write_json_atomic
from directory_pipeline.sync import save_processed_domains, sync

log = logging.getLogger(__name__)


def _evaluate(store: CandidateStore, candidate: Candidate, site: CrawledSite, keyword_config: KeywordConfig) -> Candidate:
    classification = classify(site, keyword_config)
    log.info(
        "Classified %s: relevant=%s (score %d), chain=%s, confidence=%s",
        candidate.domain,
        classification.is_relevant,
        classification.relevance_score,
        classification.is_potential_chain,
        classification.confidence,
    )
    return store.transition(
        candidate.domain,
        "evaluated",
        classification=classification,
        contacts=site.contacts,
        crawled_at=site.crawled_at,
    )


async def run_crawl_stage(
    store: CandidateStore,
    engine: CrawlEngine,
    keyword_config: KeywordConfig,
    limit: Optional[int] = None,
) -> BatchReport:
    """Crawl and classify pending candidates. Cached crawl output is reused."""
    report = BatchReport(stage="crawl")
    pending = list(store.query(status="pending"))
    if limit is not None:
        pending = pending[:limit]
    log.info("Crawl stage: %d pending candidate(s).", len(pending))

    for candidate in pending:
        domain = candidate.domain
        site = engine.cache.get(domain) if engine.cache is not None else None
        reason = "cached" if site is not None else ""
        try:
            if site is None:
                site = await engine.crawl(candidate.url)
        except InvalidURL as e:
            log.warning("Skipping %s: %s", domain, e)
            store.transition(domain, "skipped", reason=str(e))
            report.add(domain, "skipped", str(e))
            continue
        except PipelineError as e:
            log.error("Crawl failed for %s: %s", domain, e)
            store.transition(domain, "error", error=str(e))
            report.add(domain, "error", str(e))
            continue
        except Exception as e:
            log.error("Unexpected error crawling %s: %s", domain, e, exc_info=True)
            store.transition(domain, "error", error=f"{type(e).__name__}: {e}")
            report.add(domain, "error", f"{type(e).__name__}: {e}")
            continue

        _evaluate(store, candidate, site, keyword_config)
        report.add(domain, "success", reason, value=site)
    return report


def reconcile(store: CandidateStore, cache: CrawlCache, keyword_config: KeywordConfig) -> BatchReport:
    """
    Crash recovery: pending or errored candidates whose crawl output is
    already in the cache become evaluated without re-crawling.
    """
    report = BatchReport(stage="reconcile")
    for candidate in list(store.query(status=("pending", "error"))):
        site = cache.get(candidate.domain)
        if site is None:
            report.add(candidate.domain, "skipped", "no cached crawl")
            continue
        if candidate.status == "error":
            store.transition(candidate.domain, "pending")
        _evaluate(store, candidate, site, keyword_config)
        report.add(candidate.domain, "success", "recovered from cache")
    log.info("Reconciled %d candidate(s) from the crawl cache.", report.tally()["success"])
    return report


async def run_build_stage(
    store: CandidateStore,
    cache: Optional[CrawlCache],
    builder: RecordBuilder,
    record_store: RecordStore,
    generator: Optional[ContentGenerator] = None,
    *,
    reject_irrelevant: bool = True,
) -> BatchReport:
    """Turn evaluated candidates into records, or reject them with a reason."""
    report = BatchReport(stage="build")
    for candidate in list(store.query(status="evaluated")):
        domain = candidate.domain
        existing = record_store.get_by_domain(domain)
        if existing is not None:
            # a previous run saved the record but died before the transition
            store.transition(domain, "listed", reason=f"record {existing.slug}")
            report.add(domain, "skipped", f"record {existing.slug} already exists")
            continue

        classification = candidate.classification
        if classification is None:
            report.add(domain, "error", "candidate has no classification")
            continue
        if reject_irrelevant and not classification.is_relevant:
            reason = f"not relevant (score {classification.relevance_score})"
            store.transition(domain, "rejected", reason=reason)
            report.add(domain, "skipped", reason)
            continue

        site = cache.get(domain) if cache is not None else None
        if site is None:
            log.warning("No cached crawl for %s; building from the contacts stored on the candidate.", domain)
        try:
            generated = None
            if generator is not None and site is not None:
                generated = await generator.generate(candidate, site)
            record = builder.build(candidate, site, classification, generated=generated)
            record_store.add(record)
        except InsufficientData as e:
            log.warning("Rejecting %s: %s", domain, e)
            store.transition(domain, "rejected", reason=str(e))
            report.add(domain, "skipped", str(e))
            continue
        except PipelineError as e:
            log.error("Build failed for %s: %s", domain, e)
            report.add(domain, "error", str(e))
            continue
        except Exception as e:
            log.error("Unexpected error building %s: %s", domain, e, exc_info=True)
            report.add(domain, "error", f"{type(e).__name__}: {e}")
            continue

        store.transition(domain, "listed", reason=f"record {record.slug}")
        reason = "" if site is not None else "no cached crawl; used stored contacts"
        report.add(domain, "success", reason, value=record)
    return report


async def run_enrich_stage(record_store: RecordStore, engine: EnrichmentEngine, force: bool = False) -> BatchReport:
    report = await engine.enrich_batch(record_store, force=force)
    for record in report.values():
        record_store.save(record)
    return report


def run_audit_stage(
    record_store: RecordStore,
    rules: list[AuditRule],
    report_path: Optional[Path] = None,
) -> tuple[BatchReport, dict[str, Any]]:
    """Audit every record, persist them, and regenerate the aggregate report."""
    batch = BatchReport(stage="audit")
    for record in audit_all(record_store, rules):
        record_store.save(record)
        reason = f"{len(record.review_issues)} issue(s)" if record.needs_review else ""
        batch.add(record.slug, "success", reason, value=record)
    summary = build_report(record_store)
    if report_path is not None:
        write_json_atomic(report_path, summary)
    log.info("Audit: %d record(s), %d need review.", summary["total"], summary["needs_review"])
    return batch, summary


def run_sync(
    record_store: RecordStore, store: CandidateStore, path: Optional[Path] = None
) -> ProcessedDomainSet:
    processed = sync(record_store, store)
    if path is not None:
        save_processed_domains(path, processed)
    return processed

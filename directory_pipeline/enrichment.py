# directory_pipeline/enrichment.py
"""
Enrichment against a places/ratings provider.

A provider result is accepted as the same business when either

1. its listed website normalizes to the record's domain, or
2. its name is similar enough (difflib ratio) AND the record's city appears
   in its formatted address.

On a match the provider is authoritative for the name and coordinates, but
only fills scraped fields that are still empty. Email and social links are
never touched.
"""
from __future__ import annotations

import logging
import re
from difflib import SequenceMatcher
from typing import Any, Iterable, Mapping

from directory_pipeline.domains import normalize_domain
from directory_pipeline.errors import InvalidURL, NoMatch, PipelineError
from directory_pipeline.extraction import format_phone
from directory_pipeline.models import BatchReport, Issue, Record, utc_now
from directory_pipeline.providers import PlaceResult, PlacesProvider
from directory_pipeline.records import place_location
from directory_pipeline.throttle import ENRICHMENT_DELAY_FLOOR, RateLimiter

log = logging.getLogger(__name__)

NO_MATCH_MESSAGE = "No matching external listing"

_NAME_NOISE_RE = re.compile(r"[^a-z0-9 ]+")


def _normalize_name(name: str) -> str:
    return " ".join(_NAME_NOISE_RE.sub(" ", (name or "").lower()).split())


def name_similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, _normalize_name(a), _normalize_name(b)).ratio()


def _website_domain(place: PlaceResult) -> str | None:
    if not place.website:
        return None
    try:
        return normalize_domain(place.website)
    except InvalidURL:
        return None


class EnrichmentEngine:
    def __init__(
        self,
        provider: PlacesProvider,
        *,
        limiter: RateLimiter | None = None,
        similarity_threshold: float = 0.5,
    ) -> None:
        self.provider = provider
        self.limiter = limiter or RateLimiter(ENRICHMENT_DELAY_FLOOR, floor=ENRICHMENT_DELAY_FLOOR)
        self.similarity_threshold = similarity_threshold

    @classmethod
    def from_config(cls, config: Mapping[str, Any], provider: PlacesProvider) -> "EnrichmentEngine":
        raw = config.get("enrichment", {})
        return cls(
            provider,
            limiter=RateLimiter(
                float(raw.get("delay_seconds", ENRICHMENT_DELAY_FLOOR)),
                floor=ENRICHMENT_DELAY_FLOOR,
            ),
            similarity_threshold=float(raw.get("name_similarity_threshold", 0.5)),
        )

    def query_for(self, record: Record) -> str:
        return " ".join(p for p in (record.name, record.city, record.state) if p)

    def match(self, record: Record, results: Iterable[PlaceResult]) -> PlaceResult:
        """Pick the verified result. Raises NoMatch when none qualifies."""
        results = list(results)
        for place in results:
            if _website_domain(place) == record.domain:
                log.debug("Matched %s by website domain.", record.domain)
                return place

        city = (record.city or "").lower()
        for place in results:
            score = name_similarity(record.name, place.name)
            if score > self.similarity_threshold and city and city in place.formatted_address.lower():
                log.debug("Matched %s by name (%.2f) and city.", record.domain, score)
                return place
        raise NoMatch(f"No verified listing for {record.name!r} ({record.domain})")

    def apply(self, record: Record, place: PlaceResult) -> Record:
        """Merge a verified place into the record: overwrite name, fill blanks, write coordinates."""
        record.name = place.name.strip() or record.name
        record.sources["name"] = "places"

        phone = format_phone(place.phone) if place.phone else None
        if not record.phone and phone:
            record.phone = phone
            record.sources["phone"] = "places"

        for key, value in place_location(place).items():
            if key == "state":
                # state is part of the slug; never rewrite it from enrichment
                continue
            if not getattr(record, key) and value:
                setattr(record, key, value)
                record.sources[key] = "places"

        record.latitude = place.latitude
        record.longitude = place.longitude
        record.sources["coordinates"] = "places"
        record.rating = place.rating
        record.review_count = place.review_count
        record.place_id = place.place_id
        record.hours = list(place.hours)
        record.external_verified = True
        record.updated_at = utc_now()
        return record

    async def enrich(self, record: Record) -> Record:
        """
        Look the record up and merge the verified listing.

        No match is an expected outcome: the record is marked unverified with
        an info issue. ProviderError propagates to the caller.
        """
        await self.limiter.wait()
        results = await self.provider.search(self.query_for(record))
        try:
            place = self.match(record, results)
        except NoMatch as e:
            log.info("%s", e)
            record.external_verified = False
            issue = Issue(severity="info", field="external_verified", message=NO_MATCH_MESSAGE)
            if issue not in record.review_issues:
                record.review_issues.append(issue)
            record.updated_at = utc_now()
            return record
        log.info("Enriched %s from place %s.", record.domain, place.place_id or place.name)
        return self.apply(record, place)

    async def enrich_batch(self, records: Iterable[Record], force: bool = False) -> BatchReport:
        """Enrich each record; already-attempted records are skipped unless forced."""
        report = BatchReport(stage="enrich")
        for record in records:
            if record.external_verified is not None and not force:
                report.add(record.slug, "skipped", "already enriched")
                continue
            try:
                await self.enrich(record)
            except PipelineError as e:
                log.error("Enrichment failed for %s: %s", record.slug, e)
                report.add(record.slug, "error", str(e))
            except Exception as e:
                log.error("Unexpected error enriching %s: %s", record.slug, e, exc_info=True)
                report.add(record.slug, "error", f"{type(e).__name__}: {e}")
            else:
                reason = "" if record.external_verified else "no match"
                report.add(record.slug, "success", reason, value=record)
        return report

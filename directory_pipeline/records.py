# directory_pipeline/records.py
"""
Record Builder: turns an evaluated Candidate plus its CrawledSite into a Record.

Field families merge by source priority, never "last write wins":

- identity/location: places result > scraped data > inference
- contact (email, social links): scrape only
- content (summary, description, tags): generation when used, else the
  scraped meta description
"""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Optional

from slugify import slugify

from directory_pipeline.domains import domain_label
from directory_pipeline.errors import InsufficientData
from directory_pipeline.extraction import find_address, format_phone, is_bad_name, split_title
from directory_pipeline.generation import GeneratedContent
from directory_pipeline.models import Candidate, Classification, Contacts, CrawledSite, Record, Region, utc_now
from directory_pipeline.providers import PlaceResult

log = logging.getLogger(__name__)

_APOSTROPHES_RE = re.compile(r"['’`]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+", re.I)
_LOCATION_FIELDS = ("street", "city", "state", "postal_code")


def kebab(text: str) -> str:
    """Lowercase kebab-case with apostrophes dropped ("Joe's" -> "joes")."""
    return slugify(_APOSTROPHES_RE.sub("", text or ""))


def name_from_domain(domain: str) -> str:
    """'joes-plumbing.com' -> 'Joes Plumbing'."""
    words = [w for w in _NON_ALNUM_RE.split(domain_label(domain)) if w]
    return " ".join(w.capitalize() for w in words)


def split_region_display(display_name: str) -> tuple[Optional[str], Optional[str]]:
    """'Dallas, TX' -> ('Dallas', 'TX'). A bare name yields (name, None)."""
    head, sep, tail = (display_name or "").rpartition(",")
    if not sep:
        return (display_name.strip() or None), None
    state = tail.strip().upper()
    return head.strip() or None, (state if re.fullmatch(r"[A-Z]{2}", state) else None)


def place_location(place: PlaceResult) -> dict[str, str]:
    """Structured location from a place result, parsing the formatted address as needed."""
    parts = {k: getattr(place, k) for k in _LOCATION_FIELDS if getattr(place, k)}
    if not {"city", "state"} <= parts.keys() and place.formatted_address:
        for key, value in find_address(place.formatted_address).items():
            parts.setdefault(key, value)
    return parts


def scraped_contacts(candidate: Candidate, site: CrawledSite | None) -> Contacts:
    """Contacts from the cached crawl, else the copy the crawl stage stored on the candidate."""
    if site is not None:
        return site.contacts
    return candidate.contacts or Contacts()


class RecordBuilder:
    def __init__(self, regions: Mapping[str, Region] | None = None, existing_slugs: Iterable[str] = ()) -> None:
        self.regions = dict(regions or {})
        self._slugs: set[str] = set(existing_slugs)

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], regions: Mapping[str, Region], existing_slugs: Iterable[str] = ()
    ) -> "RecordBuilder":
        # No builder-specific settings yet; kept for symmetry with the other stages.
        return cls(regions, existing_slugs)

    # ---- identity ----------------------------------------------------------

    def resolve_name(self, candidate: Candidate, site: CrawledSite | None) -> tuple[str, str]:
        """
        Returns (name, source). Tries the search title, then the crawler's
        business name, then a name derived from the domain.
        """
        options = [
            (split_title(candidate.title), "scrape"),
            (site.business_name if site else None, "scrape"),
            (name_from_domain(candidate.domain), "inference"),
        ]
        for name, source in options:
            if name and not is_bad_name(name):
                return name.strip(), source
        raise InsufficientData(f"No usable business name for {candidate.domain}")

    def make_slug(self, name: str, city: str, state: str) -> str:
        """kebab(name)-kebab(city)-state, suffixed -2, -3, ... on collision. Reserves the slug."""
        base = "-".join(p for p in (kebab(name), kebab(city), kebab(state)) if p)
        slug = base
        n = 2
        while slug in self._slugs:
            slug = f"{base}-{n}"
            n += 1
        self._slugs.add(slug)
        return slug

    # ---- location ----------------------------------------------------------

    def _infer_location(self, region_key: Optional[str]) -> dict[str, str]:
        region = self.regions.get(region_key or "")
        if region is None:
            return {}
        city, state = split_region_display(region.display_name)
        parts = {}
        if city:
            parts["city"] = city
        if region.state or state:
            parts["state"] = (region.state or state).upper()
        return parts

    def _resolve_location(
        self, candidate: Candidate, site: CrawledSite | None, place: PlaceResult | None
    ) -> tuple[dict[str, str], dict[str, str]]:
        """Per-field location values and their sources, highest priority first."""
        layers = [
            (place_location(place) if place else {}, "places"),
            (dict(scraped_contacts(candidate, site).address_parts), "scrape"),
            (self._infer_location(candidate.region), "inference"),
        ]
        values: dict[str, str] = {}
        sources: dict[str, str] = {}
        for parts, source in layers:
            for key in _LOCATION_FIELDS:
                if key not in values and parts.get(key):
                    values[key] = parts[key]
                    sources[key] = source
        return values, sources

    # ---- build -------------------------------------------------------------

    def build(
        self,
        candidate: Candidate,
        site: CrawledSite | None,
        classification: Classification,
        *,
        place: PlaceResult | None = None,
        generated: GeneratedContent | None = None,
    ) -> Record:
        """
        Raises InsufficientData when no usable name, city or state can be resolved.
        """
        sources: dict[str, str] = {}
        if place is not None and place.name and not is_bad_name(place.name):
            name, sources["name"] = place.name.strip(), "places"
        else:
            name, sources["name"] = self.resolve_name(candidate, site)

        contacts = scraped_contacts(candidate, site)
        location, location_sources = self._resolve_location(candidate, site, place)
        city, state = location.get("city"), location.get("state")
        if not city or not state:
            raise InsufficientData(f"No city/state for {candidate.domain}")
        sources.update(location_sources)

        phone = None
        if place is not None and place.phone:
            phone = format_phone(place.phone) or place.phone
            sources["phone"] = "places"
        elif contacts.phones:
            phone = contacts.phones[0]
            sources["phone"] = "scrape"

        email = contacts.emails[0] if contacts.emails else None
        social_links = dict(contacts.social_links)
        if email:
            sources["email"] = "scrape"
        if social_links:
            sources["social_links"] = "scrape"

        summary = None
        description = None
        tags: list[str] = []
        category = candidate.category
        if generated is not None:
            summary, description, tags = generated.summary, generated.description, list(generated.tags)
            sources.update(summary="generation", description="generation", tags="generation")
            if category is None and generated.category:
                category = kebab(generated.category)
        elif site is not None and site.meta_description:
            description = site.meta_description
            sources["description"] = "scrape"

        record = Record(
            slug=self.make_slug(name, city, state),
            domain=candidate.domain,
            name=name,
            street=location.get("street"),
            city=city,
            state=state,
            postal_code=location.get("postal_code"),
            region=candidate.region,
            category=category,
            website=(site.url if site else candidate.url),
            phone=phone,
            email=email,
            social_links=social_links,
            summary=summary,
            description=description,
            tags=tags,
            confidence=classification.confidence,
            is_potential_chain=classification.is_potential_chain,
            sources=sources,
            created_at=utc_now(),
        )
        if place is not None:
            record.rating = place.rating
            record.review_count = place.review_count
            record.place_id = place.place_id
            record.latitude = place.latitude
            record.longitude = place.longitude
            record.hours = list(place.hours)
            record.external_verified = True
        log.info("Built record %s for %s (name from %s).", record.slug, record.domain, sources["name"])
        return record

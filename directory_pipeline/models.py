# Defines the data structures used throughout the pipeline.

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Optional

CandidateStatus = Literal["pending", "evaluated", "listed", "rejected", "skipped", "error"]
Severity = Literal["critical", "warning", "info"]
Confidence = Literal["high", "medium", "low"]
Outcome = Literal["success", "skipped", "error"]

TERMINAL_STATUSES = frozenset({"listed", "rejected", "skipped"})
ACTIVE_STATUSES = frozenset({"pending", "evaluated", "error"})
REVIEW_SEVERITIES = frozenset({"critical", "warning"})


def utc_now() -> str:
    """Current time as an ISO 8601 UTC string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _known_fields(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class Classification:
    """Relevance verdict for a crawled site."""

    is_relevant: bool
    relevance_score: int
    is_potential_chain: bool
    chain_score: int
    confidence: Confidence

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Classification":
        return cls(**_known_fields(cls, data))


@dataclass
class Contacts:
    """Contact details pulled from a site. Lists are ordered and unique."""

    phones: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)
    address: Optional[str] = None
    # street / city / state / postal_code, when the source had structure
    address_parts: dict[str, str] = field(default_factory=dict)
    social_links: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Contacts":
        return cls(**_known_fields(cls, data))


@dataclass
class Candidate:
    """A discovered URL under evaluation."""

    url: str
    domain: str
    title: str = ""
    snippet: str = ""
    region: Optional[str] = None
    category: Optional[str] = None
    status: CandidateStatus = "pending"
    discovered_at: str = field(default_factory=utc_now)
    classification: Optional[Classification] = None
    contacts: Optional[Contacts] = None
    crawled_at: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Candidate":
        kwargs = _known_fields(cls, data)
        if kwargs.get("classification") is not None:
            kwargs["classification"] = Classification.from_dict(kwargs["classification"])
        if kwargs.get("contacts") is not None:
            kwargs["contacts"] = Contacts.from_dict(kwargs["contacts"])
        return cls(**kwargs)


@dataclass
class Page:
    """One fetched page of a site, already cleaned."""

    url: str
    title: str = ""
    body_text: str = ""
    headings: list[str] = field(default_factory=list)


@dataclass
class PageError:
    url: str
    error: str


@dataclass
class CrawledSite:
    """
    Cached extraction result keyed by domain.
    Lives independently of the Candidate that produced it.
    """

    domain: str
    url: str
    crawled_at: str = field(default_factory=utc_now)
    pages: list[Page] = field(default_factory=list)
    contacts: Contacts = field(default_factory=Contacts)
    business_name: Optional[str] = None
    meta_description: Optional[str] = None
    page_errors: list[PageError] = field(default_factory=list)

    def text(self) -> str:
        """All page titles, headings and body text joined together."""
        parts: list[str] = []
        for page in self.pages:
            parts.append(page.title)
            parts.extend(page.headings)
            parts.append(page.body_text)
        return "\n".join(p for p in parts if p)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CrawledSite":
        kwargs = _known_fields(cls, data)
        kwargs["pages"] = [Page(**_known_fields(Page, p)) for p in kwargs.get("pages", [])]
        kwargs["contacts"] = Contacts.from_dict(kwargs.get("contacts") or {})
        kwargs["page_errors"] = [
            PageError(**_known_fields(PageError, e)) for e in kwargs.get("page_errors", [])
        ]
        return cls(**kwargs)


@dataclass(frozen=True)
class Issue:
    """An audit finding. Recomputed wholesale on every audit pass."""

    severity: Severity
    field: str
    message: str


@dataclass
class Record:
    """The canonical output unit: one directory listing."""

    slug: str
    domain: str
    name: str
    # location
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    region: Optional[str] = None
    category: Optional[str] = None
    # contact
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    social_links: dict[str, str] = field(default_factory=dict)
    # content
    summary: Optional[str] = None
    description: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    # classification echo
    confidence: Optional[Confidence] = None
    is_potential_chain: bool = False
    # enrichment
    rating: Optional[float] = None
    review_count: Optional[int] = None
    place_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    hours: list[str] = field(default_factory=list)
    external_verified: Optional[bool] = None
    # field name -> "places" | "scrape" | "inference" | "generation"
    sources: dict[str, str] = field(default_factory=dict)
    # audit
    needs_review: bool = False
    review_issues: list[Issue] = field(default_factory=list)
    last_audit_at: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Record":
        kwargs = _known_fields(cls, data)
        kwargs["review_issues"] = [
            Issue(**_known_fields(Issue, i)) for i in kwargs.get("review_issues", [])
        ]
        return cls(**kwargs)


@dataclass(frozen=True)
class BlacklistRule:
    """Exclusion rules. Immutable per run; loaded once."""

    exact_domains: frozenset[str] = frozenset()
    domain_patterns: tuple[str, ...] = ()
    url_patterns: tuple[str, ...] = ()
    reasons: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BlacklistRule":
        return cls(
            exact_domains=frozenset(d.strip().lower() for d in data.get("exact_domains", [])),
            domain_patterns=tuple(data.get("domain_patterns", [])),
            url_patterns=tuple(data.get("url_patterns", [])),
            reasons=dict(data.get("reasons", {})),
        )


@dataclass(frozen=True)
class ProcessedDomainSet:
    """Domains considered done, regardless of outcome."""

    domains: frozenset[str] = frozenset()
    synced_at: str = field(default_factory=utc_now, compare=False)

    def __contains__(self, domain: object) -> bool:
        return domain in self.domains

    def __len__(self) -> int:
        return len(self.domains)


@dataclass(frozen=True)
class Region:
    key: str
    display_name: str
    state: Optional[str] = None
    sub_regions: tuple[str, ...] = ()
    search_terms: tuple[str, ...] = ()

    def terms(self) -> list[str]:
        """Search terms, falling back to the display name plus sub-regions."""
        if self.search_terms:
            return list(self.search_terms)
        return [self.display_name, *self.sub_regions]


@dataclass(frozen=True)
class Category:
    key: str
    search_terms: tuple[str, ...] = ()

    def terms(self) -> list[str]:
        return list(self.search_terms) or [self.key.replace("-", " ")]


@dataclass
class ItemOutcome:
    """What happened to one item in a batch."""

    key: str
    status: Outcome
    reason: str = ""
    value: Any = None


@dataclass
class BatchReport:
    """Per-item outcomes for a batch stage, plus a tally."""

    stage: str
    outcomes: list[ItemOutcome] = field(default_factory=list)

    def add(self, key: str, status: Outcome, reason: str = "", value: Any = None) -> ItemOutcome:
        outcome = ItemOutcome(key=key, status=status, reason=reason, value=value)
        self.outcomes.append(outcome)
        return outcome

    def tally(self) -> dict[str, int]:
        counts = {"success": 0, "skipped": 0, "error": 0}
        for o in self.outcomes:
            counts[o.status] += 1
        counts["total"] = len(self.outcomes)
        return counts

    def values(self) -> list[Any]:
        """Values of the successful outcomes, in order."""
        return [o.value for o in self.outcomes if o.status == "success"]

    def errors(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.status == "error"]

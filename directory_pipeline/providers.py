# directory_pipeline/providers.py
"""
Narrow interfaces to the external collaborators.

Concrete clients live outside this package; anything implementing these
protocols can be plugged into the engines. Implementations must raise
ProviderError for timeouts, network failures, non-2xx answers and quota
exhaustion.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol


@dataclass
class SearchResult:
    url: str
    title: str = ""
    snippet: str = ""


@dataclass
class PlaceResult:
    """One listing returned by a places/ratings provider."""

    name: str
    formatted_address: str = ""
    website: Optional[str] = None
    phone: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    place_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    hours: list[str] = field(default_factory=list)
    photos: list[str] = field(default_factory=list)
    # Structured address components when the provider has them.
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass
class FetchedPage:
    url: str
    final_url: str
    status: int
    html: str


class SearchProvider(Protocol):
    async def search(self, query: str, page: int) -> list[SearchResult]:
        """Ranked results for one page (1-based) of a query."""
        ...


class PlacesProvider(Protocol):
    async def search(self, query: str) -> list[PlaceResult]:
        ...


class GenerationProvider(Protocol):
    async def generate(self, prompt: str) -> Mapping[str, Any]:
        """Structured JSON answer. Treated as untrusted input."""
        ...


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> FetchedPage:
        ...

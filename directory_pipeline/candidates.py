# directory_pipeline/candidates.py
"""
Candidate store: discovered URLs with a status lifecycle.

State machine:

    pending   -> evaluated | error | skipped
    evaluated -> listed | rejected | skipped
    error     -> pending            (manual retry)
    listed, rejected, skipped       (terminal)

At most one candidate per normalized domain is active at a time. Terminal
candidates are kept forever as dedup history.
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Collection, Iterator

from directory_pipeline.domains import normalize_domain
from directory_pipeline.errors import InvalidTransition, InvalidURL
from directory_pipeline.models import (
    TERMINAL_STATUSES,
    Candidate,
    CandidateStatus,
)
from directory_pipeline.storage import read_json, write_json_atomic

log = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"evaluated", "error", "skipped"}),
    "evaluated": frozenset({"listed", "rejected", "skipped"}),
    "error": frozenset({"pending"}),
    "listed": frozenset(),
    "rejected": frozenset(),
    "skipped": frozenset(),
}

_PAYLOAD_FIELDS = frozenset({"classification", "contacts", "crawled_at", "error", "reason"})


class CandidateStore:
    """Ordered collection of Candidates keyed by normalized domain."""

    def __init__(self, candidates: Collection[Candidate] = ()) -> None:
        self._items: dict[str, Candidate] = {}
        self._lock = threading.RLock()
        for c in candidates:
            self._admit(c, "constructor")

    def _admit(self, candidate: Candidate, source: object) -> None:
        """Key an already-persisted candidate by its normalized domain, keeping its status."""
        try:
            domain = normalize_domain(candidate.domain or candidate.url)
        except InvalidURL as e:
            log.warning("Dropping candidate with malformed domain from %s: %s", source, e)
            return
        if domain in self._items:
            log.warning("Duplicate candidate for %s in %s; keeping first.", domain, source)
            return
        candidate.domain = domain
        self._items[domain] = candidate

    # ---- persistence -------------------------------------------------------

    @classmethod
    def load(cls, path: Path) -> "CandidateStore":
        raw = read_json(path, default=[])
        store = cls()
        for item in raw:
            store._admit(Candidate.from_dict(item), path)
        log.info("Loaded %d candidate(s) from %s", len(store), path)
        return store

    def save(self, path: Path) -> None:
        with self._lock:
            data = [c.to_dict() for c in self._items.values()]
        write_json_atomic(path, data)

    # ---- access ------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(list(self._items.values()))

    def __contains__(self, domain: object) -> bool:
        return domain in self._items

    def get(self, domain: str) -> Candidate | None:
        return self._items.get(domain)

    def active_domains(self) -> set[str]:
        return {d for d, c in self._items.items() if not c.is_terminal}

    # ---- operations --------------------------------------------------------

    def upsert(self, candidate: Candidate) -> Candidate | None:
        """
        Insert or merge a candidate.

        - active candidate for the domain: update in place, keep discovered_at and status
        - terminal candidate for the domain: drop (returns None)
        - otherwise: insert as pending
        """
        domain = normalize_domain(candidate.domain or candidate.url)
        with self._lock:
            existing = self._items.get(domain)
            if existing is not None and existing.is_terminal:
                log.info(
                    "Dropping rediscovered %s: already %s.", domain, existing.status
                )
                return None
            if existing is not None:
                existing.url = candidate.url or existing.url
                existing.title = candidate.title or existing.title
                existing.snippet = candidate.snippet or existing.snippet
                existing.region = candidate.region or existing.region
                existing.category = candidate.category or existing.category
                log.debug("Merged candidate %s (status=%s).", domain, existing.status)
                return existing

            candidate.domain = domain
            candidate.status = "pending"
            self._items[domain] = candidate
            log.debug("Inserted candidate %s.", domain)
            return candidate

    def query(
        self,
        status: str | Collection[str] | None = None,
        region: str | None = None,
        category: str | None = None,
        predicate: Callable[[Candidate], bool] | None = None,
    ) -> Iterator[Candidate]:
        """
        Lazily yield matching candidates ordered by discovered_at ascending.
        Calling it again starts over; querying never mutates the store.
        """
        statuses = {status} if isinstance(status, str) else (set(status) if status else None)
        with self._lock:
            snapshot = sorted(self._items.values(), key=lambda c: c.discovered_at)
        for c in snapshot:
            if statuses is not None and c.status not in statuses:
                continue
            if region is not None and c.region != region:
                continue
            if category is not None and c.category != category:
                continue
            if predicate is not None and not predicate(c):
                continue
            yield c

    def transition(self, domain: str, new_status: CandidateStatus, **payload: Any) -> Candidate:
        """
        Move a candidate to new_status, applying payload fields.
        Raises InvalidTransition (store unchanged) when the edge is not allowed.
        """
        unknown = set(payload) - _PAYLOAD_FIELDS
        if unknown:
            raise TypeError(f"Unknown transition payload field(s): {sorted(unknown)}")

        domain = normalize_domain(domain)
        with self._lock:
            candidate = self._items.get(domain)
            if candidate is None:
                raise KeyError(f"No candidate for domain {domain!r}")
            if new_status not in ALLOWED_TRANSITIONS.get(candidate.status, frozenset()):
                raise InvalidTransition(domain, candidate.status, new_status)

            previous = candidate.status
            candidate.status = new_status
            for key, value in payload.items():
                setattr(candidate, key, value)
            if new_status == "pending":
                candidate.error = None
            log.info("Candidate %s: %s -> %s", domain, previous, new_status)
            return candidate

    def terminal_domains(self) -> set[str]:
        return {d for d, c in self._items.items() if c.status in TERMINAL_STATUSES}

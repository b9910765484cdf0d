# directory_pipeline/sync.py
"""
Processed-domain synchronizer.

The processed set is rebuilt from scratch every run: the union of every
Record's domain and every terminal Candidate's domain. Being a pure function
of current state, it converges no matter how many earlier runs were cut short.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from directory_pipeline.candidates import CandidateStore
from directory_pipeline.domains import normalize_domain
from directory_pipeline.errors import InvalidURL
from directory_pipeline.models import ProcessedDomainSet, Record, utc_now
from directory_pipeline.storage import read_json, write_json_atomic

log = logging.getLogger(__name__)


def sync(records: Iterable[Record], candidate_store: CandidateStore) -> ProcessedDomainSet:
    domains: set[str] = set()
    sources = [r.domain for r in records]
    sources.extend(candidate_store.terminal_domains())
    for raw in sources:
        try:
            domains.add(normalize_domain(raw))
        except InvalidURL as e:
            log.warning("Skipping malformed domain during sync: %s", e)
    log.info("Processed-domain set rebuilt: %d domain(s).", len(domains))
    return ProcessedDomainSet(domains=frozenset(domains), synced_at=utc_now())


def save_processed_domains(path: Path, processed: ProcessedDomainSet) -> None:
    write_json_atomic(
        path,
        {
            "domains": sorted(processed.domains),
            "count": len(processed),
            "last_synced": processed.synced_at,
        },
    )


def load_processed_domains(path: Path) -> ProcessedDomainSet:
    """Read the processed set; a missing file is an empty set. Accepts a bare list too."""
    data = read_json(path, default=None)
    if data is None:
        return ProcessedDomainSet()
    if isinstance(data, list):
        return ProcessedDomainSet(domains=frozenset(data))
    return ProcessedDomainSet(
        domains=frozenset(data.get("domains", [])),
        synced_at=data.get("last_synced") or utc_now(),
    )

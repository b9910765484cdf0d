# directory_pipeline/storage.py
"""
JSON persistence for pipeline state.

Every write goes to a temporary file in the same directory and is moved into
place with os.replace, so a killed process leaves either the old or the new
document on disk, never a torn one.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from directory_pipeline.errors import DuplicateRecord
from directory_pipeline.models import Record

log = logging.getLogger(__name__)


def _json_default(o: Any) -> Any:
    # Minimal, safe encoder for dataclasses, sets and datetimes.
    if isinstance(o, datetime):
        return o.isoformat()
    if is_dataclass(o) and not isinstance(o, type):
        return asdict(o)
    if isinstance(o, (set, frozenset)):
        return sorted(o)
    return str(o)


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON document; a missing file yields `default`."""
    path = Path(path)
    if not path.exists():
        return default
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(path: Path, data: Any) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=_json_default)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class RecordStore:
    """
    One JSON document per Record, keyed by slug, under a directory.
    Enforces domain and slug uniqueness across the set.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self._records: dict[str, Record] = {}
        self._by_domain: dict[str, str] = {}

    def load(self) -> "RecordStore":
        self._records.clear()
        self._by_domain.clear()
        if not self.directory.exists():
            return self
        for path in sorted(self.directory.glob("*.json")):
            data = read_json(path)
            record = Record.from_dict(data)
            if record.domain in self._by_domain:
                log.warning(
                    "Duplicate domain %s in %s (already in %s.json); ignoring.",
                    record.domain,
                    path.name,
                    self._by_domain[record.domain],
                )
                continue
            self._records[record.slug] = record
            self._by_domain[record.domain] = record.slug
        log.info("Loaded %d record(s) from %s", len(self._records), self.directory)
        return self

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(list(self._records.values()))

    def slugs(self) -> set[str]:
        return set(self._records)

    def domains(self) -> set[str]:
        return set(self._by_domain)

    def get(self, slug: str) -> Record | None:
        return self._records.get(slug)

    def get_by_domain(self, domain: str) -> Record | None:
        slug = self._by_domain.get(domain)
        return self._records.get(slug) if slug else None

    def add(self, record: Record) -> None:
        """Insert a new record and write it. Raises DuplicateRecord on domain/slug reuse."""
        if record.domain in self._by_domain:
            raise DuplicateRecord(f"A record for domain {record.domain} already exists")
        if record.slug in self._records:
            raise DuplicateRecord(f"Slug {record.slug} is already taken")
        self._records[record.slug] = record
        self._by_domain[record.domain] = record.slug
        self.save(record)

    def save(self, record: Record) -> None:
        """Write an existing (or just added) record back to disk."""
        if self._records.get(record.slug) is not record:
            raise KeyError(f"Unknown record slug: {record.slug}")
        write_json_atomic(self.directory / f"{record.slug}.json", record.to_dict())

    def save_all(self) -> None:
        for record in self:
            self.save(record)

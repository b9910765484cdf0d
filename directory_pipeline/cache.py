# directory_pipeline/cache.py
"""
File-backed crawl cache.

- Storage: diskcache.Cache (SQLite-backed, survives a killed process).
- Location: default is a visible folder in CWD; optionally an OS-specific app cache dir via platformdirs.
- Scope: one CrawledSite document per normalized domain. Independent of the
  Candidate/Record lifecycle; reconciliation after a crash reads from here.
"""
from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

import diskcache
from platformdirs import user_cache_dir as _user_cache_dir

from directory_pipeline.models import CrawledSite

log = logging.getLogger(__name__)


@dataclasses.dataclass
class CacheConfig:
    enabled: bool = True
    # Either a concrete directory path, or special marker "os-default"
    # for an OS-specific global cache location.
    directory: str = ".directory_pipeline_cache"
    expire_seconds: Optional[int] = None  # None = keep until cleared

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "CacheConfig":
        raw = config.get("cache", {})
        expire = raw.get("expire_seconds")
        return cls(
            enabled=bool(raw.get("enabled", True)),
            directory=str(raw.get("directory", ".directory_pipeline_cache")),
            expire_seconds=int(expire) if expire else None,
        )


class CrawlCache:
    """
    Thin wrapper over diskcache with a tiny, explicit key/value contract.
    Keys: normalized domains.
    Values: CrawledSite.to_dict() documents.
    """

    def __init__(self, cfg: CacheConfig, app_name: str = "directory_pipeline"):
        self.cfg = cfg
        self.app_name = app_name
        self._cache: diskcache.Cache | None = None

        if not cfg.enabled:
            log.warning("Crawl cache not enabled; crash recovery will re-crawl.")
            return
        self.create_cache_object()

    def create_cache_object(self) -> None:
        if self._cache is not None:
            return
        directory = self.cfg.directory
        if directory == "os-default":
            directory = _user_cache_dir(self.app_name, appauthor=False)

        log.info("Crawl cache at %s", directory)
        self._cache = diskcache.Cache(directory)

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()

    def __enter__(self) -> "CrawlCache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ---- Introspection helpers ---------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._cache is not None

    @property
    def directory(self) -> Optional[str]:
        """Returns the absolute cache directory path if available."""
        if self._cache is None:
            return None
        return str(self._cache.directory)

    def _dir_size_bytes(self) -> int:
        d = self.directory
        if not d:
            return 0
        total = 0
        path = Path(d)
        if not path.exists():
            return 0
        for p in path.rglob("*"):
            # skip broken links just in case
            try:
                if p.is_file():
                    total += p.stat().st_size
            except OSError:
                continue
        return total

    def stats(self) -> dict[str, int | str]:
        """
        Returns a simple stats dict:
            - items: number of cached sites
            - bytes: on-disk size in bytes (recursive directory walk)
            - directory: absolute directory path
        """
        if self._cache is None:
            return {"items": 0, "bytes": 0, "directory": ""}
        return {
            "items": len(self._cache),
            "bytes": self._dir_size_bytes(),
            "directory": os.path.abspath(self.directory or ""),
        }

    def clear_all(self) -> None:
        """Clears all cache contents."""
        if self._cache is None:
            log.warning("Cache disabled")
            return
        self._cache.clear()

    # ---- Public API ---------------------------------------------------------

    def __contains__(self, domain: object) -> bool:
        return self._cache is not None and domain in self._cache

    def domains(self) -> Iterator[str]:
        if self._cache is None:
            return iter(())
        return iter(list(self._cache.iterkeys()))

    def get_raw(self, domain: str) -> Optional[dict[str, Any]]:
        if self._cache is None:
            return None
        return self._cache.get(domain)

    def get(self, domain: str) -> Optional[CrawledSite]:
        raw = self.get_raw(domain)
        if raw is None:
            return None
        return CrawledSite.from_dict(raw)

    def put(self, site: CrawledSite) -> None:
        if self._cache is None:
            return
        self._cache.set(site.domain, site.to_dict(), expire=self.cfg.expire_seconds)
        log.debug("Cached crawl output for %s (%d pages).", site.domain, len(site.pages))

    def delete(self, domain: str) -> bool:
        if self._cache is None:
            return False
        return bool(self._cache.delete(domain))

# Entrypoint for the directory_pipeline package.
# This file makes the public API available to programmers.

from __future__ import annotations

from directory_pipeline.__about__ import __version__
from directory_pipeline.audit import AuditRule, audit, build_report
from directory_pipeline.blacklist import BlacklistFilter
from directory_pipeline.candidates import CandidateStore
from directory_pipeline.classifier import KeywordConfig, classify
from directory_pipeline.crawler import CrawlEngine, PagePolicy
from directory_pipeline.discovery import DiscoveryEngine
from directory_pipeline.domains import normalize_domain
from directory_pipeline.enrichment import EnrichmentEngine
from directory_pipeline.errors import (
    InsufficientData,
    InvalidTransition,
    InvalidURL,
    NoMatch,
    PipelineError,
    ProviderError,
)
from directory_pipeline.models import (
    BatchReport,
    BlacklistRule,
    Candidate,
    Classification,
    CrawledSite,
    Issue,
    ProcessedDomainSet,
    Record,
)
from directory_pipeline.records import RecordBuilder
from directory_pipeline.sync import sync

# The __all__ variable defines the public API of the package.
__all__ = [
    "AuditRule",
    "BatchReport",
    "BlacklistFilter",
    "BlacklistRule",
    "Candidate",
    "CandidateStore",
    "Classification",
    "CrawlEngine",
    "CrawledSite",
    "DiscoveryEngine",
    "EnrichmentEngine",
    "InsufficientData",
    "InvalidTransition",
    "InvalidURL",
    "Issue",
    "KeywordConfig",
    "NoMatch",
    "PagePolicy",
    "PipelineError",
    "ProcessedDomainSet",
    "ProviderError",
    "Record",
    "RecordBuilder",
    "audit",
    "build_report",
    "classify",
    "normalize_domain",
    "sync",
    "__version__",
]

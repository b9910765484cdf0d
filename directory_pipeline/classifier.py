# directory_pipeline/classifier.py
"""
Keyword classifier.

Scores crawled content against niche and chain keyword sets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from directory_pipeline.config import DEFAULT_CHAIN_KEYWORDS
from directory_pipeline.models import Classification, Confidence, CrawledSite


@dataclass(frozen=True)
class KeywordConfig:
    """Keyword sets and the policy thresholds applied to their counts."""

    niche_keywords: tuple[str, ...] = ()
    chain_keywords: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_CHAIN_KEYWORDS))
    relevance_threshold: int = 2
    chain_threshold: int = 2
    high_confidence_threshold: int = 3

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "KeywordConfig":
        raw = config.get("classifier", {})
        return cls(
            niche_keywords=tuple(raw.get("niche_keywords", ())),
            chain_keywords=tuple(raw.get("chain_keywords", DEFAULT_CHAIN_KEYWORDS)),
            relevance_threshold=int(raw.get("relevance_threshold", 2)),
            chain_threshold=int(raw.get("chain_threshold", 2)),
            high_confidence_threshold=int(raw.get("high_confidence_threshold", 3)),
        )


def count_keywords(text: str, keywords: Iterable[str]) -> int:
    """Case-insensitive substring occurrence count, summed over keywords."""
    haystack = text.lower()
    return sum(haystack.count(k.lower()) for k in keywords if k)


def classify(site: CrawledSite, keyword_config: KeywordConfig) -> Classification:
    text = site.text()
    relevance = count_keywords(text, keyword_config.niche_keywords)
    chain = count_keywords(text, keyword_config.chain_keywords)

    if relevance >= keyword_config.high_confidence_threshold:
        confidence: Confidence = "high"
    elif relevance >= keyword_config.relevance_threshold:
        confidence = "medium"
    else:
        confidence = "low"

    return Classification(
        is_relevant=relevance >= keyword_config.relevance_threshold,
        relevance_score=relevance,
        is_potential_chain=chain >= keyword_config.chain_threshold,
        chain_score=chain,
        confidence=confidence,
    )

# directory_pipeline/generation.py
"""
Optional content-generation stage.

The provider's answer is untrusted structured input: required keys and
types are checked before anything reaches a Record.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from directory_pipeline.errors import InvalidResponse
from directory_pipeline.models import Candidate, CrawledSite
from directory_pipeline.providers import GenerationProvider
from directory_pipeline.throttle import GENERATION_DELAY_FLOOR, RateLimiter

log = logging.getLogger(__name__)

MAX_TAGS = 12
MAX_TAG_CHARS = 40

PROMPT_TEMPLATE = """You are writing a listing for a local business directory.
Business website: {url}
Search result title: {title}
Search result snippet: {snippet}

Website content:
{content}

Respond with a JSON object with exactly these keys:
  "summary": one sentence (max 160 characters),
  "description": 2-4 factual sentences about the services offered,
  "tags": a list of 3 to 8 short service tags,
  "category": a short category name.
Do not invent phone numbers, emails or addresses."""


@dataclass
class GeneratedContent:
    summary: str
    description: str
    tags: list[str] = field(default_factory=list)
    category: Optional[str] = None


def validate_generated(payload: Any, provider: str = "generation") -> GeneratedContent:
    """Check the provider's JSON shape. Raises InvalidResponse on any mismatch."""
    if not isinstance(payload, Mapping):
        raise InvalidResponse(f"expected a JSON object, got {type(payload).__name__}", provider=provider)

    for key in ("summary", "description"):
        value = payload.get(key)
        if not isinstance(value, str) or not value.strip():
            raise InvalidResponse(f"{key!r} must be a non-empty string", provider=provider)

    tags = payload.get("tags")
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise InvalidResponse("'tags' must be a list of strings", provider=provider)

    category = payload.get("category")
    if category is not None and not isinstance(category, str):
        raise InvalidResponse("'category' must be a string when present", provider=provider)

    clean_tags = list(
        dict.fromkeys(t.strip()[:MAX_TAG_CHARS] for t in tags if t.strip())
    )[:MAX_TAGS]
    return GeneratedContent(
        summary=payload["summary"].strip(),
        description=payload["description"].strip(),
        tags=clean_tags,
        category=category.strip() if category else None,
    )


def build_prompt(candidate: Candidate, site: CrawledSite, max_chars: int = 12_000) -> str:
    chunks: list[str] = []
    remaining = max_chars
    for page in site.pages:
        if remaining <= 0:
            break
        block = f"## {page.title or page.url}\n{page.body_text}"[:remaining]
        chunks.append(block)
        remaining -= len(block)
    return PROMPT_TEMPLATE.format(
        url=site.url,
        title=candidate.title,
        snippet=candidate.snippet,
        content="\n\n".join(chunks),
    )


class ContentGenerator:
    def __init__(
        self,
        provider: GenerationProvider,
        *,
        limiter: RateLimiter | None = None,
        max_prompt_chars: int = 12_000,
    ) -> None:
        self.provider = provider
        self.limiter = limiter or RateLimiter(GENERATION_DELAY_FLOOR, floor=GENERATION_DELAY_FLOOR)
        self.max_prompt_chars = max_prompt_chars

    @classmethod
    def from_config(cls, config: Mapping[str, Any], provider: GenerationProvider) -> "ContentGenerator":
        raw = config.get("generation", {})
        return cls(
            provider,
            limiter=RateLimiter(
                float(raw.get("delay_seconds", GENERATION_DELAY_FLOOR)),
                floor=GENERATION_DELAY_FLOOR,
            ),
            max_prompt_chars=int(raw.get("max_prompt_chars", 12_000)),
        )

    async def generate(self, candidate: Candidate, site: CrawledSite) -> GeneratedContent:
        prompt = build_prompt(candidate, site, self.max_prompt_chars)
        await self.limiter.wait()
        payload = await self.provider.generate(prompt)
        content = validate_generated(payload)
        log.info("Generated content for %s (%d tags).", candidate.domain, len(content.tags))
        return content
